from sqlalchemy import Column, Date, Float, Integer, String, ForeignKey, UniqueConstraint
from sqlalchemy.orm import relationship
from database.db import Base

class MockSession(Base):
    __tablename__ = "mock_sessions"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(100), nullable=False, unique=True)     # e.g. "BECE Mock 1"
    academic_year = Column(String(9), nullable=False)
    exam_date = Column(Date)
    status = Column(String(20), nullable=False, default="draft")  # draft / ongoing / completed

    scores = relationship("MockScore", back_populates="session", cascade="all, delete-orphan")


class MockScore(Base):
    __tablename__ = "mock_scores"
    __table_args__ = (
        UniqueConstraint("session_id", "student_id", "subject_key", name="uq_mock_score"),
    )

    id = Column(Integer, primary_key=True, index=True)
    session_id = Column(Integer, ForeignKey("mock_sessions.id", ondelete="CASCADE"), nullable=False, index=True)
    student_id = Column(Integer, ForeignKey("students.id"), nullable=False, index=True)
    subject_key = Column(String(50), nullable=False)            # e.g. mathematics, rme
    score = Column(Float, nullable=False)                       # percentage 0..100

    session = relationship("MockSession", back_populates="scores")
    student = relationship("Student")
