from sqlalchemy import Boolean, Column, DateTime, Float, Integer, String, ForeignKey, UniqueConstraint, func
from sqlalchemy.orm import relationship
from database.db import Base

class Result(Base):
    """Term result of one student. Totals are derived from subject_marks; positions are never stored here."""
    __tablename__ = "results"
    __table_args__ = (
        UniqueConstraint("student_id", "term", "academic_year", name="uq_result_student_term"),
    )

    id = Column(Integer, primary_key=True, index=True)
    student_id = Column(Integer, ForeignKey("students.id"), nullable=False, index=True)
    class_id = Column(Integer, ForeignKey("classes.id"), nullable=False, index=True)
    term = Column(String(10), nullable=False)
    academic_year = Column(String(9), nullable=False)
    assessment_type = Column(String(50))                    # AssessmentType.name used for the marks

    total_marks = Column(Float)                             # maximum obtainable
    total_score = Column(Float)                             # sum of subject totals
    average_score = Column(Float)

    days_school_opened = Column(Integer)
    days_present = Column(Integer)
    days_absent = Column(Integer)

    teacher_approved = Column(Boolean, nullable=False, default=False)
    admin_approved = Column(Boolean, nullable=False, default=False)

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    student = relationship("Student")
    school_class = relationship("SchoolClass")
    subject_marks = relationship(
        "SubjectMark",
        back_populates="result",
        cascade="all, delete-orphan",
    )
