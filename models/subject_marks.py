from sqlalchemy import Column, Float, Integer, JSON, String, ForeignKey, UniqueConstraint
from sqlalchemy.orm import relationship
from database.db import Base

class SubjectMark(Base):
    __tablename__ = "subject_marks"
    __table_args__ = (
        UniqueConstraint("result_id", "subject_id", name="uq_subject_mark"),
    )

    id = Column(Integer, primary_key=True, index=True)
    result_id = Column(Integer, ForeignKey("results.id", ondelete="CASCADE"), nullable=False, index=True)
    subject_id = Column(Integer, ForeignKey("subjects.id"), nullable=False)

    components = Column(JSON, nullable=False, default=dict)     # raw entries, e.g. {"ca1": 8, "exam": null}
    total_score = Column(Float)
    max_possible = Column(Float)
    grade = Column(String(10))
    remark = Column(String(100))

    result = relationship("Result", back_populates="subject_marks")
    subject = relationship("Subject")
