from sqlalchemy import Column, Float, Integer, String, UniqueConstraint
from database.db import Base

class GradingBand(Base):
    """One row of a grading scale. A scale is every band sharing (department, academic_year, term)."""
    __tablename__ = "grading_bands"
    __table_args__ = (
        UniqueConstraint("department", "academic_year", "term", "from_percentage", name="uq_grading_band"),
    )

    id = Column(Integer, primary_key=True, index=True)
    department = Column(String(50), nullable=False, index=True)
    academic_year = Column(String(9), nullable=False)
    term = Column(String(10), nullable=False)
    from_percentage = Column(Float, nullable=False)         # inclusive lower bound
    to_percentage = Column(Float, nullable=False)           # inclusive upper bound
    grade = Column(String(10), nullable=False)              # e.g. A, B2
    remark = Column(String(100), nullable=False)            # e.g. Excellent
