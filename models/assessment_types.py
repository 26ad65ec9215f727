from sqlalchemy import Column, Float, Integer, JSON, String, UniqueConstraint
from database.db import Base

class AssessmentType(Base):
    """
    Weighting scheme for one scope, e.g. "CA 40 / Exam 60".

    components: [{"name": "ca1", "max_score": 10, "optional": false, "entered_out_of": null}, ...]
    """
    __tablename__ = "assessment_types"
    __table_args__ = (
        UniqueConstraint("department", "academic_year", "term", "name", name="uq_assessment_type"),
    )

    id = Column(Integer, primary_key=True, index=True)
    department = Column(String(50), nullable=False, index=True)
    academic_year = Column(String(9), nullable=False)
    term = Column(String(10), nullable=False)
    name = Column(String(50), nullable=False)
    components = Column(JSON, nullable=False, default=list)
    total = Column(Float, nullable=False, default=100.0)
    normalization_factor = Column(Float)                    # NULL → no rescaling
