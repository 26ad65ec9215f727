from sqlalchemy import Column, Integer, String, ForeignKey
from sqlalchemy.orm import relationship
from database.db import Base

class SchoolClass(Base):
    __tablename__ = "classes"

    id = Column(Integer, primary_key=True, index=True)          # class ID (PK)
    name = Column(String(50), nullable=False, unique=True)      # e.g. "Basic 9A"

    # ==========================================================
    # [relationships]
    # ==========================================================

    # ✅ owning department (N:1)
    #    - the department decides which grading scale / assessment type applies
    department_id = Column(Integer, ForeignKey("departments.id"), nullable=False)
    department = relationship("Department", back_populates="classes")

    students = relationship("Student", back_populates="school_class")
