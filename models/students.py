from sqlalchemy import Boolean, Column, Integer, String, ForeignKey
from sqlalchemy.orm import relationship
from database.db import Base

class Student(Base):
    __tablename__ = "students"

    id = Column(Integer, primary_key=True, index=True)                      # internal ID (PK)
    student_number = Column(String(50), nullable=False, unique=True)        # school-issued ID, import key
    full_name = Column(String(150), nullable=False)
    gender = Column(String(10))
    class_id = Column(Integer, ForeignKey("classes.id"))
    academic_year = Column(String(9))                                       # e.g. 2024/2025
    guardian_name = Column(String(150))
    guardian_phone = Column(String(30))
    address = Column(String(200))
    has_left = Column(Boolean, nullable=False, default=False)

    school_class = relationship("SchoolClass", back_populates="students")
