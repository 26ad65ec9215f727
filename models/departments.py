from sqlalchemy import Column, Integer, String
from sqlalchemy.orm import relationship
from database.db import Base

class Department(Base):
    __tablename__ = "departments"  # kg / primary / jhs / shs

    id = Column(Integer, primary_key=True, index=True)          # department ID (PK)
    name = Column(String(50), nullable=False, unique=True)      # department name, grading scope key

    classes = relationship("SchoolClass", back_populates="department")
