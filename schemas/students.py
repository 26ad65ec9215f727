from typing import Optional

from pydantic import BaseModel, Field


# ✅ validated roster row (bulk student import → Student upsert)
# lengths mirror the students table columns
class StudentCreate(BaseModel):
    student_number: str = Field(..., max_length=50)            # school-issued ID, natural key
    full_name: str = Field(..., max_length=150)
    gender: Optional[str] = Field(None, max_length=10)         # male / female
    class_name: Optional[str] = Field(None, max_length=50)     # resolved to classes.id on import
    academic_year: Optional[str] = Field(None, max_length=9)
    guardian_name: Optional[str] = Field(None, max_length=150)
    guardian_phone: Optional[str] = Field(None, max_length=30)
    address: Optional[str] = Field(None, max_length=200)
