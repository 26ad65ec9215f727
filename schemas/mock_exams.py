from datetime import date
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


# ✅ PUT /mock/{session_id}/scores body: subject_key → percentage
class MockScoresIn(BaseModel):
    student_id: int
    scores: Dict[str, Optional[float]] = Field(default_factory=dict)


class MockAggregate(BaseModel):
    student_id: int
    grade_points: Dict[str, int]                # every scored subject → 1..9
    selected: List[str]                         # core + best optional subjects
    aggregate: int                              # sum of grade points over `selected`
    raw_total: float                            # sum of all scores
    raw_average: float


class MockRankingEntry(BaseModel):
    student_id: int
    student_name: Optional[str] = None
    aggregate: Optional[int] = None
    position: Optional[int] = None
    selected: List[str] = Field(default_factory=list)
    raw_total: Optional[float] = None
    excluded_reason: Optional[str] = None       # IncompleteSubjectSet message


# ✅ POST /mock body
class MockSessionCreate(BaseModel):
    name: str
    academic_year: str
    exam_date: Optional[date] = None


class MockSessionOut(BaseModel):
    id: int
    name: str
    academic_year: str
    exam_date: Optional[date] = None
    status: str

    model_config = ConfigDict(from_attributes=True)
