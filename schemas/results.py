from typing import Dict, List, Optional

from pydantic import BaseModel, Field


# ✅ calculator output for one subject
class SubjectScore(BaseModel):
    total: float                        # sum of component contributions
    max_possible: float                 # maximum obtainable with the components considered
    percentage: float                   # total / max_possible * 100, used for grading
    grade: str
    remark: str


# ✅ PUT /results/{id}/subjects/{subject_id} body
class SubjectMarkIn(BaseModel):
    components: Dict[str, Optional[float]] = Field(default_factory=dict)   # {"ca1": 8, "exam": 55}
    assessment_type: Optional[str] = None                                  # falls back to the result's


class SubjectMarkView(BaseModel):
    subject_id: int
    subject_name: str
    components: Dict[str, Optional[float]]
    total_score: Optional[float] = None
    grade: Optional[str] = None
    remark: Optional[str] = None
    position: Optional[int] = None


class ResultView(BaseModel):
    result_id: int
    student_id: int
    student_number: str
    student_name: str
    total_marks: Optional[float] = None
    total_score: Optional[float] = None
    average_score: Optional[float] = None
    position: Optional[int] = None
    position_label: str = ""            # 1st / 2nd / 11th
    class_size: int = 0                 # ranked results in the scope
    teacher_approved: bool = False
    admin_approved: bool = False
    subjects: List[SubjectMarkView] = Field(default_factory=list)


class ApprovalIn(BaseModel):
    teacher_approved: Optional[bool] = None
    admin_approved: Optional[bool] = None
