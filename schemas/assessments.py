from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from schemas.grading import GradingScope


# ✅ one weighted component, e.g. {"name": "exam", "max_score": 60, "entered_out_of": 100}
class AssessmentComponent(BaseModel):
    name: str                                           # ca1 / ca2 / exam / score ...
    max_score: float = Field(..., description="maximum contribution to the subject total")
    optional: bool = False                              # absent optional → excluded from sum and max
    entered_out_of: Optional[float] = None              # raw entry scale when it differs from max_score

    model_config = ConfigDict(from_attributes=True)

    @property
    def entry_max(self) -> float:
        return self.entered_out_of if self.entered_out_of else self.max_score


# ✅ weighting scheme of one scope
class AssessmentConfig(BaseModel):
    name: str
    components: List[AssessmentComponent]
    total: float = 100.0
    normalization_factor: Optional[float] = None

    model_config = ConfigDict(from_attributes=True)

    def component_map(self) -> Dict[str, AssessmentComponent]:
        return {c.name.lower(): c for c in self.components}


# ✅ PUT /grading/assessment-types body
class AssessmentTypeIn(BaseModel):
    scope: GradingScope
    config: AssessmentConfig
