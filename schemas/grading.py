"""
schemas/grading.py

- Scope keys (GradingScope / RankingScope) are frozen models so they can be used
  as dictionary keys by the resolver and ranking caches.
- Band / scale shapes used by the grading router and the resolver.
"""

from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

Term = Literal["first", "second", "third"]

_TERM_ALIASES = {
    "first": "first", "1": "first", "1st": "first",
    "second": "second", "2": "second", "2nd": "second",
    "third": "third", "3": "third", "3rd": "third",
}


def normalize_term(raw) -> Optional[str]:
    """'1', '1st', 'First ' → 'first'. Unknown values give None."""
    if raw is None:
        return None
    return _TERM_ALIASES.get(str(raw).strip().lower())


# =========================================================
# Scopes
# =========================================================

class GradingScope(BaseModel):
    """(department, academic year, term): the comparability boundary of a grading scale"""
    department: str
    academic_year: str
    term: Term

    model_config = ConfigDict(frozen=True)

    def label(self) -> str:
        return f"{self.department} {self.academic_year} ({self.term} term)"


class RankingScope(BaseModel):
    """(class, term, academic year): the peers a position is computed against"""
    class_id: int
    term: Term
    academic_year: str

    model_config = ConfigDict(frozen=True)

    def label(self) -> str:
        return f"class {self.class_id} {self.academic_year} ({self.term} term)"


# =========================================================
# Grading bands
# =========================================================

class GradingBandIn(BaseModel):
    from_percentage: float = Field(..., description="inclusive lower bound")
    to_percentage: float = Field(..., description="inclusive upper bound")
    grade: str
    remark: str = ""

    model_config = ConfigDict(from_attributes=True)


class GradingScaleIn(BaseModel):
    """PUT /grading/scales body"""
    scope: GradingScope
    bands: List[GradingBandIn]


class GradeResolution(BaseModel):
    grade: str
    remark: str
    clamped: bool = False           # True when the clamp policy moved the score into a band


class ResolveRequest(BaseModel):
    score: float
    scope: GradingScope
    policy: Optional[Literal["reject", "clamp"]] = None
