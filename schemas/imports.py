"""
schemas/imports.py

Shapes exchanged by the bulk ingestion pipeline:
  1) ImportProgress: payload of the progress callback
  2) RowIssue: one itemised error / warning
  3) ImportSummary: terminal outcome of a batch
"""

from typing import List, Literal, Optional

from pydantic import BaseModel, Field

ImportPhase = Literal["parsing", "validating", "importing", "complete"]
ImportStatus = Literal["complete", "failed", "cancelled"]


class ImportProgress(BaseModel):
    phase: ImportPhase
    current: int = Field(..., ge=0)
    total: int = Field(..., ge=0)
    message: str = ""


class RowIssue(BaseModel):
    """row 0 is used for batch level issues (e.g. unrecognised columns)"""
    row: int
    key: Optional[str] = None                           # student number of the row, when known
    severity: Literal["error", "warning"]
    code: str
    message: str


class ImportSummary(BaseModel):
    kind: Literal["results", "students"]
    status: ImportStatus = "complete"
    total: int = 0
    valid: int = 0
    imported: int = 0
    failed: int = 0
    skipped: int = 0                                    # rows left untouched by a cancellation
    created: int = 0
    updated: int = 0
    fatal_error: Optional[str] = None
    issues: List[RowIssue] = Field(default_factory=list)

    @property
    def errors(self) -> List[RowIssue]:
        return [i for i in self.issues if i.severity == "error"]

    @property
    def warnings(self) -> List[RowIssue]:
        return [i for i in self.issues if i.severity == "warning"]

    def display_issues(self, limit: int) -> List[RowIssue]:
        """errors first, then warnings, capped at limit (full list stays on .issues)"""
        ordered = self.errors + self.warnings
        return ordered[:limit]

    def to_response(self, limit: int) -> dict:
        shown = self.display_issues(limit)
        return {
            **self.model_dump(exclude={"issues"}),
            "error_count": len(self.errors),
            "warning_count": len(self.warnings),
            "issues": [i.model_dump() for i in shown],
            "issues_truncated": len(shown) < len(self.issues),
        }
