"""
schemas/common.py

- Schemas shared across the routers (pydantic v2)
- Contents:
  1) error response standard: ErrorDetail, ErrorResponse
  2) ordinal helper for positions (1st, 2nd, 3rd, 11th ...)
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel, Field, ConfigDict


# =========================================================
# 1) error response standard
# =========================================================

class ErrorDetail(BaseModel):
    """minimal error unit"""
    code: str = Field(..., description="error code (e.g. INTERNAL_ERROR, SCORE_OUT_OF_RANGE)")
    message: str = Field(..., description="human readable message")

class ErrorResponse(BaseModel):
    """
    Standard error body returned by the global error handlers
    - middlewares/error_handler.py builds every error response from this schema
    """
    success: bool = False
    error: ErrorDetail
    data: Optional[dict] = Field(default=None, description="partial outcome, e.g. an import summary")
    generated_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        description="response creation time (UTC)"
    )

    model_config = ConfigDict(extra="ignore")


# =========================================================
# 2) ordinal positions
# =========================================================

def ordinal(position: Optional[int]) -> str:
    """1 → 1st, 2 → 2nd, 11 → 11th, None / 0 → ''"""
    if not position or position <= 0:
        return ""
    if 11 <= position % 100 <= 13:
        return f"{position}th"
    suffix = {1: "st", 2: "nd", 3: "rd"}.get(position % 10, "th")
    return f"{position}{suffix}"
