"""
services/errors.py

Exception taxonomy of the results engine.

- ConfigurationError   : grading scale / assessment type missing or invalid (fatal for one scope)
- ValidationError      : row or component level problem (collected, never fatal for a batch)
- RangeError           : score outside the configured domain
- IdentityConflictError: same natural key seen twice (first occurrence wins)
- StoreUnavailableError: the record store went away (fatal, propagates)
- TabularParseError    : uploaded payload could not be decoded at all

Every error carries a machine readable ``code`` which the HTTP error handler
copies into the response body.
"""

from typing import Any, Optional


class ResultsEngineError(Exception):
    """Base class of every engine error"""
    code = "RESULTS_ENGINE_ERROR"

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.message = message
        self.context = context


# =========================================================
# Configuration
# =========================================================

class ConfigurationError(ResultsEngineError):
    """Missing or inconsistent grading / assessment configuration"""
    code = "CONFIGURATION_ERROR"


class NoScaleConfigured(ConfigurationError):
    code = "NO_SCALE_CONFIGURED"

    def __init__(self, scope):
        super().__init__(f"No grading scale configured for {scope.label()}", scope=scope)
        self.scope = scope


class NoAssessmentConfigured(ConfigurationError):
    code = "NO_ASSESSMENT_CONFIGURED"

    def __init__(self, scope, name: str):
        super().__init__(f"No assessment type '{name}' configured for {scope.label()}", scope=scope, name=name)
        self.scope = scope
        self.name = name


# =========================================================
# Validation
# =========================================================

class ValidationError(ResultsEngineError):
    """Row / component level validation failure"""
    code = "VALIDATION_ERROR"


class InvalidComponentScore(ValidationError):
    code = "INVALID_COMPONENT_SCORE"

    def __init__(self, component: str, value: Any, reason: str):
        super().__init__(f"Invalid score {value!r} for component '{component}': {reason}",
                         component=component, value=value)
        self.component = component
        self.value = value


class RecordRejected(ValidationError):
    """The record store refused a value, e.g. one too long for its column"""
    code = "RECORD_REJECTED"


class IncompleteSubjectSet(ValidationError):
    code = "INCOMPLETE_SUBJECT_SET"

    def __init__(self, missing: list, optional_shortfall: int = 0):
        parts = []
        if missing:
            parts.append(f"missing core subjects: {', '.join(missing)}")
        if optional_shortfall:
            parts.append(f"{optional_shortfall} optional subject(s) short")
        super().__init__("Incomplete subject set (" + "; ".join(parts) + ")",
                         missing=missing, optional_shortfall=optional_shortfall)
        self.missing = missing
        self.optional_shortfall = optional_shortfall


# =========================================================
# Range
# =========================================================

class RangeError(ResultsEngineError):
    """Score or aggregate outside the defined domain"""
    code = "RANGE_ERROR"


class ScoreOutOfRange(RangeError):
    code = "SCORE_OUT_OF_RANGE"

    def __init__(self, score: float, scope=None):
        where = f" for {scope.label()}" if scope is not None else ""
        super().__init__(f"Score {score} falls outside every configured grading band{where}",
                         score=score, scope=scope)
        self.score = score
        self.scope = scope


# =========================================================
# Identity / store / parsing
# =========================================================

class IdentityConflictError(ResultsEngineError):
    code = "IDENTITY_CONFLICT"

    def __init__(self, key: Any, message: Optional[str] = None):
        super().__init__(message or f"Duplicate record key {key!r}", key=key)
        self.key = key


class StoreUnavailableError(ResultsEngineError):
    code = "STORE_UNAVAILABLE"

    def __init__(self, message: str, summary=None):
        super().__init__(message)
        # partial ImportSummary when raised from a running batch
        self.summary = summary


class RecordNotFound(ResultsEngineError):
    code = "NOT_FOUND"


class TabularParseError(ResultsEngineError):
    code = "TABULAR_PARSE_ERROR"
