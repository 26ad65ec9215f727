"""
services/scoring.py

Subject score calculator. Weighting is data (AssessmentConfig), one generic
calculator consumes it:

- each component is entered on its own scale (CA1 out of 10, exam out of 60);
  components declaring entered_out_of are converted (exam typed out of 100, worth 60)
- an absent required component counts as 0
- an absent optional component is left out of both the total and the maximum
- normalization_factor, when configured, multiplies the summed total
- the grade is resolved from total / max_possible * 100
"""

import logging
import math
from typing import Dict, List, Mapping, Optional, Tuple

from sqlalchemy.orm import Session

from models.assessment_types import AssessmentType
from schemas.assessments import AssessmentComponent, AssessmentConfig
from schemas.grading import GradingScope
from schemas.results import SubjectScore
from services.errors import ConfigurationError, InvalidComponentScore, NoAssessmentConfigured, ValidationError
from services.grading import GradingScaleResolver, grade_resolver
from services.store import SQLAlchemyRecordStore, store_errors

logger = logging.getLogger(__name__)


def _component(name, max_score, optional=False, entered_out_of=None) -> AssessmentComponent:
    return AssessmentComponent(name=name, max_score=max_score, optional=optional, entered_out_of=entered_out_of)


# ==========================================================
# [1] presets (seeded per scope on request)
# ==========================================================

ASSESSMENT_PRESETS: Dict[str, AssessmentConfig] = {
    "SBA 30/70": AssessmentConfig(name="SBA 30/70", components=[
        _component("ca", 30, entered_out_of=100), _component("exam", 70, entered_out_of=100)]),
    "SBA 40/60": AssessmentConfig(name="SBA 40/60", components=[
        _component("ca", 40, entered_out_of=100), _component("exam", 60, entered_out_of=100)]),
    "SBA 50/50": AssessmentConfig(name="SBA 50/50", components=[
        _component("ca", 50, entered_out_of=100), _component("exam", 50, entered_out_of=100)]),
    "CA Only": AssessmentConfig(name="CA Only", components=[
        _component("ca1", 25), _component("ca2", 25), _component("ca3", 25), _component("ca4", 25)]),
    "4-CA Split": AssessmentConfig(name="4-CA Split", components=[
        _component("ca1", 10), _component("ca2", 10), _component("ca3", 10), _component("ca4", 10),
        _component("exam", 60, entered_out_of=100)]),
}

# departments without exams record one mark per subject
RAW_SUBJECT_CONFIG = AssessmentConfig(name="Raw", components=[_component("score", 100)])


def validate_assessment_config(config: AssessmentConfig) -> List[str]:
    problems: List[str] = []
    names = [c.name.strip().lower() for c in config.components]
    if not names:
        problems.append("At least one component is required")
    if any(not n for n in names):
        problems.append("Component names are required")
    duplicates = sorted({n for n in names if names.count(n) > 1})
    if duplicates:
        problems.append(f"Duplicate components: {', '.join(duplicates)}")
    for c in config.components:
        if c.max_score < 0:
            problems.append(f"{c.name}: maximum must not be negative")
        if c.entered_out_of is not None and c.entered_out_of <= 0:
            problems.append(f"{c.name}: entry scale must be positive")
    if config.normalization_factor is not None and config.normalization_factor <= 0:
        problems.append("Normalization factor must be positive")
    maxima = sum(c.max_score for c in config.components)
    if not math.isclose(maxima, config.total, abs_tol=1e-6):
        problems.append(f"Component maxima sum to {maxima:g}, expected {config.total:g}")
    return problems


# ==========================================================
# [2] configuration storage
# ==========================================================

def load_assessment_config(db: Session, scope: GradingScope, name: str) -> AssessmentConfig:
    if name == RAW_SUBJECT_CONFIG.name:
        return RAW_SUBJECT_CONFIG
    record = SQLAlchemyRecordStore(db, AssessmentType, ()).find({**scope.model_dump(), "name": name})
    if record is None:
        raise NoAssessmentConfigured(scope, name)
    return AssessmentConfig.model_validate(record)


def save_assessment_config(db: Session, scope: GradingScope, config: AssessmentConfig,
                           commit: bool = True) -> AssessmentType:
    problems = validate_assessment_config(config)
    if problems:
        raise ConfigurationError(
            f"Assessment type '{config.name}' for {scope.label()} rejected: " + "; ".join(problems),
            scope=scope, problems=problems,
        )
    store = SQLAlchemyRecordStore(db, AssessmentType, ("department", "academic_year", "term", "name"))
    key = {**scope.model_dump(), "name": config.name}
    with store_errors(db, key):
        record, created = store.upsert(key, {
            "components": [c.model_dump() for c in config.components],
            "total": config.total,
            "normalization_factor": config.normalization_factor,
        })
        if commit:
            db.commit()
    logger.info(f"Assessment type '{config.name}' {'created' if created else 'updated'} for {scope.label()}")
    return record


# ==========================================================
# [3] calculator
# ==========================================================

def _as_number(name: str, raw) -> float:
    if isinstance(raw, bool):
        raise InvalidComponentScore(name, raw, "not a number")
    try:
        value = float(raw)
    except (TypeError, ValueError):
        raise InvalidComponentScore(name, raw, "not a number")
    if math.isnan(value) or math.isinf(value):
        raise InvalidComponentScore(name, raw, "not a number")
    return value


class SubjectScoreCalculator:
    def __init__(self, resolver: GradingScaleResolver = None):
        self.resolver = resolver or grade_resolver

    def combine(self, components: Mapping[str, Optional[float]], config: AssessmentConfig) -> Tuple[float, float]:
        """(total, max_possible) of the given raw component values"""
        entries = {str(k).strip().lower(): v for k, v in (components or {}).items()}
        known = config.component_map()
        for name, value in entries.items():
            if name not in known and value is not None:
                raise InvalidComponentScore(name, value, f"not part of assessment type '{config.name}'")

        total = 0.0
        max_possible = 0.0
        for comp in config.components:
            if comp.max_score < 0:
                raise ConfigurationError(f"Assessment type '{config.name}': {comp.name} has a negative maximum")
            raw = entries.get(comp.name.lower())
            if raw is None:
                if comp.optional:
                    continue
                raw = 0.0
            value = _as_number(comp.name, raw)
            if value < 0:
                raise InvalidComponentScore(comp.name, raw, "negative score")
            if value > comp.entry_max:
                raise InvalidComponentScore(comp.name, raw, f"exceeds maximum of {comp.entry_max:g}")

            if comp.entered_out_of:
                total += value * comp.max_score / comp.entered_out_of
            else:
                total += value
            max_possible += comp.max_score

        if config.normalization_factor:
            total *= config.normalization_factor
            max_possible *= config.normalization_factor
        return round(total, 2), round(max_possible, 2)

    def compute_subject_score(self, db: Session, components: Mapping[str, Optional[float]],
                              config: AssessmentConfig, scope: GradingScope,
                              policy: Optional[str] = None) -> SubjectScore:
        total, max_possible = self.combine(components, config)
        if max_possible <= 0:
            raise ValidationError(f"No component of '{config.name}' was scored")
        percentage = round(total / max_possible * 100, 2)
        resolution = self.resolver.resolve_grade(db, percentage, scope, policy=policy)
        return SubjectScore(
            total=total,
            max_possible=max_possible,
            percentage=percentage,
            grade=resolution.grade,
            remark=resolution.remark,
        )


# ✅ shared calculator
calculator = SubjectScoreCalculator()
