
from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from dependencies.database import get_db
from models.assessment_types import AssessmentType
from models.grading_scales import GradingBand
from schemas.assessments import AssessmentConfig, AssessmentTypeIn
from schemas.grading import GradingBandIn, GradingScaleIn, GradingScope, ResolveRequest, normalize_term
from services.errors import ValidationError
from services.grading import grade_resolver
from services.results import results_service
from services.scoring import ASSESSMENT_PRESETS
from services.store import SQLAlchemyRecordStore

router = APIRouter(prefix="/grading", tags=["Grading configuration"])


def scope_query(department: str = Query(...), academic_year: str = Query(...), term: str = Query(...)) -> GradingScope:
    normalized = normalize_term(term)
    if normalized is None:
        raise ValidationError(f"Invalid term {term!r} (expected first, second or third)", term=term)
    return GradingScope(department=department, academic_year=academic_year, term=normalized)


# ==========================================================
# [1] grading scales
# ==========================================================

# ✅ [READ] bands of one scope
@router.get("/scales")
def read_scale(scope: GradingScope = Depends(scope_query), db: Session = Depends(get_db)):
    rows = SQLAlchemyRecordStore(db, GradingBand, ()).get(scope.model_dump())
    bands = sorted((GradingBandIn.model_validate(r) for r in rows), key=lambda b: b.from_percentage, reverse=True)
    return {
        "success": True,
        "data": {"scope": scope.model_dump(), "bands": [b.model_dump() for b in bands]},
        "message": f"{len(bands)} bands" if bands else "No grading scale configured",
    }


# ✅ [UPDATE] replace the bands of one scope and regrade its marks (all or nothing)
@router.put("/scales")
def save_scale(body: GradingScaleIn, db: Session = Depends(get_db)):
    saved, recomputed = results_service.replace_scale(db, body.scope, body.bands)
    return {
        "success": True,
        "data": {"scope": body.scope.model_dump(), "bands": len(saved), "recomputed_marks": recomputed},
        "message": "Grading scale saved",
    }


# ✅ [CREATE] seed the default nine-point scale when the scope has none
@router.post("/scales/default")
def seed_default_scale(scope: GradingScope = Depends(scope_query), db: Session = Depends(get_db)):
    seeded = grade_resolver.ensure_default_scale(db, scope)
    return {
        "success": True,
        "data": {"scope": scope.model_dump(), "seeded": seeded},
        "message": "Default grading scale created" if seeded else "Scope already has a grading scale",
    }


# ✅ [READ] percentage → grade / remark
@router.post("/resolve")
def resolve(body: ResolveRequest, db: Session = Depends(get_db)):
    resolution = grade_resolver.resolve_grade(db, body.score, body.scope, policy=body.policy)
    return {"success": True, "data": resolution.model_dump(), "message": None}


# ==========================================================
# [2] assessment types
# ==========================================================

# ✅ [READ] preset weighting schemes
@router.get("/assessment-types/presets")
def read_presets():
    return {
        "success": True,
        "data": [config.model_dump() for config in ASSESSMENT_PRESETS.values()],
        "message": None,
    }


# ✅ [READ] assessment types of one scope
@router.get("/assessment-types")
def read_assessment_types(scope: GradingScope = Depends(scope_query), db: Session = Depends(get_db)):
    rows = SQLAlchemyRecordStore(db, AssessmentType, ()).get(scope.model_dump())
    return {
        "success": True,
        "data": [AssessmentConfig.model_validate(r).model_dump() for r in rows],
        "message": None,
    }


# ✅ [UPDATE] create or replace one assessment type and recompute its marks (all or nothing)
@router.put("/assessment-types")
def save_assessment_type(body: AssessmentTypeIn, db: Session = Depends(get_db)):
    record, recomputed = results_service.replace_assessment_type(db, body.scope, body.config)
    return {
        "success": True,
        "data": {"id": record.id, "name": record.name, "recomputed_marks": recomputed},
        "message": "Assessment type saved",
    }
