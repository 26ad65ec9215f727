from typing import Literal

from fastapi import APIRouter, Depends, Query
from fastapi.responses import Response
from sqlalchemy.orm import Session

from dependencies.database import get_db
from models.classes import SchoolClass
from schemas.grading import RankingScope, normalize_term
from schemas.results import ApprovalIn, SubjectMarkIn
from services.errors import RecordNotFound, ValidationError
from services.results import results_service
from services.tabular import grid_to_csv, grid_to_xlsx, results_export_grid

router = APIRouter(prefix="/results", tags=["Results"])

_XLSX = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


def ranking_scope_query(class_id: int = Query(...), term: str = Query(...),
                        academic_year: str = Query(...)) -> RankingScope:
    normalized = normalize_term(term)
    if normalized is None:
        raise ValidationError(f"Invalid term {term!r} (expected first, second or third)", term=term)
    return RankingScope(class_id=class_id, term=normalized, academic_year=academic_year)


# ==========================================================
# [1] ranked views
# ==========================================================

# ✅ [READ] ranked results of one class / term / year
@router.get("/")
def read_results(scope: RankingScope = Depends(ranking_scope_query), db: Session = Depends(get_db)):
    views = results_service.result_view(db, scope)
    return {
        "success": True,
        "data": [v.model_dump() for v in views],
        "message": f"{len(views)} results for {scope.label()}",
    }


# ✅ [EXPORT] ranked results as a spreadsheet
@router.get("/export")
def export_results(scope: RankingScope = Depends(ranking_scope_query),
                   format: Literal["xlsx", "csv"] = "xlsx",
                   db: Session = Depends(get_db)):
    school_class = db.get(SchoolClass, scope.class_id)
    if school_class is None:
        raise RecordNotFound(f"Class {scope.class_id} not found", class_id=scope.class_id)

    title = f"{school_class.name} - {scope.term.title()} Term {scope.academic_year}"
    grid = results_export_grid(results_service.result_view(db, scope), title)
    filename = f"results_{school_class.name}_{scope.term}_{scope.academic_year}".replace("/", "-").replace(" ", "_")
    if format == "csv":
        content, media_type = grid_to_csv(grid), "text/csv"
    else:
        content, media_type = grid_to_xlsx(grid, sheet_title="Results", header_row=3), _XLSX
    return Response(
        content=content,
        media_type=media_type,
        headers={"Content-Disposition": f'attachment; filename="{filename}.{format}"'},
    )


# ✅ [READ] one result with its positions
@router.get("/{result_id}")
def read_result(result_id: int, db: Session = Depends(get_db)):
    return {"success": True, "data": results_service.get_result_view(db, result_id).model_dump(), "message": None}


# ==========================================================
# [2] writes
# ==========================================================

# ✅ [UPDATE] enter / correct one subject's component scores
@router.put("/{result_id}/subjects/{subject_id}")
def record_subject_mark(result_id: int, subject_id: int, body: SubjectMarkIn, db: Session = Depends(get_db)):
    mark = results_service.record_subject_mark(db, result_id, subject_id, body.components, body.assessment_type)
    return {
        "success": True,
        "data": {
            "result_id": result_id,
            "subject_id": subject_id,
            "total_score": mark.total_score,
            "max_possible": mark.max_possible,
            "grade": mark.grade,
            "remark": mark.remark,
        },
        "message": "Subject mark saved",
    }


# ✅ [UPDATE] approval flags
@router.post("/{result_id}/approve")
def approve_result(result_id: int, body: ApprovalIn, db: Session = Depends(get_db)):
    result = results_service.set_approval(db, result_id, body)
    return {
        "success": True,
        "data": {
            "result_id": result.id,
            "teacher_approved": result.teacher_approved,
            "admin_approved": result.admin_approved,
        },
        "message": "Approval updated",
    }


# ✅ [DELETE] result and its subject marks
@router.delete("/{result_id}")
def delete_result(result_id: int, db: Session = Depends(get_db)):
    results_service.delete_result(db, result_id)
    return {"success": True, "data": {"result_id": result_id}, "message": "Result deleted"}
