import logging
from typing import List, Literal, Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, UploadFile
from fastapi.responses import JSONResponse, Response
from sqlalchemy.orm import Session

from config.settings import settings
from dependencies.database import get_db
from models.subjects import Subject
from schemas.common import ErrorDetail, ErrorResponse
from schemas.imports import ImportSummary
from services.importer import BulkImportPipeline
from services.tabular import SUBJECT_COMPONENTS, grid_to_csv, grid_to_xlsx, results_template, students_template

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/imports", tags=["Bulk import"])

_XLSX = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"

RESULTS_INSTRUCTIONS = (
    "RESULTS IMPORT TEMPLATE",
    "Student ID*, Term* and Academic Year* are required (term: first / second / third, year: 2024/2025).",
    "Subject columns are named '<Subject> - <Component>' (components: CA1, CA2, CA3, CA4, Exam, Score).",
    "Scores must be between 0 and 100. Leave a cell blank when there is no score.",
    "Re-importing the same file updates the existing results instead of duplicating them.",
)

STUDENTS_INSTRUCTIONS = (
    "STUDENTS IMPORT TEMPLATE",
    "Student ID* and Full Name* are required; Student ID must be unique in the file.",
    "Class must match an existing class name. Gender: male / female.",
)


def _read_upload(file: UploadFile) -> bytes:
    payload = file.file.read(settings.MAX_UPLOAD_MB * 1024 * 1024 + 1)
    if len(payload) > settings.MAX_UPLOAD_MB * 1024 * 1024:
        raise HTTPException(status_code=413, detail=f"File exceeds {settings.MAX_UPLOAD_MB} MB")
    return payload


def _summary_response(summary: ImportSummary):
    data = summary.to_response(settings.IMPORT_ISSUE_DISPLAY_LIMIT)
    if summary.status == "failed":
        return JSONResponse(
            status_code=400,
            content=ErrorResponse(
                error=ErrorDetail(code="IMPORT_FAILED", message=summary.fatal_error or "Import failed"),
                data=data,
            ).model_dump(mode="json"),
        )
    return {
        "success": True,
        "data": data,
        "message": f"{summary.imported} of {summary.total} rows imported ({summary.status})",
    }


def _file_response(grid, name: str, format: str, instructions):
    if format == "csv":
        content, media_type = grid_to_csv(grid), "text/csv"
    else:
        content, media_type = grid_to_xlsx(grid, sheet_title="Data", instructions=instructions), _XLSX
    return Response(
        content=content,
        media_type=media_type,
        headers={"Content-Disposition": f'attachment; filename="{name}.{format}"'},
    )


# ==========================================================
# [1] uploads
# ==========================================================

# ✅ [CREATE/UPDATE] results + subject scores from a sheet
@router.post("/results")
def import_results(file: UploadFile = File(...),
                   assessment_type: Optional[str] = Form(None),
                   db: Session = Depends(get_db)):
    payload = _read_upload(file)
    logger.info(f"Results upload {file.filename} ({len(payload)} bytes)")
    pipeline = BulkImportPipeline(db, "results", assessment_type=assessment_type)
    return _summary_response(pipeline.run(payload, file.filename))


# ✅ [CREATE/UPDATE] student roster from a sheet
@router.post("/students")
def import_students(file: UploadFile = File(...), db: Session = Depends(get_db)):
    payload = _read_upload(file)
    logger.info(f"Students upload {file.filename} ({len(payload)} bytes)")
    pipeline = BulkImportPipeline(db, "students")
    return _summary_response(pipeline.run(payload, file.filename))


# ==========================================================
# [2] templates
# ==========================================================

# ✅ [READ] results template (every subject unless a list is given)
@router.get("/templates/results")
def results_import_template(subjects: Optional[List[str]] = Query(None),
                            components: List[str] = Query(["score"]),
                            format: Literal["xlsx", "csv"] = "xlsx",
                            db: Session = Depends(get_db)):
    unknown = [c for c in components if c.lower() not in SUBJECT_COMPONENTS]
    if unknown:
        raise HTTPException(status_code=422, detail=f"Unknown components: {', '.join(unknown)}")
    if not subjects:
        subjects = [s.name for s in db.query(Subject).order_by(Subject.name).all()]
    grid = results_template(subjects, [c.lower() for c in components])
    return _file_response(grid, "results_import_template", format, RESULTS_INSTRUCTIONS)


# ✅ [READ] students template
@router.get("/templates/students")
def students_import_template(format: Literal["xlsx", "csv"] = "xlsx"):
    return _file_response(students_template(), "students_import_template", format, STUDENTS_INSTRUCTIONS)
