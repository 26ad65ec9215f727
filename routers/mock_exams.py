from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from dependencies.database import get_db
from models.mock_exams import MockSession
from schemas.mock_exams import MockScoresIn, MockSessionCreate, MockSessionOut
from services.mock_aggregate import mock_rankings, save_mock_scores
from services.store import SQLAlchemyRecordStore, store_errors

router = APIRouter(prefix="/mock", tags=["Mock examinations"])


# ==========================================================
# [1] sessions
# ==========================================================

# ✅ [CREATE/UPDATE] mock session, keyed by name
@router.post("/")
def create_session(body: MockSessionCreate, db: Session = Depends(get_db)):
    store = SQLAlchemyRecordStore(db, MockSession, ("name",))
    with store_errors(db, body.name):
        session, created = store.upsert(
            {"name": body.name},
            {"academic_year": body.academic_year, "exam_date": body.exam_date},
        )
        db.commit()
    return {
        "success": True,
        "data": MockSessionOut.model_validate(session).model_dump(mode="json"),
        "message": "Mock session created" if created else "Mock session updated",
    }


# ==========================================================
# [2] scores / rankings
# ==========================================================

# ✅ [UPDATE] one student's subject percentages (null removes a subject)
@router.put("/{session_id}/scores")
def save_scores(session_id: int, body: MockScoresIn, db: Session = Depends(get_db)):
    written = save_mock_scores(db, session_id, body.student_id, body.scores)
    return {
        "success": True,
        "data": {"session_id": session_id, "student_id": body.student_id, "subjects_written": written},
        "message": "Mock scores saved",
    }


# ✅ [READ] aggregate ranking (lower is better); incomplete students listed last, unranked
@router.get("/{session_id}/rankings")
def read_rankings(session_id: int, db: Session = Depends(get_db)):
    entries = mock_rankings(db, session_id)
    ranked = sum(1 for e in entries if e.position is not None)
    return {
        "success": True,
        "data": [e.model_dump() for e in entries],
        "message": f"{ranked} ranked, {len(entries) - ranked} excluded",
    }
