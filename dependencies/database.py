from typing import Iterator

from sqlalchemy.orm import Session

from database.db import SessionLocal


# ✅ one session per request, closed afterwards (tests override this dependency)
def get_db() -> Iterator[Session]:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
