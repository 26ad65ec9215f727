from sqlalchemy import create_engine               # SQLAlchemy engine factory
from sqlalchemy.orm import declarative_base, sessionmaker

from config.settings import settings               # ✅ environment settings

# ✅ engine built from the configured DB URL
# SQLite connections are shared with the import worker threads
_connect_args = {"check_same_thread": False} if settings.DATABASE_URL.startswith("sqlite") else {}
engine = create_engine(settings.DATABASE_URL, connect_args=_connect_args, pool_pre_ping=True)

# ✅ session factory
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

# ✅ declarative base for every model
Base = declarative_base()


def init_db(bind=None):
    """Create every table registered on Base (models must be imported first)."""
    # registers the mappers on Base.metadata
    from models import (  # noqa: F401
        assessment_types, classes, departments, grading_scales,
        mock_exams, results, students, subject_marks, subjects,
    )

    Base.metadata.create_all(bind=bind or engine)
