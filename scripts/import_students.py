import argparse
import logging
import sys

from sqlalchemy.orm import Session

from database.db import SessionLocal, init_db
from services.errors import StoreUnavailableError
from services.importer import BulkImportPipeline
from scripts.import_results import print_progress, print_summary

CSV_PATH = "data/students.csv"  # ✅ default file path (.csv or .xlsx)


def migrate_students(path: str) -> int:
    init_db()
    db: Session = SessionLocal()
    try:
        with open(path, "rb") as f:
            payload = f.read()
        summary = BulkImportPipeline(db, "students", on_progress=print_progress).run(payload, path)
    except StoreUnavailableError as e:
        print(f"❌ {e.message}")
        if e.summary is not None:
            print_summary(e.summary)
        return 2
    finally:
        db.close()

    print_summary(summary)
    return 0 if summary.status == "complete" else 1


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Import the student roster from a CSV / XLSX sheet")
    parser.add_argument("path", nargs="?", default=CSV_PATH)
    args = parser.parse_args()

    logging.basicConfig(level=logging.WARNING)
    sys.exit(migrate_students(args.path))
