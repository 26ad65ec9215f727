import argparse
import logging
import sys

from sqlalchemy.orm import Session

from database.db import SessionLocal, init_db
from schemas.imports import ImportProgress
from services.errors import StoreUnavailableError
from services.importer import BulkImportPipeline

CSV_PATH = "data/results.csv"  # ✅ default file path (.csv or .xlsx)


def print_progress(progress: ImportProgress):
    print(f"[{progress.phase:>10}] {progress.current}/{progress.total} {progress.message}")


def print_summary(summary):
    print(f"✅ {summary.status}: {summary.imported}/{summary.total} rows imported "
          f"(created {summary.created}, updated {summary.updated}, failed {summary.failed})")
    for issue in summary.errors + summary.warnings:
        print(f"  row {issue.row:>4} {issue.severity:<7} {issue.code}: {issue.message}")


def migrate_results(path: str, assessment_type: str = None) -> int:
    init_db()
    db: Session = SessionLocal()
    try:
        with open(path, "rb") as f:
            payload = f.read()
        pipeline = BulkImportPipeline(db, "results", on_progress=print_progress, assessment_type=assessment_type)
        summary = pipeline.run(payload, path)
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
    parser = argparse.ArgumentParser(description="Import term results from a CSV / XLSX sheet")
    parser.add_argument("path", nargs="?", default=CSV_PATH)
    parser.add_argument("--assessment-type", default=None, help="assessment type used when the sheet has no column for it")
    args = parser.parse_args()

    logging.basicConfig(level=logging.WARNING)
    sys.exit(migrate_results(args.path, args.assessment_type))
