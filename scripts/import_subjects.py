import csv
from sqlalchemy.orm import Session
from database.db import SessionLocal, init_db
from models.subjects import Subject as SubjectModel  # ✅ model import
from services.store import SQLAlchemyRecordStore

CSV_PATH = "data/subjects.csv"  # ✅ columns: name, code

def migrate_subjects():
    init_db()
    db: Session = SessionLocal()
    store = SQLAlchemyRecordStore(db, SubjectModel, ("name",))

    created = 0
    with open(CSV_PATH, newline="", encoding="utf-8-sig") as csvfile:
        reader = csv.DictReader(csvfile)
        for row in reader:
            _, is_new = store.upsert(
                {"name": row["name"].strip()},                                  # subject name (natural key)
                {"code": (row.get("code") or "").strip() or None},             # short code, matched on import
            )
            created += is_new

    db.commit()
    db.close()
    print(f"✅ subjects CSV → DB done ({created} new)")

if __name__ == "__main__":
    migrate_subjects()
