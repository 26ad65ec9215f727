import csv
from sqlalchemy.orm import Session
from database.db import SessionLocal, init_db
from models.classes import SchoolClass as ClassModel       # ✅ model import
from models.departments import Department as DepartmentModel
from services.store import SQLAlchemyRecordStore

CSV_PATH = "data/classes.csv"  # ✅ columns: name, department

def migrate_classes():
    init_db()
    db: Session = SessionLocal()
    departments = SQLAlchemyRecordStore(db, DepartmentModel, ("name",))
    classes = SQLAlchemyRecordStore(db, ClassModel, ("name",))

    with open(CSV_PATH, newline="", encoding="utf-8-sig") as csvfile:
        reader = csv.DictReader(csvfile)
        for row in reader:
            department, _ = departments.upsert({"name": row["department"].strip()}, {})   # kg / primary / jhs ...
            classes.upsert({"name": row["name"].strip()}, {"department_id": department.id})

    db.commit()
    db.close()
    print("✅ classes CSV → DB done")

if __name__ == "__main__":
    migrate_classes()
