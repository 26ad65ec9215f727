import os
import sys
from types import SimpleNamespace

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

# project root on sys.path so the flat packages import without installation
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from database.db import init_db
from dependencies.database import get_db
from models.classes import SchoolClass
from models.departments import Department
from models.students import Student
from models.subjects import Subject
from schemas.grading import GradingBandIn, GradingScope, RankingScope
from services.grading import grade_resolver
from services.ranking import ranking_service

SCIENCE_BANDS = [
    GradingBandIn(from_percentage=90, to_percentage=100, grade="A", remark="Excellent"),
    GradingBandIn(from_percentage=75, to_percentage=89, grade="B", remark="Very Good"),
    GradingBandIn(from_percentage=0, to_percentage=74, grade="F", remark="Fail"),
]


@pytest.fixture(autouse=True)
def _fresh_caches():
    grade_resolver.invalidate()
    ranking_service.clear()
    yield
    grade_resolver.invalidate()
    ranking_service.clear()


@pytest.fixture
def engine():
    engine = create_engine("sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool)
    init_db(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def db(engine):
    session = sessionmaker(bind=engine, autocommit=False, autoflush=False)()
    yield session
    session.close()


@pytest.fixture
def scope():
    return GradingScope(department="Science", academic_year="2024/2025", term="first")


@pytest.fixture
def school(db, scope):
    """Science department, one class, two subjects, three students, a three band scale."""
    department = Department(name="Science")
    db.add(department)
    db.flush()
    school_class = SchoolClass(name="SHS 1 Science", department_id=department.id)
    db.add(school_class)
    db.flush()

    mathematics = Subject(name="Mathematics", code="MATH")
    english = Subject(name="English", code="ENG")
    db.add_all([mathematics, english])

    students = [
        Student(student_number=f"STU00{i}", full_name=name, class_id=school_class.id, academic_year="2024/2025")
        for i, name in enumerate(["Ama Mensah", "Kofi Boateng", "Esi Owusu"], start=1)
    ]
    db.add_all(students)
    db.commit()

    grade_resolver.save_scale(db, scope, SCIENCE_BANDS)
    return SimpleNamespace(
        department=department,
        school_class=school_class,
        mathematics=mathematics,
        english=english,
        students=students,
        grading_scope=scope,
        ranking_scope=RankingScope(class_id=school_class.id, term="first", academic_year="2024/2025"),
    )


@pytest.fixture
def client(db):
    from main import app

    def _override():
        yield db

    app.dependency_overrides[get_db] = _override
    yield TestClient(app)
    app.dependency_overrides.clear()
