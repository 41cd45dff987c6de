import os
from datetime import datetime, timezone

os.environ["DATABASE_URL"] = "sqlite://"
os.environ["CRON_SECRET"] = "test-cron-secret"

import pytest
from fastapi.testclient import TestClient

from merit_app import models_db
from merit_app.database import Base, SessionLocal, engine
from merit_app.main import app

ADMIN = {"X-Staff-Email": "admin@school.test"}
TEACHER = {"X-Staff-Email": "teacher@school.test"}
CRON = {"Authorization": "Bearer test-cron-secret"}


def utc_today():
    return datetime.now(timezone.utc).date()


@pytest.fixture(autouse=True)
def fresh_db():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        models_db.seed_reference_data(session)
    finally:
        session.close()
    yield


@pytest.fixture
def db():
    session = SessionLocal()
    yield session
    session.close()


@pytest.fixture
def client():
    return TestClient(app)


@pytest.fixture
def admin(db):
    s = models_db.Staff(staff_name="Amina Rahman", email="admin@school.test", role="admin",
                        house="House of Aishah")
    db.add(s); db.commit(); db.refresh(s)
    return s


@pytest.fixture
def teacher(db):
    s = models_db.Staff(staff_name="Yusuf Khan", email="teacher@school.test", role="staff",
                        house="House of Umar")
    db.add(s); db.commit(); db.refresh(s)
    return s


@pytest.fixture
def student(db):
    s = models_db.Student(student_name="Omar Ali", grade=7, section="A", house="House of Umar")
    db.add(s); db.commit(); db.refresh(s)
    return s


def add_event(db, points, when, staff_name="Yusuf Khan", student=None, house="House of Umar",
              r="Respect", subcategory="Kind words to a peer"):
    e = models_db.MeritEvent(
        student_id=student.id if student else None,
        student_name=student.student_name if student else "",
        staff_name=staff_name, house=house, r=r, subcategory=subcategory,
        points=points, date_of_event=when,
    )
    db.add(e); db.commit()
    return e
