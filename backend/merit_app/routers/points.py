import logging
from datetime import date
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from ..config import get_settings
from ..deps import checked_range, get_db, require_admin, require_staff
from ..models_db import MeritCategory, MeritEvent, Staff, Student
from ..queries import event_frame, today_utc
from ..schemas import (
    AwardRequest, AwardResponse, CategoryOut, LeaderboardResponse, MeritEventOut, PointCreate,
    StaffCreate, StaffOut, StudentCreate, StudentOut,
)
from ..utils.analytics_utils import canonical_house_name, house_mvps, house_standings

log = logging.getLogger("merit-api")
settings = get_settings()

router = APIRouter(prefix="/api", tags=["points"])


def _house_or_400(value: Optional[str]) -> Optional[str]:
    if not value:
        return None
    house = canonical_house_name(value, settings.HOUSES)
    if house is None:
        raise HTTPException(400, detail=f"unknown house: {value}")
    return house


# --------------- Roster ---------------
@router.get("/students", response_model=List[StudentOut])
def list_students(house: Optional[str] = None, grade: Optional[int] = None,
                  db: Session = Depends(get_db), staff: Staff = Depends(require_staff)):
    q = db.query(Student)
    if house:
        q = q.filter(Student.house == _house_or_400(house))
    if grade is not None:
        q = q.filter(Student.grade == grade)
    return q.order_by(Student.student_name).all()


@router.post("/students", response_model=StudentOut)
def create_student(payload: StudentCreate, db: Session = Depends(get_db), admin: Staff = Depends(require_admin)):
    data = payload.model_dump()
    data["house"] = _house_or_400(payload.house)
    s = Student(**data)
    db.add(s); db.commit(); db.refresh(s)
    return s


@router.get("/staff", response_model=List[StaffOut])
def list_staff(db: Session = Depends(get_db), staff: Staff = Depends(require_staff)):
    return db.query(Staff).order_by(Staff.staff_name).all()


@router.post("/staff", response_model=StaffOut)
def create_staff(payload: StaffCreate, db: Session = Depends(get_db), admin: Staff = Depends(require_admin)):
    if payload.role == "super_admin" and admin.role != "super_admin":
        raise HTTPException(403, detail="Only a super admin can create super admins")
    data = payload.model_dump()
    data["email"] = payload.email.strip().lower()
    data["house"] = _house_or_400(payload.house)
    s = Staff(**data)
    db.add(s); db.commit(); db.refresh(s)
    log.info(f"staff created: {s.email} ({s.role})")
    return s


@router.get("/categories", response_model=List[CategoryOut])
def list_categories(db: Session = Depends(get_db)):
    return db.query(MeritCategory).order_by(MeritCategory.r, MeritCategory.subcategory).all()


# --------------- Awards ---------------
def _student_event(db: Session, staff: Staff, name: str, student_id: Optional[int], grade, section, house,
                   r: str, subcategory: str, points: int, notes, when: date) -> MeritEvent:
    if student_id is not None:
        student = db.get(Student, student_id)
        if student is None:
            raise HTTPException(404, detail=f"student {student_id} not found")
        name = name or student.student_name
        grade = grade if grade is not None else student.grade
        section = section or student.section
        house = house or student.house
    return MeritEvent(
        student_id=student_id, student_name=name, staff_name=staff.staff_name, staff_email=staff.email,
        grade=grade, section=section, house=_house_or_400(house), r=r, subcategory=subcategory,
        points=points, notes=notes, date_of_event=when,
    )


@router.post("/points/award", response_model=AwardResponse)
def award(req: AwardRequest, db: Session = Depends(get_db), staff: Staff = Depends(require_staff)):
    when = req.event_date or today_utc()

    if req.mode == "house_competition":
        if staff.role not in ("admin", "super_admin"):
            raise HTTPException(403, detail="Admin access required")
        house = _house_or_400(req.house)
        if house is None:
            raise HTTPException(400, detail="house is required")
        if not req.points or req.points <= 0:
            raise HTTPException(400, detail="points must be a positive number")
        db.add(MeritEvent(
            student_id=None, student_name="", staff_name=staff.staff_name, staff_email=staff.email,
            house=house, r="Other", subcategory="House Competition", points=req.points,
            notes=req.notes, date_of_event=when,
        ))
        db.commit()
        log.info(f"house competition: {req.points} points to {house} by {staff.email}")
        return AwardResponse(inserted=1)

    if req.category_id is None:
        raise HTTPException(400, detail="category_id is required")
    if not req.students:
        raise HTTPException(400, detail="select at least one student")
    category = db.get(MeritCategory, req.category_id)
    if category is None:
        raise HTTPException(404, detail="category not found")

    events = [
        _student_event(db, staff, s.name.strip(), s.student_id, s.grade, s.section, s.house,
                       category.r, category.subcategory, category.points, req.notes, when)
        for s in req.students
    ]
    db.add_all(events)
    db.commit()
    log.info(f"awarded {category.points} x {len(events)} ({category.r}/{category.subcategory}) by {staff.email}")
    return AwardResponse(inserted=len(events))


@router.post("/points", response_model=MeritEventOut)
def record_event(payload: PointCreate, db: Session = Depends(get_db), staff: Staff = Depends(require_staff)):
    if payload.points == 0:
        raise HTTPException(400, detail="points must be non-zero")
    event = _student_event(db, staff, payload.student_name.strip(), payload.student_id, payload.grade,
                           payload.section, payload.house, payload.r, payload.subcategory, payload.points,
                           payload.notes, payload.date_of_event or today_utc())
    db.add(event); db.commit(); db.refresh(event)
    return event


@router.get("/points", response_model=List[MeritEventOut])
def list_events(student_id: Optional[int] = None, house: Optional[str] = None,
                start_date: Optional[date] = None, end_date: Optional[date] = None, limit: int = 200,
                db: Session = Depends(get_db), staff: Staff = Depends(require_staff)):
    q = db.query(MeritEvent)
    if student_id is not None:
        q = q.filter(MeritEvent.student_id == student_id)
    if house:
        q = q.filter(MeritEvent.house == _house_or_400(house))
    if start_date:
        q = q.filter(MeritEvent.date_of_event >= start_date)
    if end_date:
        q = q.filter(MeritEvent.date_of_event <= end_date)
    return q.order_by(MeritEvent.date_of_event.desc(), MeritEvent.id.desc()).limit(max(1, min(limit, 1000))).all()


# --------------- Leaderboard ---------------
@router.get("/leaderboard", response_model=LeaderboardResponse)
def leaderboard(start_date: Optional[date] = None, end_date: Optional[date] = None, top_n: int = 3,
                db: Session = Depends(get_db)):
    start, end = checked_range(start_date, end_date)
    events = event_frame(db, start, end)
    return LeaderboardResponse(
        start_date=start, end_date=end,
        standings=house_standings(events, settings.HOUSES),
        mvps=house_mvps(events, settings.HOUSES, top_n=top_n),
    )
