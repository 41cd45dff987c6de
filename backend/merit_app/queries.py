from datetime import date, datetime, timedelta, timezone
from typing import Dict, List, Optional, Tuple

import pandas as pd
from sqlalchemy.orm import Session

from .models_db import AnalyticsSnapshot, MeritEvent, Staff, StaffAnalytics, Student
from .utils.analytics_utils import EVENT_COLUMNS, to_events_frame


def today_utc() -> date:
    return datetime.now(timezone.utc).date()


def resolve_range(start: Optional[date], end: Optional[date], days: int = 30) -> Tuple[date, date]:
    end = end or today_utc()
    start = start or end - timedelta(days=days)
    return start, end


def event_frame(db: Session, start: date, end: date) -> pd.DataFrame:
    rows = (db.query(MeritEvent)
            .filter(MeritEvent.date_of_event >= start, MeritEvent.date_of_event <= end)
            .all())
    return to_events_frame({c: getattr(r, c) for c in EVENT_COLUMNS} for r in rows)


def staff_names(db: Session) -> List[str]:
    return [name for (name,) in db.query(Staff.staff_name).all()]


def staff_rows(db: Session) -> List[Dict]:
    return [{"staff_name": s.staff_name, "email": s.email, "house": s.house}
            for s in db.query(Staff).order_by(Staff.staff_name).all()]


def student_count(db: Session) -> int:
    return db.query(Student).count()


def previous_snapshot(db: Session, snapshot_type: str, before: date) -> Optional[Dict]:
    prev = (db.query(AnalyticsSnapshot)
            .filter(AnalyticsSnapshot.snapshot_type == snapshot_type, AnalyticsSnapshot.snapshot_date < before)
            .order_by(AnalyticsSnapshot.snapshot_date.desc())
            .first())
    if prev is None:
        return None
    return {"staff_participation_rate": prev.staff_participation_rate,
            "total_points_awarded": prev.total_points_awarded}


def upsert_snapshot(db: Session, data: Dict) -> AnalyticsSnapshot:
    row = (db.query(AnalyticsSnapshot)
           .filter(AnalyticsSnapshot.snapshot_date == data["snapshot_date"],
                   AnalyticsSnapshot.snapshot_type == data["snapshot_type"])
           .first())
    if row is None:
        row = AnalyticsSnapshot(**data)
        db.add(row)
    else:
        for key, value in data.items():
            setattr(row, key, value)
    db.commit()
    db.refresh(row)
    return row


def upsert_staff_analytics(db: Session, records: List[Dict]) -> int:
    for data in records:
        row = (db.query(StaffAnalytics)
               .filter(StaffAnalytics.staff_email == data["staff_email"],
                       StaffAnalytics.analysis_date == data["analysis_date"],
                       StaffAnalytics.analysis_period == data["analysis_period"])
               .first())
        if row is None:
            db.add(StaffAnalytics(**data))
        else:
            for key, value in data.items():
                setattr(row, key, value)
    db.commit()
    return len(records)
