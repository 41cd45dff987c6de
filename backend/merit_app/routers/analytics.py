from datetime import date, timedelta
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from ..config import get_settings
from ..deps import checked_range, get_db, require_admin, require_staff
from ..models_db import AnalyticsSnapshot, Staff, StaffAnalytics
from ..queries import event_frame, previous_snapshot, staff_names, staff_rows, student_count, today_utc
from ..schemas import (
    CategoryBalanceResponse, HealthOverviewResponse, HouseDistributionResponse, PointEconomyResponse,
    SnapshotOut, StaffAnalyticsOut, StaffEngagementRow, StaffParticipationResponse,
)
from ..utils import analytics_utils as au

settings = get_settings()

router = APIRouter(prefix="/api", tags=["analytics"])

SNAPSHOT_TYPES = ("daily", "weekly", "monthly")


@router.get("/analytics/staff-participation", response_model=StaffParticipationResponse)
def staff_participation(start_date: Optional[date] = None, end_date: Optional[date] = None,
                        db: Session = Depends(get_db), staff: Staff = Depends(require_staff)):
    start, end = checked_range(start_date, end_date)
    return au.staff_participation(event_frame(db, start, end), staff_names(db))


@router.get("/analytics/point-economy", response_model=PointEconomyResponse)
def point_economy(start_date: Optional[date] = None, end_date: Optional[date] = None,
                  db: Session = Depends(get_db), staff: Staff = Depends(require_staff)):
    start, end = checked_range(start_date, end_date)
    return au.point_economy(event_frame(db, start, end), student_count(db))


@router.get("/analytics/category-balance", response_model=CategoryBalanceResponse)
def category_balance(start_date: Optional[date] = None, end_date: Optional[date] = None,
                     db: Session = Depends(get_db), staff: Staff = Depends(require_staff)):
    start, end = checked_range(start_date, end_date)
    return au.category_balance(event_frame(db, start, end))


@router.get("/analytics/house-distribution", response_model=HouseDistributionResponse)
def house_distribution(start_date: Optional[date] = None, end_date: Optional[date] = None,
                       db: Session = Depends(get_db), staff: Staff = Depends(require_staff)):
    start, end = checked_range(start_date, end_date)
    return au.house_distribution(event_frame(db, start, end), settings.HOUSES)


# --------------- Staff bias / outliers ---------------
@router.get("/analytics/staff-analytics", response_model=List[StaffAnalyticsOut])
def staff_analytics(start_date: Optional[date] = None, end_date: Optional[date] = None, period: str = "weekly",
                    db: Session = Depends(get_db), admin: Staff = Depends(require_admin)):
    """Live per-staff bias and outlier analysis; defaults to the trailing week."""
    if period not in SNAPSHOT_TYPES:
        raise HTTPException(400, detail=f"period must be one of {list(SNAPSHOT_TYPES)}")
    start, end = checked_range(start_date, end_date, days=7)
    return au.staff_analytics(event_frame(db, start, end), staff_rows(db), settings.HOUSES, end, period)


@router.get("/analytics/staff-analytics/outliers", response_model=List[StaffAnalyticsOut])
def staff_outliers(db: Session = Depends(get_db), admin: Staff = Depends(require_admin)):
    return (db.query(StaffAnalytics)
            .filter(StaffAnalytics.outlier_flag.is_(True))
            .order_by(StaffAnalytics.analysis_date.desc(), StaffAnalytics.id)
            .all())


@router.get("/analytics/staff-analytics/bias", response_model=List[StaffAnalyticsOut])
def staff_with_bias(threshold: float = au.BIAS_FLAG_COEFFICIENT, db: Session = Depends(get_db),
                    admin: Staff = Depends(require_admin)):
    return (db.query(StaffAnalytics)
            .filter(StaffAnalytics.house_bias_coefficient >= threshold)
            .order_by(StaffAnalytics.analysis_date.desc(), StaffAnalytics.id)
            .all())


@router.get("/analytics/health-overview", response_model=HealthOverviewResponse)
def health_overview(start_date: Optional[date] = None, end_date: Optional[date] = None,
                    db: Session = Depends(get_db), staff: Staff = Depends(require_staff)):
    """Live composite health for the range, alongside the most recent saved daily snapshot."""
    start, end = checked_range(start_date, end_date)
    snapshot = au.build_snapshot(
        event_frame(db, start, end), staff_names(db), student_count(db), settings.HOUSES,
        start, end, "daily", previous=previous_snapshot(db, "daily", end),
    )
    latest = (db.query(AnalyticsSnapshot)
              .filter(AnalyticsSnapshot.snapshot_type == "daily")
              .order_by(AnalyticsSnapshot.snapshot_date.desc())
              .first())
    return HealthOverviewResponse(
        start_date=start, end_date=end,
        snapshot=SnapshotOut(**snapshot),
        latest_saved=SnapshotOut.model_validate(latest) if latest else None,
    )


@router.get("/analytics/snapshots", response_model=List[SnapshotOut])
def list_snapshots(snapshot_type: str = "daily", limit: int = 30,
                   db: Session = Depends(get_db), staff: Staff = Depends(require_staff)):
    if snapshot_type not in SNAPSHOT_TYPES:
        raise HTTPException(400, detail=f"snapshot_type must be one of {list(SNAPSHOT_TYPES)}")
    return (db.query(AnalyticsSnapshot)
            .filter(AnalyticsSnapshot.snapshot_type == snapshot_type)
            .order_by(AnalyticsSnapshot.snapshot_date.desc())
            .limit(max(1, min(limit, 365)))
            .all())


@router.get("/staff/engagement", response_model=List[StaffEngagementRow])
def staff_engagement(month: Optional[date] = None, db: Session = Depends(get_db),
                     staff: Staff = Depends(require_staff)):
    """Ranked staff engagement for the month containing `month` (default: current month)."""
    first = (month or today_utc()).replace(day=1)
    end = (first + timedelta(days=32)).replace(day=1) - timedelta(days=1)
    events = event_frame(db, first, end)
    return au.staff_engagement(events, staff_rows(db), first, settings.SCHOOL_BREAKS)
