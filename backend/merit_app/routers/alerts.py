import logging
from datetime import date, datetime, timedelta, timezone
from typing import List, Optional

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..config import get_settings
from ..deps import get_db, get_or_404, require_admin, require_staff, require_status
from ..models_db import Alert, Staff
from ..queries import event_frame, staff_names, staff_rows, today_utc
from ..schemas import AlertOut, AlertResolve
from ..utils.alert_utils import evaluate_alerts
from ..utils.analytics_utils import category_balance, house_distribution, staff_analytics, staff_participation

log = logging.getLogger("merit-api")
settings = get_settings()

router = APIRouter(prefix="/api/alerts", tags=["alerts"])

OPEN_ALERT = ("ACTIVE", "ACKNOWLEDGED")
ALERT_WINDOW_DAYS = 7


def check_and_store_alerts(db: Session, start: date, end: date) -> List[Alert]:
    """Evaluate thresholds over [start, end]; skip any (type, staff) pair that already has an ACTIVE alert."""
    events = event_frame(db, start, end)
    candidates = evaluate_alerts(
        staff_participation(events, staff_names(db)),
        category_balance(events),
        house_distribution(events, settings.HOUSES),
        staff=staff_analytics(events, staff_rows(db), settings.HOUSES, end),
    )
    active = set(db.query(Alert.alert_type, Alert.related_staff_email).filter(Alert.status == "ACTIVE").all())
    created = [Alert(status="ACTIVE", **c) for c in candidates
               if (c["alert_type"], c.get("related_staff_email")) not in active]
    if created:
        db.add_all(created)
        db.commit()
        for a in created:
            db.refresh(a)
            log.warning(f"alert raised: {a.alert_type} {a.severity} ({a.metric_value:.1f})")
    return created


def resolve_stale_alerts(db: Session, days: int) -> int:
    cutoff = datetime.now(timezone.utc).replace(tzinfo=None) - timedelta(days=days)
    stale = db.query(Alert).filter(Alert.status == "ACTIVE", Alert.created_at < cutoff).all()
    now = datetime.now(timezone.utc)
    for a in stale:
        a.status = "RESOLVED"
        a.resolved_at = now
        a.resolution_notes = f"Auto-resolved: no action taken within {days} days"
    db.commit()
    if stale:
        log.info(f"auto-resolved {len(stale)} stale alerts")
    return len(stale)


@router.get("", response_model=List[AlertOut])
def list_alerts(status: Optional[str] = "ACTIVE", db: Session = Depends(get_db),
                staff: Staff = Depends(require_staff)):
    q = db.query(Alert)
    if status:
        q = q.filter(Alert.status == status.upper())
    return q.order_by(Alert.created_at.desc(), Alert.id.desc()).all()


@router.post("/check", response_model=List[AlertOut])
def run_alert_check(db: Session = Depends(get_db), admin: Staff = Depends(require_admin)):
    end = today_utc()
    return check_and_store_alerts(db, end - timedelta(days=ALERT_WINDOW_DAYS), end)


@router.post("/{alert_id}/acknowledge", response_model=AlertOut)
def acknowledge(alert_id: int, db: Session = Depends(get_db), admin: Staff = Depends(require_admin)):
    a = get_or_404(db, Alert, alert_id, "alert")
    require_status(a, ("ACTIVE",), "acknowledge")
    a.status = "ACKNOWLEDGED"
    a.acknowledged_by = admin.email
    db.commit(); db.refresh(a)
    return a


@router.post("/{alert_id}/resolve", response_model=AlertOut)
def resolve(alert_id: int, payload: AlertResolve, db: Session = Depends(get_db),
            admin: Staff = Depends(require_admin)):
    a = get_or_404(db, Alert, alert_id, "alert")
    require_status(a, OPEN_ALERT, "resolve")
    a.status = "RESOLVED"
    a.resolution_notes = payload.notes
    a.resolved_at = datetime.now(timezone.utc)
    db.commit(); db.refresh(a)
    return a


@router.post("/{alert_id}/dismiss", response_model=AlertOut)
def dismiss(alert_id: int, db: Session = Depends(get_db), admin: Staff = Depends(require_admin)):
    a = get_or_404(db, Alert, alert_id, "alert")
    require_status(a, OPEN_ALERT, "dismiss")
    a.status = "DISMISSED"
    a.resolved_at = datetime.now(timezone.utc)
    db.commit(); db.refresh(a)
    return a
