import logging
from datetime import date, datetime, timedelta, timezone
from typing import List

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..config import get_settings
from ..deps import get_db, verify_cron_secret
from ..models_db import LevelBIntervention, LevelCCase, ReentryProtocol
from ..queries import (
    event_frame, previous_snapshot, staff_names, staff_rows, student_count, today_utc, upsert_snapshot,
    upsert_staff_analytics,
)
from ..schemas import CronResponse
from ..utils.analytics_utils import BIAS_FLAG_COEFFICIENT, build_snapshot, staff_analytics
from .alerts import ALERT_WINDOW_DAYS, check_and_store_alerts, resolve_stale_alerts
from .interventions import complete_level_b

log = logging.getLogger("merit-api")
settings = get_settings()

router = APIRouter(prefix="/api/cron", tags=["cron"], dependencies=[Depends(verify_cron_secret)])

CASE_STALE_DAYS = 3
STALE_CASE_STATUSES = ("active", "admin_response", "pending_reentry")


def save_snapshot(db: Session, start: date, end: date, snapshot_type: str) -> dict:
    data = build_snapshot(
        event_frame(db, start, end), staff_names(db), student_count(db), settings.HOUSES,
        start, end, snapshot_type, previous=previous_snapshot(db, snapshot_type, end),
    )
    row = upsert_snapshot(db, data)
    return {"snapshot_date": row.snapshot_date.isoformat(), "score": row.overall_health_score, "status": row.status}


def save_staff_analytics(db: Session, start: date, end: date, period: str = "weekly") -> dict:
    records = staff_analytics(event_frame(db, start, end), staff_rows(db), settings.HOUSES, end, period)
    upsert_staff_analytics(db, records)
    return {
        "staff_count": len(records),
        "outliers": sum(1 for r in records if r["outlier_flag"]),
        "bias_flags": sum(1 for r in records if r["house_bias_coefficient"] >= BIAS_FLAG_COEFFICIENT),
    }


@router.api_route("/daily-analytics", methods=["GET", "POST"], response_model=CronResponse)
def daily_analytics(db: Session = Depends(get_db)):
    today = today_utc()
    steps = [("daily", lambda: save_snapshot(db, today - timedelta(days=1), today, "daily"))]
    if today.weekday() == 6:
        steps.append(("weekly", lambda: save_snapshot(db, today - timedelta(days=7), today, "weekly")))
    if today.day == 1:
        steps.append(("monthly", lambda: save_snapshot(db, today - timedelta(days=30), today, "monthly")))
    steps.append(("staff_analytics", lambda: save_staff_analytics(db, today - timedelta(days=7), today)))
    steps.append(("alerts", lambda: {"created": len(check_and_store_alerts(
        db, today - timedelta(days=ALERT_WINDOW_DAYS), today))}))
    steps.append(("stale_alerts", lambda: {"resolved": resolve_stale_alerts(db, settings.STALE_ALERT_DAYS)}))

    results, errors = {}, []
    for name, step in steps:
        try:
            results[name] = {"success": True, **step()}
        except Exception as e:
            db.rollback()
            log.exception(f"daily analytics step {name} failed")
            results[name] = {"success": False, "error": str(e)}
            errors.append(f"{name}: {e}")

    log.info(f"daily analytics finished: {len(steps) - len(errors)}/{len(steps)} steps ok")
    return CronResponse(
        success=not errors,
        message="Daily analytics completed" if not errors else "Daily analytics completed with errors",
        results=results, errors=errors,
    )


def overdue_level_c(db: Session, today: date, stale_days: int = CASE_STALE_DAYS) -> List[dict]:
    """Open cases untouched for `stale_days`, and cases monitored past their duration."""
    cutoff = datetime.now(timezone.utc).replace(tzinfo=None) - timedelta(days=stale_days)
    out = []
    stale = (db.query(LevelCCase)
             .filter(LevelCCase.status.in_(STALE_CASE_STATUSES), LevelCCase.updated_at < cutoff)
             .order_by(LevelCCase.id)
             .all())
    for c in stale:
        out.append({"id": c.id, "student_id": c.student_id, "status": c.status,
                    "reason": f"No update in {stale_days} days"})
    for c in db.query(LevelCCase).filter(LevelCCase.status == "monitoring").order_by(LevelCCase.id).all():
        start = c.reentry_date or c.created_at.date()
        days = c.monitoring_duration_days or 14
        if today > start + timedelta(days=days):
            out.append({"id": c.id, "student_id": c.student_id, "status": c.status,
                        "reason": f"Monitoring period exceeded ({days} days)"})
    return out


def overdue_reentry(db: Session, today: date) -> List[dict]:
    out = []
    ended = (db.query(ReentryProtocol)
             .filter(ReentryProtocol.status == "active", ReentryProtocol.monitoring_end_date < today)
             .order_by(ReentryProtocol.id)
             .all())
    for r in ended:
        out.append({"id": r.id, "student_id": r.student_id, "status": r.status,
                    "reason": "Monitoring period ended, awaiting completion"})
    not_started = (db.query(ReentryProtocol)
                   .filter(ReentryProtocol.status.in_(("pending", "ready")), ReentryProtocol.reentry_date < today)
                   .order_by(ReentryProtocol.id)
                   .all())
    for r in not_started:
        out.append({"id": r.id, "student_id": r.student_id, "status": r.status,
                    "reason": "Re-entry date passed but not started"})
    return out


@router.api_route("/intervention-monitoring", methods=["GET", "POST"], response_model=CronResponse)
def intervention_monitoring(db: Session = Depends(get_db)):
    today = today_utc()
    # the last monitoring day still gets logged, so only periods that ended before today close
    due = (db.query(LevelBIntervention)
           .filter(LevelBIntervention.status == "monitoring", LevelBIntervention.monitoring_end_date < today)
           .all())
    completed, escalated, errors = 0, 0, []
    for b in due:
        try:
            if complete_level_b(db, b):
                escalated += 1
            completed += 1
        except Exception as e:
            db.rollback()
            log.exception(f"closing level B {b.id} failed")
            errors.append(f"level_b {b.id}: {e}")

    level_c = overdue_level_c(db, today)
    reentry = overdue_reentry(db, today)
    if level_c or reentry:
        log.warning(f"overdue interventions: {len(level_c)} level C cases, {len(reentry)} re-entries")

    return CronResponse(
        success=not errors,
        message=f"Processed {completed} expired monitoring periods",
        results={"due": len(due), "completed": completed, "escalated": escalated,
                 "level_c_overdue": level_c, "reentry_overdue": reentry},
        errors=errors,
    )
