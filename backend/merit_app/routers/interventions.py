import logging
from datetime import datetime, timedelta, timezone
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy import func
from sqlalchemy.orm import Session

from ..deps import get_db, get_or_404, require_staff, require_status
from ..models_db import (
    BehavioralDomain, InterventionThreshold, LevelAIntervention, LevelBIntervention, LevelCCase,
    MeritEvent, ReentryProtocol, Staff, Student,
)
from ..queries import today_utc
from ..schemas import (
    DailySuccessRate, DecisionResponse, DomainOut, IncidentAssessment, InterventionSummary, LevelACreate,
    LevelAOut, LevelAOutcomeUpdate, LevelAStats, LevelBCompleteResponse, LevelBCreate, LevelBMonitoringStart,
    LevelBOut, LevelBStepUpdate, LoggingGuidance, StudentThresholdStatus, ThresholdOut,
)
from ..utils import intervention_utils as iu

log = logging.getLogger("merit-api")

router = APIRouter(prefix="/api/interventions", tags=["interventions"])

COMPLETED_B = ("completed_success", "completed_escalated")


def _utcnow() -> datetime:
    # naive UTC, matching what the database default stores
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _pattern_student(db: Session, student_id: int, domain_id: int) -> bool:
    since = _utcnow() - timedelta(days=iu.PATTERN_WINDOW_DAYS)
    count = (db.query(LevelAIntervention)
             .filter(LevelAIntervention.student_id == student_id,
                     LevelAIntervention.domain_id == domain_id,
                     LevelAIntervention.event_timestamp >= since)
             .count())
    return count >= iu.PATTERN_INCIDENTS


def _level_a_today(db: Session, student_id: int, domain_id: int) -> int:
    midnight = _utcnow().replace(hour=0, minute=0, second=0, microsecond=0)
    return (db.query(LevelAIntervention)
            .filter(LevelAIntervention.student_id == student_id,
                    LevelAIntervention.domain_id == domain_id,
                    LevelAIntervention.event_timestamp >= midnight)
            .count())


def _completed_level_b(db: Session, student_id: int, domain_id: int) -> int:
    return (db.query(LevelBIntervention)
            .filter(LevelBIntervention.student_id == student_id,
                    LevelBIntervention.domain_id == domain_id,
                    LevelBIntervention.status.in_(COMPLETED_B))
            .count())


# --------------- Reference data ---------------
@router.get("/domains", response_model=List[DomainOut])
def list_domains(db: Session = Depends(get_db)):
    return db.query(BehavioralDomain).filter(BehavioralDomain.is_active.is_(True)).order_by(BehavioralDomain.id).all()


@router.get("/thresholds", response_model=List[ThresholdOut])
def list_thresholds(db: Session = Depends(get_db)):
    return (db.query(InterventionThreshold)
            .filter(InterventionThreshold.is_active.is_(True))
            .order_by(InterventionThreshold.demerit_points)
            .all())


@router.get("/thresholds/student/{student_id}", response_model=StudentThresholdStatus)
def student_threshold(student_id: int, db: Session = Depends(get_db), staff: Staff = Depends(require_staff)):
    get_or_404(db, Student, student_id, "student")
    demerits = (db.query(func.coalesce(func.sum(MeritEvent.points), 0))
                .filter(MeritEvent.student_id == student_id, MeritEvent.points < 0)
                .scalar())
    points = abs(int(demerits))
    thresholds = db.query(InterventionThreshold).all()
    reached = iu.threshold_for_points(points, [
        {"id": t.id, "demerit_points": t.demerit_points, "is_active": t.is_active} for t in thresholds
    ])
    row = next((t for t in thresholds if reached and t.id == reached["id"]), None)
    return StudentThresholdStatus(
        student_id=student_id, demerit_points=points,
        threshold=ThresholdOut.model_validate(row) if row else None,
    )


@router.get("/reflection-prompts", response_model=List[str])
def reflection_prompts():
    return iu.reflection_prompts()


@router.get("/reset-goals/{domain_key}", response_model=List[str])
def reset_goals(domain_key: str):
    return iu.reset_goal_examples(domain_key)


# --------------- Decision tree ---------------
@router.post("/decision", response_model=DecisionResponse)
def decide(req: IncidentAssessment, db: Session = Depends(get_db), staff: Staff = Depends(require_staff)):
    get_or_404(db, Student, req.student_id, "student")
    get_or_404(db, BehavioralDomain, req.domain_id, "domain")
    result = iu.determine_level(
        is_safety_incident=req.is_safety_incident,
        demerit_assigned=req.demerit_assigned,
        ignored_prompts=req.ignored_prompts,
        is_pattern_student=_pattern_student(db, req.student_id, req.domain_id),
        affected_peers=req.affected_peers,
        disrupted_space=req.disrupted_space,
        is_safety_risk=req.is_safety_risk,
        prior_level_b_count=_completed_level_b(db, req.student_id, req.domain_id),
    )
    return DecisionResponse(summary=iu.escalation_summary(result["recommended_level"]), **result)


# --------------- Level A ---------------
@router.get("/level-a/should-log", response_model=LoggingGuidance)
def level_a_should_log(student_id: int, domain_id: int, affected_others: bool = False,
                       db: Session = Depends(get_db), staff: Staff = Depends(require_staff)):
    return iu.should_log_level_a(affected_others, _pattern_student(db, student_id, domain_id),
                                 _level_a_today(db, student_id, domain_id))


@router.post("/level-a", response_model=LevelAOut)
def create_level_a(payload: LevelACreate, db: Session = Depends(get_db), staff: Staff = Depends(require_staff)):
    get_or_404(db, Student, payload.student_id, "student")
    get_or_404(db, BehavioralDomain, payload.domain_id, "domain")
    a = LevelAIntervention(
        staff_name=staff.staff_name,
        is_pattern_student=_pattern_student(db, payload.student_id, payload.domain_id),
        is_repeated_same_day=_level_a_today(db, payload.student_id, payload.domain_id) > 0,
        escalated_to_b=payload.outcome == "escalated",
        **payload.model_dump(),
    )
    db.add(a); db.commit(); db.refresh(a)
    log.info(f"level A {a.id}: student {a.student_id} {a.intervention_type} -> {a.outcome}")
    return a


@router.get("/level-a", response_model=List[LevelAOut])
def list_level_a(student_id: Optional[int] = None, domain_id: Optional[int] = None, limit: int = 100,
                 db: Session = Depends(get_db), staff: Staff = Depends(require_staff)):
    q = db.query(LevelAIntervention)
    if student_id is not None:
        q = q.filter(LevelAIntervention.student_id == student_id)
    if domain_id is not None:
        q = q.filter(LevelAIntervention.domain_id == domain_id)
    return q.order_by(LevelAIntervention.id.desc()).limit(max(1, min(limit, 500))).all()


@router.patch("/level-a/{intervention_id}/outcome", response_model=LevelAOut)
def update_level_a_outcome(intervention_id: int, payload: LevelAOutcomeUpdate, db: Session = Depends(get_db),
                           staff: Staff = Depends(require_staff)):
    a = get_or_404(db, LevelAIntervention, intervention_id, "level A intervention")
    a.outcome = payload.outcome
    a.escalated_to_b = payload.escalated_to_b or payload.outcome == "escalated"
    db.commit(); db.refresh(a)
    return a


@router.get("/level-a/stats/{student_id}", response_model=LevelAStats)
def level_a_stats(student_id: int, days: int = 30, db: Session = Depends(get_db),
                  staff: Staff = Depends(require_staff)):
    since = _utcnow() - timedelta(days=days)
    rows = (db.query(LevelAIntervention)
            .filter(LevelAIntervention.student_id == student_id, LevelAIntervention.event_timestamp >= since)
            .all())
    return iu.level_a_stats([
        {"domain_key": r.domain.domain_key if r.domain else None, "outcome": r.outcome,
         "escalated_to_b": r.escalated_to_b}
        for r in rows
    ])


# --------------- Level B ---------------
def level_b_out(b: LevelBIntervention) -> LevelBOut:
    return LevelBOut.model_validate(b).model_copy(update={"completion_percentage": iu.level_b_completion(b)})


def complete_level_b(db: Session, b: LevelBIntervention) -> bool:
    result = iu.evaluate_monitoring(b.daily_success_rates or {})
    for key, value in result.items():
        setattr(b, key, value)
    db.commit(); db.refresh(b)
    log.info(f"level B {b.id} completed: {b.status} ({b.final_success_rate:.1f}%)")
    return b.escalated_to_c


@router.post("/level-b", response_model=LevelBOut)
def create_level_b(payload: LevelBCreate, db: Session = Depends(get_db), staff: Staff = Depends(require_staff)):
    get_or_404(db, Student, payload.student_id, "student")
    get_or_404(db, BehavioralDomain, payload.domain_id, "domain")
    if payload.escalated_from_level_a_id is not None:
        a = get_or_404(db, LevelAIntervention, payload.escalated_from_level_a_id, "level A intervention")
        a.escalated_to_b = True
    b = LevelBIntervention(staff_name=staff.staff_name, status="in_progress", **payload.model_dump())
    db.add(b); db.commit(); db.refresh(b)
    log.info(f"level B {b.id}: student {b.student_id} trigger {b.escalation_trigger}")
    return level_b_out(b)


@router.get("/level-b", response_model=List[LevelBOut])
def list_level_b(student_id: Optional[int] = None, status: Optional[str] = None,
                 db: Session = Depends(get_db), staff: Staff = Depends(require_staff)):
    q = db.query(LevelBIntervention)
    if student_id is not None:
        q = q.filter(LevelBIntervention.student_id == student_id)
    if status:
        q = q.filter(LevelBIntervention.status == status)
    return [level_b_out(b) for b in q.order_by(LevelBIntervention.id.desc()).all()]


@router.get("/level-b/{intervention_id}", response_model=LevelBOut)
def get_level_b(intervention_id: int, db: Session = Depends(get_db), staff: Staff = Depends(require_staff)):
    return level_b_out(get_or_404(db, LevelBIntervention, intervention_id, "level B intervention"))


@router.patch("/level-b/{intervention_id}/step", response_model=LevelBOut)
def update_level_b_step(intervention_id: int, payload: LevelBStepUpdate, db: Session = Depends(get_db),
                        staff: Staff = Depends(require_staff)):
    b = get_or_404(db, LevelBIntervention, intervention_id, "level B intervention")
    require_status(b, ("in_progress",), "update steps")

    flag, *fields = iu.LEVEL_B_STEPS[payload.step]
    unknown = sorted(set(payload.data) - set(fields))
    if unknown:
        raise HTTPException(400, detail=f"unknown fields for step B{payload.step}: {unknown}")
    if "b6_reset_goal_timeline_days" in payload.data:
        days = payload.data["b6_reset_goal_timeline_days"]
        if isinstance(days, bool) or not isinstance(days, int) or not 1 <= days <= 3:
            raise HTTPException(400, detail="reset goal timeline must be 1 to 3 days")
    if "monitoring_method" in payload.data and payload.data["monitoring_method"] not in iu.MONITORING_METHODS:
        raise HTTPException(400, detail=f"monitoring_method must be one of {iu.MONITORING_METHODS}")

    for key, value in payload.data.items():
        setattr(b, key, value)
    setattr(b, flag, True)
    db.commit(); db.refresh(b)
    return level_b_out(b)


@router.post("/level-b/{intervention_id}/start-monitoring", response_model=LevelBOut)
def start_level_b_monitoring(intervention_id: int, payload: LevelBMonitoringStart, db: Session = Depends(get_db),
                             staff: Staff = Depends(require_staff)):
    b = get_or_404(db, LevelBIntervention, intervention_id, "level B intervention")
    require_status(b, ("in_progress",), "start monitoring")
    window = iu.monitoring_window(today_utc(), b.b6_reset_goal_timeline_days)
    b.monitoring_start_date = window["monitoring_start_date"]
    b.monitoring_end_date = window["monitoring_end_date"]
    b.monitoring_method = payload.monitoring_method
    b.b7_documentation_completed = True
    b.status = "monitoring"
    db.commit(); db.refresh(b)
    return level_b_out(b)


@router.post("/level-b/{intervention_id}/daily-rate", response_model=LevelBOut)
def record_daily_rate(intervention_id: int, payload: DailySuccessRate, db: Session = Depends(get_db),
                      staff: Staff = Depends(require_staff)):
    b = get_or_404(db, LevelBIntervention, intervention_id, "level B intervention")
    require_status(b, ("monitoring",), "record success rates")
    # reassign so the JSON column is flagged dirty
    b.daily_success_rates = {**(b.daily_success_rates or {}), payload.date.isoformat(): payload.success_rate}
    db.commit(); db.refresh(b)
    return level_b_out(b)


@router.post("/level-b/{intervention_id}/complete", response_model=LevelBCompleteResponse)
def complete_level_b_monitoring(intervention_id: int, db: Session = Depends(get_db),
                                staff: Staff = Depends(require_staff)):
    b = get_or_404(db, LevelBIntervention, intervention_id, "level B intervention")
    require_status(b, ("monitoring",), "complete monitoring")
    should_escalate = complete_level_b(db, b)
    return LevelBCompleteResponse(intervention=level_b_out(b), should_escalate=should_escalate)


# --------------- Framework analytics ---------------
@router.get("/analytics", response_model=InterventionSummary)
def intervention_analytics(days: int = 30, db: Session = Depends(get_db), staff: Staff = Depends(require_staff)):
    since = _utcnow() - timedelta(days=days)
    level_a = db.query(LevelAIntervention).filter(LevelAIntervention.event_timestamp >= since).all()
    level_b = db.query(LevelBIntervention).filter(LevelBIntervention.conference_timestamp >= since).all()
    level_c = db.query(LevelCCase).filter(LevelCCase.created_at >= since).all()
    reentries = db.query(ReentryProtocol).filter(ReentryProtocol.created_at >= since).count()
    return iu.intervention_summary(
        [{"escalated_to_b": a.escalated_to_b} for a in level_a],
        [{"escalated_to_c": b.escalated_to_c, "status": b.status} for b in level_b],
        [{"status": c.status} for c in level_c],
        reentries,
    )
