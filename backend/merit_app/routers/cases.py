import logging
from datetime import datetime, timezone
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from ..deps import get_db, get_or_404, require_admin, require_staff, require_status
from ..models_db import LevelBIntervention, LevelCCase, ReentryProtocol, Staff, Student
from ..queries import today_utc
from ..schemas import (
    AdminResponseCreate, CaseClose, CaseManagerAssign, ChecklistUpdate, ContextPacketUpdate, DailyCheckIn,
    DailyLog, LevelCCreate, LevelCOut, ReentryComplete, ReentryCreate, ReentryOut, ReentryPlanCreate,
    ScriptRequest,
)
from ..utils import intervention_utils as iu

log = logging.getLogger("merit-api")

router = APIRouter(prefix="/api/interventions", tags=["cases"])

OPEN_CASE = ("active", "admin_response", "pending_reentry", "monitoring")


# --------------- Level C ---------------
@router.post("/level-c", response_model=LevelCOut)
def create_level_c(payload: LevelCCreate, db: Session = Depends(get_db), admin: Staff = Depends(require_admin)):
    get_or_404(db, Student, payload.student_id, "student")
    level_b = [get_or_404(db, LevelBIntervention, b_id, "level B intervention")
               for b_id in payload.escalated_from_level_b_ids]
    for b in level_b:
        b.escalated_to_c = True

    case_type = payload.case_type or iu.case_type_for_trigger(payload.trigger_type)
    data = payload.model_dump(exclude={"case_type"})
    c = LevelCCase(
        case_type=case_type,
        monitoring_duration_days=iu.monitoring_days_for_case(case_type),
        status="active",
        **data,
    )
    db.add(c); db.commit(); db.refresh(c)
    log.info(f"level C case {c.id}: student {c.student_id} {c.trigger_type} ({c.case_type})")
    return c


@router.get("/level-c", response_model=List[LevelCOut])
def list_level_c(student_id: Optional[int] = None, status: Optional[str] = None,
                 db: Session = Depends(get_db), staff: Staff = Depends(require_staff)):
    q = db.query(LevelCCase)
    if student_id is not None:
        q = q.filter(LevelCCase.student_id == student_id)
    if status:
        q = q.filter(LevelCCase.status == status)
    return q.order_by(LevelCCase.id.desc()).all()


@router.get("/level-c/{case_id}", response_model=LevelCOut)
def get_level_c(case_id: int, db: Session = Depends(get_db), staff: Staff = Depends(require_staff)):
    return get_or_404(db, LevelCCase, case_id, "level C case")


@router.patch("/level-c/{case_id}/case-manager", response_model=LevelCOut)
def assign_case_manager(case_id: int, payload: CaseManagerAssign, db: Session = Depends(get_db),
                        admin: Staff = Depends(require_admin)):
    c = get_or_404(db, LevelCCase, case_id, "level C case")
    require_status(c, OPEN_CASE, "assign a case manager")
    c.case_manager_name = payload.case_manager_name
    db.commit(); db.refresh(c)
    return c


@router.patch("/level-c/{case_id}/context-packet", response_model=LevelCOut)
def update_context_packet(case_id: int, payload: ContextPacketUpdate, db: Session = Depends(get_db),
                          admin: Staff = Depends(require_admin)):
    c = get_or_404(db, LevelCCase, case_id, "level C case")
    require_status(c, ("active",), "update the context packet")
    for key, value in payload.model_dump(exclude_none=True).items():
        setattr(c, key, value)
    if iu.context_packet_complete(c.incident_summary, c.pattern_review, c.environmental_factors,
                                  c.prior_interventions_summary):
        c.context_packet_completed = True
        c.status = "admin_response"
    db.commit(); db.refresh(c)
    return c


@router.post("/level-c/{case_id}/admin-response", response_model=LevelCOut)
def record_admin_response(case_id: int, payload: AdminResponseCreate, db: Session = Depends(get_db),
                          admin: Staff = Depends(require_admin)):
    c = get_or_404(db, LevelCCase, case_id, "level C case")
    require_status(c, ("admin_response",), "record an admin response")
    if (payload.consequence_start_date and payload.consequence_end_date
            and payload.consequence_end_date < payload.consequence_start_date):
        raise HTTPException(400, detail="consequence_end_date must not be before consequence_start_date")
    for key, value in payload.model_dump().items():
        setattr(c, key, value)
    c.admin_response_completed = True
    c.status = "pending_reentry"
    db.commit(); db.refresh(c)
    return c


@router.post("/level-c/{case_id}/reentry-plan", response_model=LevelCOut)
def record_reentry_plan(case_id: int, payload: ReentryPlanCreate, db: Session = Depends(get_db),
                        admin: Staff = Depends(require_admin)):
    c = get_or_404(db, LevelCCase, case_id, "level C case")
    require_status(c, ("pending_reentry",), "plan re-entry")
    data = payload.model_dump()
    if data["reentry_checklist"] is None:
        data["reentry_checklist"] = iu.default_readiness_checklist()
    for key, value in data.items():
        setattr(c, key, value)
    c.reentry_planning_completed = True
    db.commit(); db.refresh(c)
    return c


@router.post("/level-c/{case_id}/start-monitoring", response_model=LevelCOut)
def start_case_monitoring(case_id: int, db: Session = Depends(get_db), admin: Staff = Depends(require_admin)):
    c = get_or_404(db, LevelCCase, case_id, "level C case")
    require_status(c, ("pending_reentry",), "start monitoring")
    if not c.reentry_planning_completed:
        raise HTTPException(409, detail="re-entry plan must be completed before monitoring")
    schedule = iu.review_schedule(c.reentry_date or today_utc(), c.monitoring_duration_days)
    c.monitoring_schedule = schedule
    c.review_dates = [item["date"] for item in schedule]
    c.status = "monitoring"
    db.commit(); db.refresh(c)
    return c


@router.post("/level-c/{case_id}/check-in", response_model=LevelCOut)
def record_check_in(case_id: int, payload: DailyCheckIn, db: Session = Depends(get_db),
                    staff: Staff = Depends(require_staff)):
    c = get_or_404(db, LevelCCase, case_id, "level C case")
    require_status(c, ("monitoring",), "record a check-in")
    entry = payload.model_dump(mode="json")
    entry["recorded_by"] = staff.staff_name
    c.daily_check_ins = [*(c.daily_check_ins or []), entry]
    db.commit(); db.refresh(c)
    return c


@router.post("/level-c/{case_id}/close", response_model=LevelCOut)
def close_case(case_id: int, payload: CaseClose, db: Session = Depends(get_db), admin: Staff = Depends(require_admin)):
    c = get_or_404(db, LevelCCase, case_id, "level C case")
    require_status(c, OPEN_CASE, "close the case")
    c.outcome_status = payload.outcome_status
    c.outcome_notes = payload.outcome_notes
    if payload.closure_criteria:
        c.closure_criteria = payload.closure_criteria
    c.closure_date = today_utc()
    c.status = "closed"
    db.commit(); db.refresh(c)
    log.info(f"level C case {c.id} closed: {c.outcome_status}")
    return c


# --------------- Re-entry ---------------
@router.post("/reentry", response_model=ReentryOut)
def create_reentry(payload: ReentryCreate, db: Session = Depends(get_db), staff: Staff = Depends(require_staff)):
    get_or_404(db, Student, payload.student_id, "student")
    reset_goal = None
    if payload.source_type == "level_b":
        if payload.level_b_id is None:
            raise HTTPException(400, detail="level_b_id is required for level_b re-entry")
        reset_goal = get_or_404(db, LevelBIntervention, payload.level_b_id, "level B intervention").b6_reset_goal
    if payload.level_c_id is not None:
        get_or_404(db, LevelCCase, payload.level_c_id, "level C case")

    r = ReentryProtocol(
        readiness_checklist=iu.default_readiness_checklist(),
        reset_goal_from_intervention=reset_goal,
        teacher_script=iu.teacher_script(reset_goal) if reset_goal else None,
        monitoring_method=iu.reentry_monitoring_method(payload.source_type),
        monitoring_start_date=payload.reentry_date,
        monitoring_end_date=iu.reentry_monitoring_end(payload.reentry_date, payload.monitoring_type),
        status="pending",
        **payload.model_dump(),
    )
    db.add(r); db.commit(); db.refresh(r)
    log.info(f"re-entry {r.id}: student {r.student_id} from {r.source_type}")
    return r


@router.get("/reentry", response_model=List[ReentryOut])
def list_reentry(student_id: Optional[int] = None, status: Optional[str] = None,
                 db: Session = Depends(get_db), staff: Staff = Depends(require_staff)):
    q = db.query(ReentryProtocol)
    if student_id is not None:
        q = q.filter(ReentryProtocol.student_id == student_id)
    if status:
        q = q.filter(ReentryProtocol.status == status)
    return q.order_by(ReentryProtocol.reentry_date.desc(), ReentryProtocol.id.desc()).all()


@router.get("/reentry/{reentry_id}", response_model=ReentryOut)
def get_reentry(reentry_id: int, db: Session = Depends(get_db), staff: Staff = Depends(require_staff)):
    return get_or_404(db, ReentryProtocol, reentry_id, "re-entry protocol")


@router.patch("/reentry/{reentry_id}/checklist", response_model=ReentryOut)
def update_checklist(reentry_id: int, payload: ChecklistUpdate, db: Session = Depends(get_db),
                     staff: Staff = Depends(require_staff)):
    r = get_or_404(db, ReentryProtocol, reentry_id, "re-entry protocol")
    require_status(r, ("pending", "ready"), "update the readiness checklist")
    checklist = [item.model_dump() for item in payload.checklist]
    r.readiness_checklist = checklist
    if checklist and all(item["completed"] for item in checklist):
        r.status = "ready"
        r.readiness_verified_by = staff.staff_name
        r.readiness_verified_at = datetime.now(timezone.utc)
    else:
        r.status = "pending"
        r.readiness_verified_by = None
        r.readiness_verified_at = None
    db.commit(); db.refresh(r)
    return r


@router.post("/reentry/{reentry_id}/script", response_model=ReentryOut)
def generate_script(reentry_id: int, payload: ScriptRequest, db: Session = Depends(get_db),
                    staff: Staff = Depends(require_staff)):
    r = get_or_404(db, ReentryProtocol, reentry_id, "re-entry protocol")
    require_status(r, ("pending", "ready", "active"), "update the teacher script")
    r.reset_goal_from_intervention = payload.reset_goal
    r.teacher_script = iu.teacher_script(payload.reset_goal)
    db.commit(); db.refresh(r)
    return r


@router.post("/reentry/{reentry_id}/start", response_model=ReentryOut)
def start_reentry(reentry_id: int, db: Session = Depends(get_db), staff: Staff = Depends(require_staff)):
    r = get_or_404(db, ReentryProtocol, reentry_id, "re-entry protocol")
    require_status(r, ("ready",), "start re-entry")
    r.status = "active"
    db.commit(); db.refresh(r)
    return r


@router.post("/reentry/{reentry_id}/first-rep", response_model=ReentryOut)
def complete_first_rep(reentry_id: int, db: Session = Depends(get_db), staff: Staff = Depends(require_staff)):
    r = get_or_404(db, ReentryProtocol, reentry_id, "re-entry protocol")
    require_status(r, ("active",), "record the first behavioural rep")
    r.first_behavioral_rep_completed = True
    db.commit(); db.refresh(r)
    return r


@router.post("/reentry/{reentry_id}/daily-log", response_model=ReentryOut)
def add_daily_log(reentry_id: int, payload: DailyLog, db: Session = Depends(get_db),
                  staff: Staff = Depends(require_staff)):
    r = get_or_404(db, ReentryProtocol, reentry_id, "re-entry protocol")
    require_status(r, ("active",), "log monitoring")
    entry = payload.model_dump(mode="json")
    entry["logged_by"] = staff.staff_name
    r.daily_logs = [*(r.daily_logs or []), entry]
    db.commit(); db.refresh(r)
    return r


@router.post("/reentry/{reentry_id}/complete", response_model=ReentryOut)
def complete_reentry(reentry_id: int, payload: ReentryComplete, db: Session = Depends(get_db),
                     staff: Staff = Depends(require_staff)):
    r = get_or_404(db, ReentryProtocol, reentry_id, "re-entry protocol")
    require_status(r, ("active",), "complete re-entry")
    r.outcome = payload.outcome
    r.outcome_notes = payload.notes
    r.completed_at = datetime.now(timezone.utc)
    r.status = "completed"
    db.commit(); db.refresh(r)
    log.info(f"re-entry {r.id} completed: {r.outcome}")
    return r
