import logging
from datetime import date, datetime, timedelta, timezone
from typing import Dict, List, Optional, Sequence

from fastapi import APIRouter, Depends, File, HTTPException, UploadFile
from sqlalchemy.orm import Session

from ..config import get_settings
from ..deps import get_db, require_admin, require_staff
from ..models_db import (
    BehaviourUpload, MeritEvent, Staff, Student, StudentBehaviourInsight, StudentBehaviourPattern,
)
from ..queries import today_utc
from ..schemas import InsightOut, PatternOut, ReprocessResponse, UploadResponse
from ..utils.behaviour_utils import analyze_events
from ..utils.import_utils import (
    last_first_to_first_last, normalise_event_type, parse_csv, parse_discipline_pdf, parse_event_date,
    parse_int_safe,
)

log = logging.getLogger("merit-api")
settings = get_settings()

router = APIRouter(prefix="/api/behaviour", tags=["behaviour"])

REPROCESS_DAYS = 30


# --------------- Store ---------------
def analyze_and_store(db: Session, events: Sequence[Dict], today: date) -> int:
    """Upsert 7d/30d insights and replace patterns for every student in `events`."""
    insights, patterns, student_ids = analyze_events(events, today)
    if not student_ids:
        return 0
    now = datetime.now(timezone.utc)

    for row in insights:
        existing = (db.query(StudentBehaviourInsight)
                    .filter(StudentBehaviourInsight.student_id == row["student_id"],
                            StudentBehaviourInsight.time_window == row["time_window"])
                    .first())
        if existing is None:
            db.add(StudentBehaviourInsight(last_computed=now, **row))
        else:
            for key, value in row.items():
                setattr(existing, key, value)
            existing.last_computed = now

    (db.query(StudentBehaviourPattern)
     .filter(StudentBehaviourPattern.student_id.in_(student_ids))
     .delete(synchronize_session=False))
    db.add_all([StudentBehaviourPattern(**p) for p in patterns])
    db.commit()
    log.info(f"behaviour analysis: {len(student_ids)} students, {len(patterns)} patterns")
    return len(student_ids)


# --------------- Row resolution ---------------
def _name_index(db: Session) -> Dict[str, List[Student]]:
    index: Dict[str, List[Student]] = {}
    for s in db.query(Student).all():
        index.setdefault((s.student_name or "").strip().lower(), []).append(s)
    return index


def _resolve_student(row: Dict, index: Dict[str, List[Student]]):
    """Returns (student_id, error message)."""
    explicit = (row.get("student_id") or "").strip()
    if explicit:
        return explicit, None

    name = (row.get("student_name") or "").strip()
    if not name:
        return None, "student_id is required."

    matches = []
    for variant in {name.lower(), last_first_to_first_last(name).lower()}:
        matches.extend(index.get(variant, []))
    matches = list({s.id: s for s in matches}.values())

    grade = parse_int_safe(row.get("grade"))
    if len(matches) > 1 and grade is not None:
        matches = [s for s in matches if s.grade == grade]
    if not matches:
        return None, f"Unable to find student '{name}'."
    if len(matches) > 1:
        return None, f"Multiple students match '{name}'. Add grade or student_id."
    return str(matches[0].id), None


def _row_to_event(row: Dict, index: Dict[str, List[Student]]):
    event_type = normalise_event_type(row.get("event_type"))
    if event_type is None:
        return None, "event_type must be merit or demerit."
    event_date = parse_event_date(row.get("event_date"))
    if event_date is None:
        return None, "event_date is required and must be valid."
    points = parse_int_safe(row.get("points"))
    if points is None:
        return None, "points is required and must be a number."
    student_id, error = _resolve_student(row, index)
    if error:
        return None, error
    return {
        "student_id": student_id,
        "event_type": event_type,
        "event_date": date.fromisoformat(event_date),
        "staff_name": (row.get("staff_name") or "").strip() or None,
        "category": row.get("category") or "",
        "subcategory": row.get("subcategory") or "",
        "points": abs(points),
    }, None


# --------------- Endpoints ---------------
@router.post("/upload", response_model=UploadResponse)
async def upload(file: UploadFile = File(...), db: Session = Depends(get_db), admin: Staff = Depends(require_admin)):
    content = await file.read()
    if len(content) > settings.MAX_UPLOAD_BYTES:
        raise HTTPException(400, detail="File size must be under 10MB.")

    name = (file.filename or "").lower()
    is_pdf = name.endswith(".pdf") or file.content_type == "application/pdf"
    try:
        rows = parse_discipline_pdf(content) if is_pdf else parse_csv(content)
    except Exception as e:
        log.warning(f"upload parse failed for {file.filename}: {e}")
        raise HTTPException(400, detail="Unable to parse file.")
    if not rows:
        raise HTTPException(400, detail="No rows found in file.")

    index = _name_index(db)
    events, errors = [], []
    for i, row in enumerate(rows):
        event, error = _row_to_event(row, index)
        if error:
            errors.append({"row": i + 2, "message": error})
        else:
            events.append(event)

    source = rows[0].get("source_system") or ("pdf_upload" if is_pdf else "csv_upload")
    audit = BehaviourUpload(uploaded_by=admin.email, source_system=source, file_name=file.filename,
                            rows_parsed=len(rows), rows_analyzed=len(events))
    db.add(audit); db.commit(); db.refresh(audit)

    updated = analyze_and_store(db, events, today_utc())
    log.info(f"upload {audit.id} ({file.filename}): {len(events)}/{len(rows)} rows analyzed, {len(errors)} errors")
    return UploadResponse(upload_id=audit.id, analyzed=len(events), students_updated=updated, errors=errors)


@router.post("/reprocess", response_model=ReprocessResponse)
def reprocess(db: Session = Depends(get_db), admin: Staff = Depends(require_admin)):
    """Re-run the analyzer over recorded merit_log rows; negative points are demerits."""
    today = today_utc()
    rows = (db.query(MeritEvent)
            .filter(MeritEvent.student_id.isnot(None),
                    MeritEvent.date_of_event >= today - timedelta(days=REPROCESS_DAYS))
            .all())
    events = [{
        "student_id": str(r.student_id),
        "event_type": "demerit" if r.points < 0 else "merit",
        "event_date": r.date_of_event,
        "staff_name": r.staff_name,
        "category": r.r or "",
        "subcategory": r.subcategory or "",
        "points": abs(r.points),
    } for r in rows]
    updated = analyze_and_store(db, events, today)
    return ReprocessResponse(analyzed=len(events), students_updated=updated)


@router.get("/insights", response_model=List[InsightOut])
def list_insights(student_id: Optional[str] = None, time_window: Optional[str] = None,
                  risk_level: Optional[str] = None, db: Session = Depends(get_db),
                  staff: Staff = Depends(require_staff)):
    q = db.query(StudentBehaviourInsight)
    if student_id:
        q = q.filter(StudentBehaviourInsight.student_id == student_id)
    if time_window:
        q = q.filter(StudentBehaviourInsight.time_window == time_window)
    if risk_level:
        q = q.filter(StudentBehaviourInsight.risk_level == risk_level)
    return q.order_by(StudentBehaviourInsight.student_id, StudentBehaviourInsight.time_window).all()


@router.get("/patterns/{student_id}", response_model=List[PatternOut])
def list_patterns(student_id: str, db: Session = Depends(get_db), staff: Staff = Depends(require_staff)):
    return (db.query(StudentBehaviourPattern)
            .filter(StudentBehaviourPattern.student_id == student_id)
            .order_by(StudentBehaviourPattern.confidence_score.desc())
            .all())
