import logging
from datetime import date
from typing import Optional, Tuple

from fastapi import Depends, Header, HTTPException
from sqlalchemy.orm import Session

from .config import get_settings
from .database import SessionLocal
from .models_db import Staff
from .queries import resolve_range

log = logging.getLogger("merit-api")

ADMIN_ROLES = ("admin", "super_admin")


# --------------- DB Session dependency ---------------
def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


# --------------- Caller identity ---------------
def require_staff(x_staff_email: Optional[str] = Header(None, alias="X-Staff-Email"),
                  db: Session = Depends(get_db)) -> Staff:
    if not x_staff_email:
        raise HTTPException(401, detail="X-Staff-Email header is required")
    staff = db.query(Staff).filter(Staff.email == x_staff_email.strip().lower()).first()
    if staff is None:
        raise HTTPException(403, detail="Unknown staff member")
    return staff


def require_admin(staff: Staff = Depends(require_staff)) -> Staff:
    if staff.role not in ADMIN_ROLES:
        raise HTTPException(403, detail="Admin access required")
    return staff


def verify_cron_secret(authorization: Optional[str] = Header(None)):
    secret = get_settings().CRON_SECRET
    if not secret:
        log.warning("CRON_SECRET not configured, allowing cron request")
        return
    if authorization != f"Bearer {secret}":
        raise HTTPException(401, detail="Unauthorized")


# --------------- Lookups ---------------
def get_or_404(db: Session, model, row_id: int, label: str):
    row = db.get(model, row_id)
    if row is None:
        raise HTTPException(404, detail=f"{label} {row_id} not found")
    return row


def require_status(row, allowed, action: str):
    if row.status not in allowed:
        raise HTTPException(409, detail=f"cannot {action} while status is {row.status}")


def checked_range(start_date: Optional[date], end_date: Optional[date], days: int = 30) -> Tuple[date, date]:
    start, end = resolve_range(start_date, end_date, days)
    if start > end:
        raise HTTPException(400, detail="start_date must be on or before end_date")
    return start, end
