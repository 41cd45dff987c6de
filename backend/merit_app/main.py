import logging
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from .config import get_settings
from .database import init_db
from .routers import alerts, analytics, behaviour, cases, cron, interventions, points

settings = get_settings()

# ---------------- logging ----------------
logging.basicConfig(level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
                    format="%(asctime)s %(levelname)s %(message)s")
log = logging.getLogger("merit-api")

app = FastAPI(title=settings.APP_NAME, version=settings.APP_VERSION)
app.add_middleware(
    CORSMiddleware, allow_origins=["*"], allow_credentials=True, allow_methods=["*"], allow_headers=["*"]
)

# --------------- Bootstrap: DB + reference data ---------------
init_db()

for module in (points, analytics, behaviour, interventions, cases, alerts, cron):
    app.include_router(module.router)


# --------------- Database errors ---------------
@app.exception_handler(IntegrityError)
def integrity_error(request: Request, exc: IntegrityError):
    log.warning(f"integrity error on {request.method} {request.url.path}: {exc.orig}")
    return JSONResponse(status_code=409, content={"detail": "Record conflicts with existing data"})


@app.exception_handler(SQLAlchemyError)
def database_error(request: Request, exc: SQLAlchemyError):
    log.error(f"database error on {request.method} {request.url.path}: {exc}")
    return JSONResponse(status_code=500, content={"detail": "Database error"})


@app.get("/health")
def health():
    return {"status": "ok", "version": settings.APP_VERSION}
