import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from pathlib import Path
from fastapi import FastAPI, Request, Depends
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy import text
from sqlalchemy.orm import Session
from intake.api.tickets import router as tickets_router
from intake.api.dashboard import router as dashboard_router
from intake.api.audit import router as audit_router
from intake.api.teams import router as teams_router
from intake.api.deps import get_store
from intake.core.config import settings
from intake.core.db import Base, engine, get_db
from intake.core.errors import IntakeError, LockTimeoutError
from intake.core.logger import get_logger
from intake.models.directory import AUDIT_SCHEMA, TEAM_SCHEMA, USER_SCHEMA
from intake.models.ticket import TICKET_SCHEMA
from intake.store.schema import bootstrap

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    Base.metadata.create_all(bind=engine)
    bootstrap(get_store(), [TICKET_SCHEMA, USER_SCHEMA, TEAM_SCHEMA, AUDIT_SCHEMA])
    logger.info(f"{settings.PROJECT_NAME} started")
    yield


app = FastAPI(
    title=settings.PROJECT_NAME,
    description="Ticket intake, triage and dashboard backed by a shared tabular store.",
    version="1.0.0",
    lifespan=lifespan,
)

@app.middleware("http")
async def add_correlation_id(request: Request, call_next):
    request_id = str(uuid.uuid4())
    request.state.request_id = request_id
    response = await call_next(request)
    response.headers["X-Request-ID"] = request_id
    return response


def error_envelope(request: Request, code: str, message: str, details=None) -> dict:
    return {
        "success": False,
        "error": {"code": code, "message": message, "details": details or None},
        "request_id": getattr(request.state, "request_id", None),
        "meta": {"timestamp": datetime.now(timezone.utc).isoformat()},
    }


@app.exception_handler(IntakeError)
async def intake_exception_handler(request: Request, exc: IntakeError):
    headers = None
    if isinstance(exc, LockTimeoutError):
        headers = {"Retry-After": str(exc.retry_after)}
    if exc.status_code >= 500:
        logger.error(f"{exc.code}: {exc.message} {exc.details}")
    return JSONResponse(
        status_code=exc.status_code,
        content=error_envelope(request, exc.code, exc.message, exc.details),
        headers=headers,
    )

@app.exception_handler(SQLAlchemyError)
async def sqlalchemy_exception_handler(request: Request, exc: SQLAlchemyError):
    logger.exception("Database failure")
    return JSONResponse(
        status_code=503,
        content=error_envelope(request, "STORE_UNAVAILABLE", "Service Unavailable: storage operational failure"),
    )

@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error")
    return JSONResponse(
        status_code=500,
        content=error_envelope(request, "INTERNAL_ERROR", "Internal Server Error"),
    )

@app.get("/health", tags=["system"])
def health_check(db: Session = Depends(get_db)):
    try:
        db.execute(text("SELECT 1"))
        db_status = "ok"
    except SQLAlchemyError:
        db_status = "error"
    return {"status": "ok", "database": db_status}

app.include_router(tickets_router)
app.include_router(dashboard_router)
app.include_router(audit_router)
app.include_router(teams_router)

Path(settings.UPLOAD_DIR).mkdir(parents=True, exist_ok=True)
app.mount("/uploads", StaticFiles(directory=settings.UPLOAD_DIR), name="uploads")


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("intake.main:app", host="0.0.0.0", port=8000)
