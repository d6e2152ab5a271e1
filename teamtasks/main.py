"""Main FastAPI application entry point."""
import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import OperationalError

from teamtasks import config
from teamtasks.api.routes import router
from teamtasks.database import Base, SessionLocal, engine
from teamtasks.errors import (
    AccessDenied,
    Conflict,
    InvalidCredentials,
    NotAllowedToAuthenticate,
    NotFound,
    TeamTasksError,
    TransientBackendError,
    ValidationFailed,
    handle_error,
)
# Import models to register them with SQLAlchemy Base
from teamtasks.models import audit, domain  # noqa: F401
from teamtasks.services.identity import IdentityService
from teamtasks.services.notifications import NotificationEmitter

logger = logging.getLogger(__name__)

STATUS_CODES = {
    AccessDenied: 403,
    NotAllowedToAuthenticate: 403,
    InvalidCredentials: 401,
    NotFound: 404,
    Conflict: 409,
    ValidationFailed: 422,
    TransientBackendError: 503,
}


def _error_body(exc: TeamTasksError, message: str) -> dict:
    body = {"code": exc.code, "message": message}
    if isinstance(exc, ValidationFailed):
        body["errors"] = exc.field_errors
    return body


def seed_admin() -> None:
    if not (config.ADMIN_EMAIL and config.ADMIN_PASSWORD):
        return
    db = SessionLocal()
    try:
        IdentityService(db).create_admin_if_empty(config.ADMIN_NAME, config.ADMIN_EMAIL, config.ADMIN_PASSWORD)
    finally:
        db.close()


def run_deadline_sweep() -> int:
    db = SessionLocal()
    try:
        return len(NotificationEmitter(db).sweep_deadlines())
    finally:
        db.close()


async def deadline_sweeper(interval: int) -> None:
    while True:
        try:
            await asyncio.to_thread(run_deadline_sweep)
        except Exception as e:
            handle_error(e, "Deadline sweep")
        await asyncio.sleep(interval)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Create database tables
    Base.metadata.create_all(bind=engine)
    seed_admin()

    sweeper = None
    if config.DEADLINE_SWEEP_SECONDS > 0:
        sweeper = asyncio.create_task(deadline_sweeper(config.DEADLINE_SWEEP_SECONDS))
    yield
    if sweeper is not None:
        sweeper.cancel()


# Create FastAPI app
app = FastAPI(
    title="Team Tasks",
    description="Role-based team task manager: tasks, comments, attachments and notifications.",
    version="0.1.0",
    lifespan=lifespan,
)

# Enable CORS for local development
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # For MVP - restrict in production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(TeamTasksError)
async def team_tasks_error_handler(request: Request, exc: TeamTasksError):
    message = handle_error(exc, f"{request.method} {request.url.path}")
    status_code = next((code for cls, code in STATUS_CODES.items() if isinstance(exc, cls)), 400)
    return JSONResponse(status_code=status_code, content=_error_body(exc, message))


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    errors = {}
    for err in exc.errors():
        loc = [str(part) for part in err.get("loc", ()) if part not in ("body", "query", "path")]
        name = loc[0] if loc else "__root__"
        ctx_error = err.get("ctx", {}).get("error")
        errors.setdefault(name, str(ctx_error) if ctx_error is not None else err["msg"])
    return JSONResponse(
        status_code=422,
        content={"code": ValidationFailed.code, "message": "Please fix validation errors", "errors": errors},
    )


@app.exception_handler(OperationalError)
async def database_unavailable_handler(request: Request, exc: OperationalError):
    transient = TransientBackendError(detail=str(exc))
    message = handle_error(exc, f"{request.method} {request.url.path}")
    return JSONResponse(status_code=503, content=_error_body(transient, message))


# Include API routes
app.include_router(router, prefix="/api", tags=["Team Tasks"])


# Health check
@app.get("/health")
def health_check():
    return {"status": "healthy", "service": "Team Tasks"}


if __name__ == "__main__":
    import uvicorn
    logging.basicConfig(level=logging.DEBUG if config.is_development() else logging.INFO)
    uvicorn.run(app, host="0.0.0.0", port=8000)
