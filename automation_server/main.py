# automation_server/main.py
import logging
import traceback
from contextlib import asynccontextmanager
from typing import Any, Dict

from fastapi import FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException

from automation_server.routers import automation, channels, health, jobs, push_tokens
from videogen.clients.registry import ClientRegistry, configure_from_env
from videogen.conf import DEBUG, SCHEDULER_ENABLED
from videogen.errors import (
    AutomationError,
    CapacityExceeded,
    ConfigError,
    DataIntegrityError,
    IdeaParseError,
    InvalidTransition,
    MatchTimeout,
    RunNotAllowed,
    TransientExternalError,
)

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s │ %(levelname)-8s │ %(message)s",
    datefmt="%H:%M:%S",
)

logger = logging.getLogger(__name__)

# Most specific first; LookupError covers the *NotFound errors.
ERROR_STATUS = (
    (LookupError, status.HTTP_404_NOT_FOUND),
    (CapacityExceeded, status.HTTP_429_TOO_MANY_REQUESTS),
    (InvalidTransition, status.HTTP_409_CONFLICT),
    (DataIntegrityError, status.HTTP_409_CONFLICT),
    (RunNotAllowed, status.HTTP_400_BAD_REQUEST),
    (IdeaParseError, status.HTTP_502_BAD_GATEWAY),
    (TransientExternalError, status.HTTP_502_BAD_GATEWAY),
    (MatchTimeout, status.HTTP_504_GATEWAY_TIMEOUT),
    (ConfigError, status.HTTP_500_INTERNAL_SERVER_ERROR),
    (ValueError, status.HTTP_400_BAD_REQUEST),
)


def status_for(error: Exception) -> int:
    for error_type, code in ERROR_STATUS:
        if isinstance(error, error_type):
            return code
    return status.HTTP_500_INTERNAL_SERVER_ERROR


def error_body(error: Exception, name: str | None = None, message: str | None = None) -> Dict[str, Any]:
    """``{error, message, details}``; details carry the traceback only in DEBUG mode."""
    details: Dict[str, Any] = {}
    for attr in ("job_id", "channel_id", "run_id", "active_count", "max_active", "current", "target"):
        if getattr(error, attr, None) is not None:
            details[attr] = getattr(error, attr)
    if DEBUG:
        details["traceback"] = traceback.format_exception(type(error), error, error.__traceback__)
    return {"error": name or error.__class__.__name__, "message": message or str(error), "details": details}


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan context manager for startup/shutdown events."""
    from automation_server.db.engine import get_engine
    from automation_server.services.scheduler import start_scheduler, stop_scheduler
    from automation_server.services.worker import start_worker, stop_worker

    get_engine()
    configure_from_env()
    start_worker()
    if SCHEDULER_ENABLED:
        start_scheduler()
    logger.info("Automation server started (scheduler %s)", "on" if SCHEDULER_ENABLED else "off")

    yield

    stop_scheduler()
    stop_worker()
    ClientRegistry.close_all()
    logger.info("Automation server stopped")


app = FastAPI(
    title="Video Automation API",
    description="Scheduled AI video generation per channel",
    version="0.1.0",
    lifespan=lifespan,
)


@app.exception_handler(AutomationError)
async def automation_error_handler(request: Request, exc: AutomationError):
    code = status_for(exc)
    if code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc, exc_info=exc)
    return JSONResponse(status_code=code, content=error_body(exc))


@app.exception_handler(ValueError)
async def value_error_handler(request: Request, exc: ValueError):
    return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content=error_body(exc, name="ValidationError"))


@app.exception_handler(HTTPException)
async def http_error_handler(request: Request, exc: HTTPException):
    body = {"error": "HTTPError", "message": str(exc.detail), "details": {}}
    return JSONResponse(status_code=exc.status_code, content=body, headers=getattr(exc, "headers", None))


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    body = {"error": "ValidationError", "message": "Invalid request", "details": {"errors": exc.errors()}}
    return JSONResponse(status_code=422, content=jsonable_encoder(body))


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.error("%s %s failed: %s", request.method, request.url.path, exc, exc_info=exc)
    return JSONResponse(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content=error_body(exc))


# Register routers
app.include_router(health.router, tags=["health"])
app.include_router(automation.router, prefix="/api/v1", tags=["automation"])
app.include_router(channels.router, prefix="/api/v1", tags=["channels"])
app.include_router(jobs.router, prefix="/api/v1", tags=["jobs"])
app.include_router(push_tokens.router, prefix="/api/v1", tags=["push"])


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)
