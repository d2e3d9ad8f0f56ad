import asyncio
import contextlib
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import OperationalError

from app.api.assignments import router as assignments_router
from app.api.audit import router as audit_router
from app.api.cycles import router as cycles_router
from app.api.health import router as health_router
from app.api.me import router as me_router
from app.api.reviews import router as reviews_router
from app.api.root import router as root_router
from app.api.templates import router as templates_router
from app.api.users import router as users_router
from app.api.workflow import router as workflow_router
from app.core.config import settings
from app.core.exceptions import AppException, TransientStoreError
from app.core.logging import setup_logging
from app.db.session import SessionLocal
from app.services.scheduler import run_forever

setup_logging()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Starting review cycle manager (%s)", settings.APP_ENV)

    ticker = None
    if settings.WORKFLOW_SWEEP_INTERVAL_SECONDS > 0:
        ticker = asyncio.create_task(run_forever(SessionLocal, settings.WORKFLOW_SWEEP_INTERVAL_SECONDS))
        logger.info("Workflow sweep every %ss", settings.WORKFLOW_SWEEP_INTERVAL_SECONDS)

    yield

    if ticker is not None:
        ticker.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await ticker
    logger.info("Shutdown complete")


app = FastAPI(title="Review Cycle Manager", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["ETag"],
)


def _render(exc: AppException) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message, "code": exc.error_code, "context": exc.details},
    )


@app.exception_handler(AppException)
async def app_exception_handler(request: Request, exc: AppException):
    """Domain errors carry a machine-readable code and the state that caused them."""
    logger.warning("AppException: %s", exc.message, extra={"code": exc.error_code, "path": request.url.path})
    return _render(exc)


@app.exception_handler(OperationalError)
async def operational_error_handler(request: Request, exc: OperationalError):
    logger.error("Store unavailable: %s", exc.orig, extra={"path": request.url.path})
    return _render(TransientStoreError())


app.include_router(root_router)
app.include_router(health_router)
app.include_router(me_router)
app.include_router(users_router)
app.include_router(templates_router)
app.include_router(cycles_router)
app.include_router(assignments_router)
app.include_router(reviews_router)
app.include_router(workflow_router)
app.include_router(audit_router)
