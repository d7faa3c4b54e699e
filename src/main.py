"""tendly - Plant a task, harvest compost. Local-first garden with remote sync."""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from src.core.config import settings
from src.core.garden_context import build_context, open_garden
from src.core.logging import configure_logfire, instrument_fastapi
from src.core.scheduler import OUTBOX_FLUSH_JOB, start_scheduler, stop_scheduler
from src.core.scheduler_tracker import job_tracker
from src.interface.garden_router import router as garden_router


logger = logging.getLogger(__name__)


def log_startup_configuration() -> None:
    """Log which remote collaborators are configured.

    A missing remote configuration is not fatal: the garden runs local-only.
    """
    if settings.remote_configured:
        logger.info(
            "startup_validation",
            extra={"service": "docustore", "status": "ok", "contract": settings.docustore_contract_address},
        )
    else:
        logger.warning("startup_validation", extra={"service": "docustore", "status": "disabled"})

    if settings.remote_configured and not settings.docustore_signer_url:
        logger.warning("startup_validation", extra={"service": "signer", "status": "disabled"})


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan context manager."""
    # Startup
    # Configure logging first so validation logs are captured
    configure_logfire()
    log_startup_configuration()

    async with open_garden(build_context()) as garden:
        app.state.garden = garden
        start_scheduler(garden.manager)
        yield
        # Shutdown
        stop_scheduler()


app = FastAPI(
    title="tendly",
    description="Gamified task garden with local-first sync to a remote document store",
    version="0.1.0",
    lifespan=lifespan,
)

# Instrument FastAPI with Logfire
instrument_fastapi(app)

# Register routers
app.include_router(garden_router)


@app.get("/health")
async def health_check() -> JSONResponse:
    """Health check endpoint."""
    return JSONResponse(content={"status": "healthy"}, status_code=200)


@app.get("/health/sync")
async def sync_health_check(request: Request) -> JSONResponse:
    """Sync health: load states, outbox backlog and the flush job's history."""
    overview = request.app.state.garden.manager.sync_overview()
    job = job_tracker.get_job_status(OUTBOX_FLUSH_JOB)

    overall_status = "healthy"
    if overview.outbox_by_status.get("failed") or job.consecutive_failures > 0:
        overall_status = "degraded"
    if not job.healthy:
        overall_status = "critical"

    return JSONResponse(
        content={
            "status": overall_status,
            "sync": overview.model_dump(mode="json"),
            "outbox_job": job.model_dump(mode="json"),
        },
        status_code=200 if overall_status == "healthy" else 503,
    )
