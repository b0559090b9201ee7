"""FastAPI application entrypoint.

All routes prefixed /v1. Auto-generated OpenAPI docs at /docs.

The lifespan starts two background pieces:
- APScheduler running the session renewal sweep (every 2h, 8am-6pm business
  time by default) and the nightly maintenance job
- the Redis task worker consuming webhook and list-send jobs
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

import structlog
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from app.api.v1.health import router as health_router
from app.api.v1.lists import router as lists_router
from app.api.v1.sessions import router as sessions_router
from app.api.v1.webhook import router as webhook_router
from app.core.config import settings
from app.core.exceptions import DispatcherError
from app.db.postgres import close_postgres
from app.db.redis import close_redis, get_redis
from app.jobs import build_worker, run_expiry_sweep, run_maintenance


def _configure_logging() -> None:
    level = getattr(logging, settings.log_level.upper(), logging.INFO)
    structlog.configure(
        wrapper_class=structlog.make_filtering_bound_logger(level),
        cache_logger_on_first_use=True,
    )
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("apscheduler").setLevel(logging.WARNING)


_configure_logging()

logger = structlog.get_logger(__name__)


def build_scheduler() -> AsyncIOScheduler:
    scheduler = AsyncIOScheduler()
    scheduler.add_job(
        run_expiry_sweep,
        CronTrigger.from_crontab(
            settings.expiry_sweep_cron, timezone=settings.expiry_sweep_timezone
        ),
        id="expiry_sweep",
        max_instances=1,
        coalesce=True,
    )
    scheduler.add_job(
        run_maintenance,
        CronTrigger.from_crontab(
            settings.maintenance_cron, timezone=settings.business_timezone
        ),
        id="maintenance",
        max_instances=1,
        coalesce=True,
    )
    return scheduler


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application startup and shutdown lifecycle."""
    # --- Startup ---
    logger.info("app_startup", env=settings.app_env)

    scheduler = build_scheduler()
    scheduler.start()
    app.state.scheduler = scheduler

    worker = build_worker(await get_redis())
    worker_task = asyncio.create_task(worker.run_forever())
    app.state.worker = worker

    logger.info(
        "app_background_ready",
        expiry_sweep_cron=settings.expiry_sweep_cron,
        expiry_sweep_timezone=settings.expiry_sweep_timezone,
    )
    yield

    # --- Shutdown ---
    logger.info("app_shutdown")

    scheduler.shutdown(wait=False)
    worker.stop()
    worker_task.cancel()
    try:
        await worker_task
    except asyncio.CancelledError:
        pass

    await close_redis()
    await close_postgres()


app = FastAPI(
    title="WABA Dispatcher API",
    description="Multi-tenant WhatsApp Business dispatcher: templates, lists and customer sessions.",
    version="1.0.0",
    lifespan=lifespan,
)


@app.exception_handler(DispatcherError)
async def dispatcher_error_handler(request: Request, exc: DispatcherError) -> JSONResponse:
    """Structured error response for all dispatcher exceptions."""
    return JSONResponse(
        status_code=exc.status_code,
        content=exc.to_dict(),
    )


# Mount all v1 routers
app.include_router(health_router, prefix="/v1")
app.include_router(webhook_router, prefix="/v1")
app.include_router(sessions_router, prefix="/v1")
app.include_router(lists_router, prefix="/v1")
