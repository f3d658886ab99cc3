import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from jobqueue.settings import settings
from jobqueue.api.v1.jobs import router as jobs_router
from jobqueue.api.v1.workers import router as workers_router
from jobqueue.api.v1.admin import router as admin_router
from jobqueue.api.v1.events import router as events_router
from jobqueue.api.v1.metrics import router as metrics_router

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    from jobqueue.db.session import create_tables
    from jobqueue.scheduler.service import SchedulerService

    logging.basicConfig(
        level=settings.LOG_LEVEL,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    # 1. Schema (dev/test convenience; deployments run `alembic upgrade head`)
    if settings.DB_CREATE_TABLES:
        await create_tables()
        logger.info("Database tables ensured.")

    # 2. Start Scheduler (sweeps + gauges)
    scheduler = None
    if settings.SCHEDULER_ENABLED:
        scheduler = SchedulerService()
        await scheduler.start()

    yield

    # Shutdown
    if scheduler:
        await scheduler.stop()


app = FastAPI(
    title=settings.PROJECT_NAME,
    lifespan=lifespan
)

app.include_router(jobs_router, prefix="/api/v1/jobs", tags=["jobs"])
app.include_router(workers_router, prefix="/api/v1/workers", tags=["workers"])
app.include_router(admin_router, prefix="/api/v1/admin", tags=["admin"])
app.include_router(events_router, prefix="/api/v1", tags=["events"])
app.include_router(metrics_router, tags=["metrics"])


@app.get("/health")
async def health():
    return {"status": "ok"}
