import logging
import time
from typing import Awaitable, Callable, Optional

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from jobqueue.api.v1.metrics import QUEUE_DEPTH, JOBS_PROCESSING
from jobqueue.commands.expire_stale import expire_stale_jobs
from jobqueue.commands.purge_old import purge_old_jobs
from jobqueue.commands.reclaim_stuck import reclaim_stuck_jobs
from jobqueue.commands.retry_failed import retry_failed_jobs
from jobqueue.db.models import Job
from jobqueue.domain.states import JobStatus, JobType
from jobqueue.settings import settings

logger = logging.getLogger(__name__)


async def _purge(session: AsyncSession) -> int:
    jobs_deleted, _ = await purge_old_jobs(session)
    return jobs_deleted


class SweepSchedule:
    """
    Tracks when each maintenance sweep last ran. The scheduler ticks much
    faster than any sweep cadence; a sweep is due once its interval elapsed.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self.clock = clock
        self.sweeps: dict[str, tuple[int, Callable[[AsyncSession], Awaitable[int]]]] = {
            "expire": (settings.EXPIRY_SWEEP_INTERVAL_SECONDS, expire_stale_jobs),
            "stuck": (settings.STUCK_SWEEP_INTERVAL_SECONDS, reclaim_stuck_jobs),
            "retry": (settings.RETRY_SWEEP_INTERVAL_SECONDS, retry_failed_jobs),
            "retention": (settings.RETENTION_SWEEP_INTERVAL_SECONDS, _purge),
        }
        self.last_run: dict[str, Optional[float]] = {name: None for name in self.sweeps}

    def due(self) -> list[str]:
        now = self.clock()
        return [
            name for name, (interval, _) in self.sweeps.items()
            if self.last_run[name] is None or now - self.last_run[name] >= interval
        ]

    def mark(self, name: str):
        self.last_run[name] = self.clock()


async def run_leader_tasks(session: AsyncSession, schedule: SweepSchedule) -> dict[str, int]:
    """
    Runs every sweep that is due, each in its own transaction so one failing
    sweep does not roll back the others' work.
    """
    results = {}
    for name in schedule.due():
        _, sweep = schedule.sweeps[name]
        try:
            results[name] = await sweep(session)
            await session.commit()
        except Exception:
            await session.rollback()
            logger.error("Sweep %s failed", name, exc_info=True)
            continue
        finally:
            schedule.mark(name)
    return results


async def run_metrics_tasks(session: AsyncSession):
    """
    Resets the queue gauges from the store; the increments done inline by the
    commands drift across restarts and multiple API processes.
    """
    stmt = (
        select(Job.job_type, func.count(Job.id))
        .where(Job.status == JobStatus.PENDING)
        .group_by(Job.job_type)
    )
    depth = {str(t): 0 for t in JobType}
    for job_type, count in (await session.execute(stmt)).all():
        depth[job_type] = count
    for job_type, count in depth.items():
        QUEUE_DEPTH.labels(job_type=job_type).set(count)

    q_processing = select(func.count()).select_from(Job).where(Job.status == JobStatus.PROCESSING)
    JOBS_PROCESSING.set((await session.execute(q_processing)).scalar() or 0)

    await session.commit()
