import logging
from datetime import timedelta
from typing import Optional

from sqlalchemy import select, delete
from sqlalchemy.ext.asyncio import AsyncSession

from jobqueue.api.v1.metrics import SWEEP_TRANSITIONS
from jobqueue.db.models import Job, JobLogEntry
from jobqueue.db.types import utcnow
from jobqueue.domain.states import TERMINAL_STATUSES
from jobqueue.settings import settings

logger = logging.getLogger(__name__)


async def purge_old_jobs(
    session: AsyncSession,
    older_than: Optional[timedelta] = None,
    batch_size: Optional[int] = None,
) -> tuple[int, int]:
    """
    Deletes terminal jobs finished before the retention horizon, together with
    their log entries. Works through the backlog in batches within the caller's
    transaction. Returns (jobs_deleted, logs_deleted).
    """
    older_than = older_than or timedelta(days=settings.RETENTION_DAYS)
    batch_size = batch_size or settings.SWEEP_BATCH_SIZE
    cutoff = utcnow() - older_than

    jobs_deleted = 0
    logs_deleted = 0
    while True:
        stmt = select(Job.id).where(
            Job.status.in_(TERMINAL_STATUSES),
            Job.completed_at < cutoff,
        ).limit(batch_size).with_for_update(skip_locked=True)
        ids = (await session.execute(stmt)).scalars().all()
        if not ids:
            break

        # Logs first; the FK cascade is not relied on (SQLite leaves it off by default).
        res = await session.execute(
            delete(JobLogEntry).where(JobLogEntry.job_id.in_(ids)).execution_options(synchronize_session=False)
        )
        logs_deleted += res.rowcount or 0

        res = await session.execute(
            delete(Job).where(
                Job.id.in_(ids),
                Job.status.in_(TERMINAL_STATUSES),
            ).execution_options(synchronize_session=False)
        )
        jobs_deleted += res.rowcount or 0

        if len(ids) < batch_size:
            break

    if jobs_deleted:
        SWEEP_TRANSITIONS.labels(sweep="retention").inc(jobs_deleted)
        logger.info("Retention sweep deleted %d jobs and %d log entries", jobs_deleted, logs_deleted)

    await session.flush()
    return jobs_deleted, logs_deleted
