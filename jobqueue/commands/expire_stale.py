import logging
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from jobqueue.api.v1.metrics import QUEUE_DEPTH, SWEEP_TRANSITIONS
from jobqueue.commands.append_log import add_log_entry
from jobqueue.db.models import Job
from jobqueue.db.types import utcnow
from jobqueue.domain.states import ErrorCode, JobStatus, LogLevel
from jobqueue.services.notifier import stage_event
from jobqueue.settings import settings

logger = logging.getLogger(__name__)

EXPIRED_MESSAGE = "Job expired before processing"


async def expire_stale_jobs(session: AsyncSession, limit: Optional[int] = None) -> int:
    """
    Fails PENDING jobs whose expires_at has passed without any worker picking
    them up. Returns number of jobs expired.
    """
    now = utcnow()
    limit = limit or settings.SWEEP_BATCH_SIZE

    stmt = select(Job.id).where(
        Job.status == JobStatus.PENDING,
        Job.expires_at < now,
    ).order_by(Job.expires_at).limit(limit).with_for_update(skip_locked=True)
    ids = (await session.execute(stmt)).scalars().all()
    if not ids:
        return 0

    # Re-checks status so a job claimed since the select is left alone.
    stmt = update(Job).where(
        Job.id.in_(ids),
        Job.status == JobStatus.PENDING,
        Job.expires_at < now,
    ).values(
        status=JobStatus.FAILED,
        error_code=ErrorCode.EXPIRED,
        error_message=EXPIRED_MESSAGE,
        completed_at=now,
        updated_at=now,
    ).returning(Job).execution_options(populate_existing=True)
    jobs = (await session.execute(stmt)).scalars().all()

    for job in jobs:
        add_log_entry(
            session, job.id, LogLevel.WARNING, EXPIRED_MESSAGE,
            {"expires_at": job.expires_at.isoformat() if job.expires_at else None},
        )
        stage_event(session, job)
        QUEUE_DEPTH.labels(job_type=job.job_type).dec()

    if jobs:
        SWEEP_TRANSITIONS.labels(sweep="expire").inc(len(jobs))
        logger.info("Expiry sweep failed %d stale pending jobs", len(jobs))

    await session.flush()
    return len(jobs)
