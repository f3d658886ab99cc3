import logging
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from jobqueue.api.v1.metrics import JOB_CLAIMS, JOB_PICKUP_DELAY, QUEUE_DEPTH
from jobqueue.commands.append_log import add_log_entry
from jobqueue.db.models import Job
from jobqueue.db.types import utcnow
from jobqueue.domain.errors import JobNotFoundError
from jobqueue.domain.models import TransitionResult
from jobqueue.domain.states import JobStatus, LogLevel
from jobqueue.services.notifier import stage_event

logger = logging.getLogger(__name__)


async def load_job(session: AsyncSession, job_id: UUID) -> Job:
    """Fresh read of a job, bypassing stale identity-map state."""
    stmt = select(Job).where(Job.id == job_id).execution_options(populate_existing=True)
    job = (await session.execute(stmt)).scalar_one_or_none()
    if not job:
        raise JobNotFoundError(job_id)
    return job


async def claim_job(session: AsyncSession, job_id: UUID, worker_id: str) -> TransitionResult:
    """
    Compare-and-swap pending -> processing.

    A single conditional UPDATE: the row lock taken by the update makes
    concurrent claims for the same id serialize, and only the first sees
    status='pending'. Losers get applied=False with the job's current state.
    """
    now = utcnow()

    stmt = update(Job).where(
        Job.id == job_id,
        Job.status == JobStatus.PENDING,
    ).values(
        status=JobStatus.PROCESSING,
        worker_id=worker_id,
        started_at=now,
        updated_at=now,
    ).returning(Job).execution_options(populate_existing=True)

    job = (await session.execute(stmt)).scalar_one_or_none()
    if not job:
        current = await load_job(session, job_id)
        logger.debug("Claim of job %s by %s lost (status=%s)", job_id, worker_id, current.status)
        return TransitionResult(current, applied=False)

    add_log_entry(
        session, job.id, LogLevel.INFO, f"Claimed by worker {worker_id}",
        {"worker_id": worker_id, "retry_count": job.retry_count},
    )
    stage_event(session, job)

    JOB_CLAIMS.labels(job_type=job.job_type).inc()
    QUEUE_DEPTH.labels(job_type=job.job_type).dec()
    if job.scheduled_for:
        delay = (now - job.scheduled_for).total_seconds()
        if delay >= 0:
            JOB_PICKUP_DELAY.observe(delay)

    logger.info("Job %s claimed by %s", job.id, worker_id)
    await session.flush()
    return TransitionResult(job, applied=True)
