import logging
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from jobqueue.api.v1.metrics import JOB_CANCELLATIONS, QUEUE_DEPTH
from jobqueue.commands.append_log import add_log_entry
from jobqueue.db.models import Job
from jobqueue.db.types import utcnow
from jobqueue.domain.errors import JobNotFoundError
from jobqueue.domain.models import TransitionResult
from jobqueue.domain.states import ACTIVE_STATUSES, JobStatus, LogLevel
from jobqueue.services.notifier import stage_event

logger = logging.getLogger(__name__)


async def cancel_job(session: AsyncSession, job_id: UUID, owner_id: str) -> TransitionResult:
    """
    Owner-initiated cancellation of a pending or processing job.

    Cancellation is cooperative: a worker holding the job is not interrupted,
    it learns about it from its next progress report and any later
    complete/fail call is a no-op.
    """
    stmt = select(Job).where(Job.id == job_id, Job.owner_id == owner_id).execution_options(populate_existing=True)
    current = (await session.execute(stmt)).scalar_one_or_none()
    if not current:
        raise JobNotFoundError(job_id)

    now = utcnow()
    stmt = update(Job).where(
        Job.id == job_id,
        Job.owner_id == owner_id,
        Job.status.in_(ACTIVE_STATUSES),
    ).values(
        status=JobStatus.CANCELLED,
        completed_at=now,
        updated_at=now,
        worker_id=None,
    ).returning(Job).execution_options(populate_existing=True)

    previous_status = current.status
    previous_worker = current.worker_id
    job = (await session.execute(stmt)).scalar_one_or_none()
    if not job:
        return TransitionResult(current, applied=False)

    add_log_entry(
        session, job.id, LogLevel.INFO, "Cancelled by owner",
        {"previous_status": str(previous_status), "worker_id": previous_worker},
    )
    stage_event(session, job)

    JOB_CANCELLATIONS.labels(job_type=job.job_type).inc()
    if previous_status == JobStatus.PENDING:
        QUEUE_DEPTH.labels(job_type=job.job_type).dec()

    logger.info("Job %s cancelled by owner %s", job.id, owner_id)
    await session.flush()
    return TransitionResult(job, applied=True)
