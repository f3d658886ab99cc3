import logging
from typing import Any, Optional
from uuid import UUID

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from jobqueue.api.v1.metrics import JOB_COMPLETIONS, JOB_DURATION
from jobqueue.commands.append_log import add_log_entry
from jobqueue.commands.claim_job import load_job
from jobqueue.db.models import Job
from jobqueue.db.types import utcnow
from jobqueue.domain.models import TransitionResult
from jobqueue.domain.states import JobStatus, LogLevel
from jobqueue.services.notifier import stage_event

logger = logging.getLogger(__name__)

async def complete_job(
    session: AsyncSession,
    job_id: UUID,
    result_data: Optional[dict[str, Any]],
    worker_id: Optional[str] = None,
) -> TransitionResult:
    """
    Marks a processing job as COMPLETED and saves its result.

    Idempotent: a repeated call (retried request) or a call on a job that was
    cancelled meanwhile is a no-op and the first outcome stands. When
    worker_id is given, only the worker currently holding the job may
    complete it.
    """
    now = utcnow()

    conditions = [Job.id == job_id, Job.status == JobStatus.PROCESSING]
    if worker_id is not None:
        conditions.append(Job.worker_id == worker_id)

    stmt = update(Job).where(*conditions).values(
        status=JobStatus.COMPLETED,
        result=result_data,
        progress_percent=100,
        completed_at=now,
        updated_at=now,
        worker_id=None,
    ).returning(Job).execution_options(populate_existing=True)

    job = (await session.execute(stmt)).scalar_one_or_none()
    if not job:
        current = await load_job(session, job_id)
        logger.debug("Ignored completion of job %s (status=%s, worker=%s)", job_id, current.status, worker_id)
        return TransitionResult(current, applied=False)

    duration = None
    if job.started_at:
        duration = (now - job.started_at).total_seconds()
        if duration > 0:
            JOB_DURATION.observe(duration)
    JOB_COMPLETIONS.labels(job_type=job.job_type).inc()

    add_log_entry(
        session, job.id, LogLevel.INFO, "Job completed",
        {"worker_id": worker_id, "duration_seconds": duration},
    )
    stage_event(session, job)

    logger.info("Job %s completed", job.id)
    await session.flush()
    return TransitionResult(job, applied=True)
