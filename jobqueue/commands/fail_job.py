import logging
from typing import Any, Optional
from uuid import UUID

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from jobqueue.api.v1.metrics import JOB_FAILURES, QUEUE_DEPTH
from jobqueue.commands.append_log import add_log_entry
from jobqueue.commands.claim_job import load_job
from jobqueue.db.models import Job
from jobqueue.db.types import utcnow
from jobqueue.domain.models import TransitionResult
from jobqueue.domain.retry import calculate_next_run
from jobqueue.domain.states import ErrorCode, JobStatus, LogLevel
from jobqueue.services.notifier import stage_event

logger = logging.getLogger(__name__)

async def fail_job(
    session: AsyncSession,
    job_id: UUID,
    error_code: Optional[str],
    error_message: str,
    worker_id: Optional[str] = None,
    error_details: Optional[dict[str, Any]] = None,
) -> TransitionResult:
    """
    Reports a failed execution of a processing job.

    With retries left the job goes back to PENDING with an exponential
    backoff in scheduled_for; otherwise it becomes FAILED with the error
    recorded. The error always lands in the job log, in the same transaction.
    """
    now = utcnow()
    error_code = error_code or ErrorCode.JOB_ERROR

    current = await load_job(session, job_id)
    if current.status != JobStatus.PROCESSING or (worker_id is not None and current.worker_id != worker_id):
        logger.debug("Ignored failure of job %s (status=%s, worker=%s)", job_id, current.status, worker_id)
        return TransitionResult(current, applied=False)

    guard = [
        Job.id == job_id,
        Job.status == JobStatus.PROCESSING,
        Job.retry_count == current.retry_count,
    ]
    if worker_id is not None:
        guard.append(Job.worker_id == worker_id)

    if current.retry_count < current.max_retries:
        # Retry
        next_run = calculate_next_run(current.retry_count, now)
        stmt = update(Job).where(*guard).values(
            status=JobStatus.PENDING,
            retry_count=current.retry_count + 1,
            scheduled_for=next_run,
            worker_id=None,
            started_at=None,
            updated_at=now,
        )
        failure_type = "retry"
        log_message = f"Attempt failed, retry {current.retry_count + 1}/{current.max_retries} at {next_run.isoformat()}"
    else:
        # Final
        stmt = update(Job).where(*guard).values(
            status=JobStatus.FAILED,
            error_code=error_code,
            error_message=error_message,
            error_details=error_details,
            completed_at=now,
            updated_at=now,
            worker_id=None,
        )
        failure_type = "final"
        log_message = f"Job failed after {current.retry_count} retries"

    stmt = stmt.returning(Job).execution_options(populate_existing=True)
    job = (await session.execute(stmt)).scalar_one_or_none()
    if not job:
        # Lost a race with another transition between the read and the update
        return TransitionResult(await load_job(session, job_id), applied=False)

    add_log_entry(
        session, job.id, LogLevel.ERROR, f"{log_message}: [{error_code}] {error_message}",
        {
            "error_code": str(error_code),
            "error_message": error_message,
            "error_details": error_details,
            "retry_count": job.retry_count,
            "max_retries": job.max_retries,
            "worker_id": worker_id,
        },
    )
    stage_event(session, job)

    JOB_FAILURES.labels(job_type=job.job_type, type=failure_type).inc()
    if failure_type == "retry":
        QUEUE_DEPTH.labels(job_type=job.job_type).inc()  # Back to PENDING

    logger.info("Job %s failed (%s): %s", job.id, failure_type, error_code)
    await session.flush()
    return TransitionResult(job, applied=True)
