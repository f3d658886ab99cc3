import logging
from typing import Optional

from sqlalchemy import select, update, or_
from sqlalchemy.ext.asyncio import AsyncSession

from jobqueue.api.v1.metrics import QUEUE_DEPTH, SWEEP_TRANSITIONS
from jobqueue.commands.append_log import add_log_entry
from jobqueue.db.models import Job
from jobqueue.db.types import utcnow
from jobqueue.domain.retry import retry_delay
from jobqueue.domain.states import ErrorCode, JobStatus, LogLevel
from jobqueue.services.notifier import stage_event
from jobqueue.settings import settings

logger = logging.getLogger(__name__)


async def retry_failed_jobs(session: AsyncSession, limit: Optional[int] = None) -> int:
    """
    Moves FAILED jobs that still have retries left back to PENDING once their
    backoff has elapsed. Expired jobs are never resurrected.

    fail_job already reschedules retryable failures itself, so this mostly
    picks up rows whose retries were raised by hand or written by older code.
    Returns number of jobs moved.
    """
    now = utcnow()
    limit = limit or settings.SWEEP_BATCH_SIZE

    eligible = [
        Job.status == JobStatus.FAILED,
        Job.retry_count < Job.max_retries,
        or_(Job.error_code.is_(None), Job.error_code != ErrorCode.EXPIRED),
        or_(Job.expires_at.is_(None), Job.expires_at > now),
    ]

    # The backoff depends on retry_count, so the cutoff is evaluated per distinct count.
    counts_stmt = select(Job.retry_count).where(*eligible).distinct().order_by(Job.retry_count)
    retry_counts = (await session.execute(counts_stmt)).scalars().all()

    moved = 0
    for retry_count in retry_counts:
        if moved >= limit:
            break
        cutoff = now - retry_delay(retry_count, jitter=False)
        stmt = select(Job).where(
            *eligible,
            Job.retry_count == retry_count,
            Job.completed_at <= cutoff,
        ).order_by(Job.completed_at).limit(limit - moved).with_for_update(skip_locked=True)
        candidates = (await session.execute(stmt)).scalars().all()

        for candidate in candidates:
            previous_error = candidate.error_code
            stmt = update(Job).where(
                Job.id == candidate.id,
                Job.status == JobStatus.FAILED,
                Job.retry_count == retry_count,
            ).values(
                status=JobStatus.PENDING,
                retry_count=retry_count + 1,
                scheduled_for=now,
                error_code=None,
                error_message=None,
                error_details=None,
                completed_at=None,
                updated_at=now,
            ).returning(Job).execution_options(populate_existing=True)

            job = (await session.execute(stmt)).scalar_one_or_none()
            if not job:
                continue

            add_log_entry(
                session, job.id, LogLevel.INFO,
                f"Retrying failed job, attempt {job.retry_count}/{job.max_retries}",
                {"previous_error_code": previous_error, "retry_count": job.retry_count},
            )
            stage_event(session, job)
            QUEUE_DEPTH.labels(job_type=job.job_type).inc()
            moved += 1

    if moved:
        SWEEP_TRANSITIONS.labels(sweep="retry").inc(moved)
        logger.info("Retry sweep requeued %d failed jobs", moved)

    await session.flush()
    return moved
