import logging
from datetime import timedelta
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


async def reclaim_stuck_jobs(
    session: AsyncSession,
    timeout: Optional[timedelta] = None,
    limit: Optional[int] = None,
) -> int:
    """
    Finds PROCESSING jobs that started and last reported longer than the stuck
    timeout ago (worker crash?), and either hands them back to the queue or,
    with no retries left, fails them with STUCK.
    Returns number of jobs moved.
    """
    now = utcnow()
    timeout = timeout or timedelta(seconds=settings.STUCK_TIMEOUT_SECONDS)
    limit = limit or settings.SWEEP_BATCH_SIZE
    cutoff = now - timeout

    stale = [
        Job.status == JobStatus.PROCESSING,
        Job.started_at < cutoff,
        Job.updated_at < cutoff,
    ]

    stmt = select(Job).where(*stale).order_by(Job.started_at).limit(limit).with_for_update(skip_locked=True)
    candidates = (await session.execute(stmt)).scalars().all()

    reclaimed = 0
    failed = 0
    for candidate in candidates:
        worker_id = candidate.worker_id
        started_at = candidate.started_at
        retry_count = candidate.retry_count

        # Progress reported since the select bumps updated_at and drops the row out of the guard.
        guard = [Job.id == candidate.id, Job.retry_count == retry_count, *stale]

        if retry_count < candidate.max_retries:
            stmt = update(Job).where(*guard).values(
                status=JobStatus.PENDING,
                retry_count=retry_count + 1,
                scheduled_for=now,
                worker_id=None,
                started_at=None,
                updated_at=now,
            )
            outcome = "reclaimed"
        else:
            stmt = update(Job).where(*guard).values(
                status=JobStatus.FAILED,
                error_code=ErrorCode.STUCK,
                error_message=f"Job stuck in processing for more than {int(timeout.total_seconds())}s",
                completed_at=now,
                updated_at=now,
                worker_id=None,
            )
            outcome = "failed"

        job = (await session.execute(
            stmt.returning(Job).execution_options(populate_existing=True)
        )).scalar_one_or_none()
        if not job:
            continue

        add_log_entry(
            session, job.id, LogLevel.WARNING,
            f"STUCK: no progress from worker {worker_id} since {started_at.isoformat()}, job {outcome}",
            {
                "worker_id": worker_id,
                "started_at": started_at.isoformat(),
                "retry_count": job.retry_count,
            },
        )
        stage_event(session, job)

        if outcome == "reclaimed":
            QUEUE_DEPTH.labels(job_type=job.job_type).inc()
            reclaimed += 1
        else:
            failed += 1

    if reclaimed:
        SWEEP_TRANSITIONS.labels(sweep="reclaim").inc(reclaimed)
    if failed:
        SWEEP_TRANSITIONS.labels(sweep="stuck_fail").inc(failed)
    if reclaimed or failed:
        logger.info("Stuck sweep reclaimed %d and failed %d jobs", reclaimed, failed)

    await session.flush()
    return reclaimed + failed
