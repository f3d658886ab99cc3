import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from jobqueue.api.v1.metrics import JOBS_CREATED, QUEUE_DEPTH
from jobqueue.commands.append_log import add_log_entry
from jobqueue.commands.rate_limit import check_rate_limit
from jobqueue.db.models import Job
from jobqueue.db.types import utcnow
from jobqueue.domain.errors import UnknownJobTypeError
from jobqueue.domain.states import JobStatus, JobType, LogLevel
from jobqueue.services.notifier import stage_event
from jobqueue.settings import settings
from jobqueue.utils.locking import lock_owner

logger = logging.getLogger(__name__)


def validate_job_type(job_type: str) -> JobType:
    try:
        return JobType(job_type)
    except ValueError:
        raise UnknownJobTypeError(job_type) from None


async def insert_job(
    session: AsyncSession,
    owner_id: str,
    job_type: JobType,
    params: dict[str, Any],
    priority: Optional[int] = None,
    scheduled_for: Optional[datetime] = None,
    max_retries: Optional[int] = None,
) -> Job:
    """
    Rate-limit check plus insert. The caller must already hold the owner lock.
    """
    await check_rate_limit(session, owner_id)

    now = utcnow()
    if scheduled_for is not None and scheduled_for.tzinfo is None:
        scheduled_for = scheduled_for.replace(tzinfo=timezone.utc)
    job = Job(
        owner_id=owner_id,
        job_type=job_type,
        params=params,
        priority=settings.DEFAULT_PRIORITY if priority is None else priority,
        status=JobStatus.PENDING,
        progress_percent=0,
        retry_count=0,
        max_retries=settings.DEFAULT_MAX_RETRIES if max_retries is None else max_retries,
        created_at=now,
        updated_at=now,
        scheduled_for=scheduled_for or now,
        expires_at=now + timedelta(seconds=settings.JOB_TTL_SECONDS),
    )
    session.add(job)
    await session.flush()

    add_log_entry(
        session, job.id, LogLevel.INFO, "Job created",
        {"job_type": str(job_type), "priority": job.priority, "scheduled_for": job.scheduled_for.isoformat()},
    )
    stage_event(session, job)

    JOBS_CREATED.labels(job_type=job_type).inc()
    QUEUE_DEPTH.labels(job_type=job_type).inc()
    logger.info("Created job %s type=%s owner=%s", job.id, job_type, owner_id)

    await session.flush()
    return job


async def create_job(
    session: AsyncSession,
    owner_id: str,
    job_type: str,
    params: Optional[dict[str, Any]] = None,
    priority: Optional[int] = None,
    scheduled_for: Optional[datetime] = None,
    max_retries: Optional[int] = None,
) -> Job:
    """
    Creates a pending job.

    Raises:
        UnknownJobTypeError: job_type is not a registered type.
        RateLimitedError: the owner is at the active-job ceiling.
    """
    jt = validate_job_type(job_type)
    await lock_owner(session, owner_id)
    return await insert_job(
        session, owner_id, jt, params or {},
        priority=priority, scheduled_for=scheduled_for, max_retries=max_retries,
    )
