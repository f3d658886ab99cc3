import logging
from datetime import timedelta
from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from jobqueue.api.v1.metrics import CACHE_LOOKUPS, JOBS_DEDUPLICATED
from jobqueue.commands.create_job import insert_job, validate_job_type
from jobqueue.db.models import Job
from jobqueue.db.types import utcnow
from jobqueue.domain.params import params_equal
from jobqueue.domain.states import ACTIVE_STATUSES, JobStatus
from jobqueue.settings import settings
from jobqueue.utils.locking import lock_owner

logger = logging.getLogger(__name__)

# Completed rows read per round trip while scanning for a cache hit.
CACHE_SCAN_BATCH = 50


async def find_or_create_job(
    session: AsyncSession,
    owner_id: str,
    job_type: str,
    params: Optional[dict[str, Any]] = None,
    priority: Optional[int] = None,
    window: Optional[timedelta] = None,
) -> tuple[Job, bool]:
    """
    Returns an identical in-flight job created within the dedup window, or
    creates a new one. Returns (job, is_new).

    Params are compared structurally in Python rather than via a hash or the
    store's JSON equality, so two requests only match when their payloads are
    the same JSON value.
    """
    jt = validate_job_type(job_type)
    params = params or {}
    window = window if window is not None else timedelta(seconds=settings.DEDUP_WINDOW_SECONDS)

    await lock_owner(session, owner_id)

    since = utcnow() - window
    stmt = select(Job).where(
        Job.owner_id == owner_id,
        Job.job_type == jt,
        Job.status.in_(ACTIVE_STATUSES),
        Job.created_at > since,
    ).order_by(Job.created_at.desc())
    candidates = (await session.execute(stmt)).scalars().all()

    for job in candidates:
        if params_equal(job.params, params):
            JOBS_DEDUPLICATED.labels(job_type=jt).inc()
            logger.info("Deduplicated request owner=%s type=%s -> job %s", owner_id, jt, job.id)
            return job, False

    job = await insert_job(session, owner_id, jt, params, priority=priority)
    return job, True


async def get_cached_result(
    session: AsyncSession,
    owner_id: str,
    job_type: str,
    params: Optional[dict[str, Any]] = None,
    max_age: Optional[timedelta] = None,
) -> Optional[dict[str, Any]]:
    """
    Result of the most recent identical job that completed within max_age, or
    None. Pure lookup: never creates a job.
    """
    jt = validate_job_type(job_type)
    params = params or {}
    max_age = max_age if max_age is not None else timedelta(seconds=settings.CACHE_TTL_SECONDS)

    since = utcnow() - max_age
    stmt = select(Job).where(
        Job.owner_id == owner_id,
        Job.job_type == jt,
        Job.status == JobStatus.COMPLETED,
        Job.result.is_not(None),
        Job.completed_at > since,
    ).order_by(Job.completed_at.desc(), Job.id.asc())

    # Every completion inside the window is a candidate, however many there are.
    offset = 0
    while True:
        batch = (await session.execute(stmt.offset(offset).limit(CACHE_SCAN_BATCH))).scalars().all()
        for job in batch:
            if job.result is not None and params_equal(job.params, params):
                CACHE_LOOKUPS.labels(job_type=jt, result="hit").inc()
                return job.result
        if len(batch) < CACHE_SCAN_BATCH:
            break
        offset += CACHE_SCAN_BATCH

    CACHE_LOOKUPS.labels(job_type=jt, result="miss").inc()
    return None
