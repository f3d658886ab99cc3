import logging

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from jobqueue.api.v1.metrics import RATE_LIMITED_TOTAL
from jobqueue.db.models import Job
from jobqueue.domain.errors import RateLimitedError
from jobqueue.domain.states import ACTIVE_STATUSES
from jobqueue.settings import settings

logger = logging.getLogger(__name__)


async def count_active_jobs(session: AsyncSession, owner_id: str) -> int:
    stmt = select(func.count()).select_from(Job).where(
        Job.owner_id == owner_id,
        Job.status.in_(ACTIVE_STATUSES),
    )
    return (await session.execute(stmt)).scalar() or 0


async def check_rate_limit(session: AsyncSession, owner_id: str) -> None:
    """
    Refuses creation when the owner already has the maximum number of
    pending/processing jobs. Callers must back off; nothing is queued.
    """
    limit = settings.MAX_ACTIVE_JOBS_PER_OWNER
    active = await count_active_jobs(session, owner_id)
    if active >= limit:
        RATE_LIMITED_TOTAL.inc()
        logger.info("Rate limited owner=%s active=%s limit=%s", owner_id, active, limit)
        raise RateLimitedError(owner_id, active, limit)
