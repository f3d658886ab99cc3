import logging
from typing import Optional

from sqlalchemy import select, or_
from sqlalchemy.ext.asyncio import AsyncSession

from jobqueue.commands.claim_job import claim_job
from jobqueue.db.models import Job
from jobqueue.db.types import utcnow
from jobqueue.domain.states import JobStatus

logger = logging.getLogger(__name__)

# Candidates read per round; small so concurrent workers rarely collide.
CANDIDATE_BATCH = 10


async def next_job(session: AsyncSession, worker_id: str) -> Optional[Job]:
    """
    Claims the most urgent runnable job for `worker_id`, or returns None.

    Order: priority ASC (lower is more urgent), then created_at ASC (FIFO
    within a tier), then id for a stable tie-break. Each candidate goes
    through the atomic claim, so two workers never get the same job; a
    lost race just moves on to the next candidate. None means no runnable
    job was left, not that this worker gave up.
    """
    while True:
        now = utcnow()
        stmt = select(Job.id).where(
            Job.status == JobStatus.PENDING,
            Job.scheduled_for <= now,
            or_(Job.expires_at.is_(None), Job.expires_at > now),
        ).order_by(
            Job.priority.asc(),
            Job.created_at.asc(),
            Job.id.asc(),
        ).limit(CANDIDATE_BATCH).with_for_update(skip_locked=True)

        candidates = (await session.execute(stmt)).scalars().all()
        if not candidates:
            return None

        for job_id in candidates:
            res = await claim_job(session, job_id, worker_id)
            if res.applied:
                return res.job

        # Every candidate went to another worker; those rows are no longer
        # pending, so the rescan makes progress.
        logger.debug("Worker %s lost all %d candidates, rescanning", worker_id, len(candidates))
