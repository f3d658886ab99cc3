from typing import Optional
from uuid import UUID

from sqlalchemy import case, func, update
from sqlalchemy.ext.asyncio import AsyncSession

from jobqueue.commands.claim_job import load_job
from jobqueue.db.models import Job
from jobqueue.db.types import utcnow
from jobqueue.domain.models import TransitionResult
from jobqueue.domain.states import JobStatus
from jobqueue.services.notifier import stage_event


async def report_progress(
    session: AsyncSession,
    job_id: UUID,
    percent: int,
    message: Optional[str] = None,
    worker_id: Optional[str] = None,
) -> TransitionResult:
    """
    Updates progress of a processing job. Progress never moves backwards.

    Returns applied=False when the job is no longer processing (or is held by
    another worker); a `cancelled` status in the result is the signal for the
    handler to stop.
    """
    if not 0 <= percent <= 100:
        raise ValueError(f"percent must be between 0 and 100, got {percent}")

    conditions = [Job.id == job_id, Job.status == JobStatus.PROCESSING]
    if worker_id is not None:
        conditions.append(Job.worker_id == worker_id)

    stmt = update(Job).where(*conditions).values(
        progress_percent=case((Job.progress_percent < percent, percent), else_=Job.progress_percent),
        progress_message=func.coalesce(message, Job.progress_message),
        updated_at=utcnow(),
    ).returning(Job).execution_options(populate_existing=True)

    job = (await session.execute(stmt)).scalar_one_or_none()
    if not job:
        return TransitionResult(await load_job(session, job_id), applied=False)

    stage_event(session, job)
    await session.flush()
    return TransitionResult(job, applied=True)
