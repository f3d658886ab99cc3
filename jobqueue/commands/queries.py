from enum import StrEnum, auto
from typing import Any, Optional
from uuid import UUID

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from jobqueue.db.models import Job, JobLogEntry
from jobqueue.domain.errors import JobNotFoundError
from jobqueue.domain.states import JobStatus, LogLevel


class JobSort(StrEnum):
    CREATED_AT = auto()
    UPDATED_AT = auto()
    PRIORITY = auto()


class SortOrder(StrEnum):
    ASC = auto()
    DESC = auto()


_SORT_COLUMNS = {
    JobSort.CREATED_AT: Job.created_at,
    JobSort.UPDATED_AT: Job.updated_at,
    JobSort.PRIORITY: Job.priority,
}


async def get_job(session: AsyncSession, job_id: UUID, owner_id: str) -> Job:
    """Raises JobNotFoundError for unknown jobs and for jobs of other owners alike."""
    stmt = select(Job).where(Job.id == job_id, Job.owner_id == owner_id).execution_options(populate_existing=True)
    job = (await session.execute(stmt)).scalar_one_or_none()
    if not job:
        raise JobNotFoundError(job_id)
    return job


async def list_jobs(
    session: AsyncSession,
    owner_id: str,
    status: Optional[JobStatus] = None,
    job_type: Optional[str] = None,
    limit: int = 50,
    offset: int = 0,
    sort: JobSort = JobSort.CREATED_AT,
    order: SortOrder = SortOrder.DESC,
) -> tuple[list[Job], int]:
    filters = [Job.owner_id == owner_id]
    if status is not None:
        filters.append(Job.status == status)
    if job_type is not None:
        filters.append(Job.job_type == job_type)

    total = (await session.execute(select(func.count()).select_from(Job).where(*filters))).scalar() or 0

    column = _SORT_COLUMNS[JobSort(sort)]
    if SortOrder(order) == SortOrder.ASC:
        ordering = (column.asc(), Job.created_at.asc(), Job.id.asc())
    else:
        ordering = (column.desc(), Job.created_at.desc(), Job.id.desc())

    stmt = select(Job).where(*filters).order_by(*ordering).limit(limit).offset(offset)
    jobs = list((await session.execute(stmt)).scalars().all())
    return jobs, total


async def get_job_logs(
    session: AsyncSession,
    job_id: UUID,
    owner_id: str,
    level: Optional[LogLevel] = None,
    limit: int = 100,
    offset: int = 0,
) -> tuple[list[JobLogEntry], int]:
    """Newest entries first. Ownership is checked the same way as get_job."""
    await get_job(session, job_id, owner_id)

    filters = [JobLogEntry.job_id == job_id]
    if level is not None:
        filters.append(JobLogEntry.level == level)

    total = (await session.execute(select(func.count()).select_from(JobLogEntry).where(*filters))).scalar() or 0

    stmt = (
        select(JobLogEntry)
        .where(*filters)
        .order_by(JobLogEntry.created_at.desc(), JobLogEntry.id.desc())
        .limit(limit)
        .offset(offset)
    )
    entries = list((await session.execute(stmt)).scalars().all())
    return entries, total


async def queue_stats(session: AsyncSession, owner_id: Optional[str] = None) -> dict[str, Any]:
    """
    Aggregate counts by status and by job type, plus the mean processing time
    (started_at -> completed_at) of completed jobs. Global when owner_id is None.
    """
    scope = [Job.owner_id == owner_id] if owner_id is not None else []

    stmt = select(Job.job_type, Job.status, func.count()).where(*scope).group_by(Job.job_type, Job.status)
    rows = (await session.execute(stmt)).all()

    by_status = {str(s): 0 for s in JobStatus}
    by_type: dict[str, dict[str, int]] = {}
    total = 0
    for job_type, status, count in rows:
        total += count
        by_status[str(status)] = by_status.get(str(status), 0) + count
        bucket = by_type.setdefault(job_type, {"total": 0, **{str(s): 0 for s in JobStatus}})
        bucket["total"] += count
        bucket[str(status)] = bucket.get(str(status), 0) + count

    # Durations are computed in Python so the query stays portable across dialects.
    stmt = select(Job.started_at, Job.completed_at).where(
        *scope,
        Job.status == JobStatus.COMPLETED,
        Job.started_at.is_not(None),
        Job.completed_at.is_not(None),
    )
    durations = [
        (completed - started).total_seconds()
        for started, completed in (await session.execute(stmt)).all()
    ]
    avg = sum(durations) / len(durations) if durations else None

    return {
        "total": total,
        "by_status": by_status,
        "by_type": by_type,
        "avg_processing_seconds": avg,
    }
