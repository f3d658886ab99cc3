from typing import Any, Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from jobqueue.db.models import Job, JobLogEntry
from jobqueue.db.types import utcnow
from jobqueue.domain.errors import JobNotFoundError
from jobqueue.domain.states import LogLevel


def add_log_entry(
    session: AsyncSession,
    job_id: UUID,
    level: LogLevel,
    message: str,
    meta: Optional[dict[str, Any]] = None,
) -> JobLogEntry:
    """Stage a log entry in the current transaction. Used by every transition."""
    entry = JobLogEntry(
        job_id=job_id,
        level=LogLevel(level),
        message=message,
        meta=meta,
        created_at=utcnow(),
    )
    session.add(entry)
    return entry


async def append_log(
    session: AsyncSession,
    job_id: UUID,
    level: LogLevel,
    message: str,
    metadata: Optional[dict[str, Any]] = None,
) -> JobLogEntry:
    """
    Worker-facing: append a diagnostic entry to a job's execution log.
    Entries are independent rows, so concurrent writers need no coordination.
    """
    exists = await session.scalar(select(Job.id).where(Job.id == job_id))
    if exists is None:
        raise JobNotFoundError(job_id)

    entry = add_log_entry(session, job_id, level, message, metadata)
    await session.flush()
    return entry
