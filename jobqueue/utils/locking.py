import hashlib
from typing import Union

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncSession

# A fixed key for the scheduler leader lock.
# Postgres advisory lock keys are signed 64-bit integers.
LEADER_LOCK_KEY = 84728472


def _is_postgres(bind: Union[AsyncSession, AsyncConnection]) -> bool:
    if isinstance(bind, AsyncSession):
        return bind.get_bind().dialect.name == "postgresql"
    return bind.dialect.name == "postgresql"


def advisory_key(*parts: str) -> int:
    """Stable signed 64-bit key derived from the given strings."""
    digest = hashlib.sha256(":".join(parts).encode("utf-8")).digest()
    return int.from_bytes(digest[:8], "big", signed=True)


async def try_advisory_lock(bind: Union[AsyncSession, AsyncConnection], key: int = LEADER_LOCK_KEY) -> bool:
    """
    Attempts to acquire a Postgres session-level advisory lock.
    Returns True if acquired (or already held by this connection), False otherwise.

    Note: Session-level locks live as long as the database connection, so the
    caller must keep the same connection checked out between attempts.
    Other dialects have no advisory locks; the single process is always leader.
    """
    if not _is_postgres(bind):
        return True
    result = await bind.execute(
        text("SELECT pg_try_advisory_lock(:key)"),
        {"key": key}
    )
    return result.scalar() is True


async def lock_owner(session: AsyncSession, owner_id: str) -> None:
    """
    Serializes job creation per owner until the current transaction ends, so the
    active-job count and the dedup lookup stay consistent with the insert.
    No-op outside Postgres.
    """
    if not _is_postgres(session):
        return
    await session.execute(
        text("SELECT pg_advisory_xact_lock(:key)"),
        {"key": advisory_key("owner", owner_id)}
    )
