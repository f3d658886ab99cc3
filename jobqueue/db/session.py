from typing import AsyncGenerator

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from jobqueue.settings import settings


class Base(DeclarativeBase):
    pass


def make_session_factory(bind: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    # Commands keep using returned rows after the router commits, and every
    # read that must be current says so with populate_existing.
    return async_sessionmaker(
        bind=bind,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


engine = create_async_engine(settings.SQLALCHEMY_DATABASE_URI, echo=False, pool_pre_ping=True)
AsyncSessionLocal = make_session_factory(engine)


async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    """Request-scoped session; anything not committed by the route is rolled back on close."""
    async with AsyncSessionLocal() as session:
        yield session


async def create_tables(bind: AsyncEngine = engine) -> None:
    # Import registers the mapped tables on Base.metadata
    from jobqueue.db import models  # noqa: F401

    async with bind.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
