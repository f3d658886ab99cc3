"""Shared fixtures.

Each test gets its own SQLite file database (aiosqlite), so independent
sessions can race against each other the way API workers do against
PostgreSQL. The app's session dependency is pointed at that database.
"""

import os

# Must be set before jobqueue.settings is imported anywhere.
os.environ["SQLALCHEMY_DATABASE_URI"] = "sqlite+aiosqlite:///:memory:"
os.environ["SCHEDULER_ENABLED"] = "false"
os.environ["DB_CREATE_TABLES"] = "false"

from collections.abc import AsyncGenerator

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine

from jobqueue.commands.create_job import create_job
from jobqueue.db.models import Job
from jobqueue.db.session import create_tables, get_db_session, make_session_factory

OWNER = "owner-1"


@pytest.fixture
async def engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'jobs.db'}", echo=False)
    await create_tables(engine)
    try:
        yield engine
    finally:
        await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return make_session_factory(engine)


@pytest.fixture
async def session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest.fixture
def app(session_factory):
    from jobqueue.main import app

    async def override_session():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db_session] = override_session
    yield app
    app.dependency_overrides.clear()


@pytest.fixture
async def client(app) -> AsyncGenerator[AsyncClient, None]:
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
        headers={"X-Owner-ID": OWNER},
    ) as ac:
        yield ac


@pytest.fixture
def make_job(session):
    """Creates and commits a job; extra kwargs go to create_job."""

    async def _make(owner_id: str = OWNER, job_type: str = "echo", params=None, **kwargs) -> Job:
        job = await create_job(session, owner_id, job_type, params if params is not None else {}, **kwargs)
        await session.commit()
        return job

    return _make


@pytest.fixture
def set_fields(session):
    """Writes columns directly, for putting a job into a state only time produces."""

    async def _set(job_id, **values) -> None:
        await session.execute(update(Job).where(Job.id == job_id).values(**values))
        await session.commit()

    return _set
