from datetime import timedelta
from uuid import uuid4

import pytest

from jobqueue.commands.append_log import append_log
from jobqueue.commands.claim_job import claim_job
from jobqueue.commands.complete_job import complete_job
from jobqueue.commands.queries import JobSort, SortOrder, get_job, get_job_logs, list_jobs, queue_stats
from jobqueue.db.types import utcnow
from jobqueue.domain.errors import JobNotFoundError
from jobqueue.domain.states import JobStatus, LogLevel

from conftest import OWNER


async def test_get_job_hides_foreign_jobs(session, make_job):
    job = await make_job()
    assert (await get_job(session, job.id, OWNER)).id == job.id

    with pytest.raises(JobNotFoundError):
        await get_job(session, job.id, "owner-2")
    with pytest.raises(JobNotFoundError):
        await get_job(session, uuid4(), OWNER)


async def test_list_filters_sorts_and_pages(session, make_job, set_fields):
    now = utcnow()
    a = await make_job(priority=3)
    b = await make_job(job_type="sync_youtube", priority=1)
    c = await make_job(priority=7)
    await make_job(owner_id="owner-2")
    await set_fields(a.id, created_at=now - timedelta(minutes=3))
    await set_fields(b.id, created_at=now - timedelta(minutes=2))
    await set_fields(c.id, created_at=now - timedelta(minutes=1))
    await claim_job(session, a.id, "w1")
    await session.commit()

    jobs, total = await list_jobs(session, OWNER)
    assert total == 3
    assert [j.id for j in jobs] == [c.id, b.id, a.id]

    jobs, _ = await list_jobs(session, OWNER, sort=JobSort.PRIORITY, order=SortOrder.ASC)
    assert [j.id for j in jobs] == [b.id, a.id, c.id]

    jobs, total = await list_jobs(session, OWNER, status=JobStatus.PENDING)
    assert total == 2
    assert {j.id for j in jobs} == {b.id, c.id}

    jobs, total = await list_jobs(session, OWNER, job_type="sync_youtube")
    assert total == 1 and jobs[0].id == b.id

    jobs, total = await list_jobs(session, OWNER, limit=1, offset=1)
    assert total == 3
    assert [j.id for j in jobs] == [b.id]


async def test_logs_newest_first_with_level_filter(session, make_job):
    job = await make_job()
    await append_log(session, job.id, LogLevel.DEBUG, "step 1")
    await append_log(session, job.id, LogLevel.WARNING, "slow upstream")
    await append_log(session, job.id, LogLevel.DEBUG, "step 2")
    await session.commit()

    entries, total = await get_job_logs(session, job.id, OWNER)
    assert total == 4
    assert [e.message for e in entries] == ["step 2", "slow upstream", "step 1", "Job created"]

    entries, total = await get_job_logs(session, job.id, OWNER, level=LogLevel.DEBUG, limit=1)
    assert total == 2
    assert [e.message for e in entries] == ["step 2"]

    with pytest.raises(JobNotFoundError):
        await get_job_logs(session, job.id, "owner-2")


async def test_queue_stats(session, make_job, set_fields):
    done = await make_job()
    await make_job(job_type="sync_youtube")
    await make_job(owner_id="owner-2")
    await claim_job(session, done.id, "w1")
    await complete_job(session, done.id, {})
    await session.commit()
    started = utcnow() - timedelta(seconds=30)
    await set_fields(done.id, started_at=started, completed_at=started + timedelta(seconds=12))

    stats = await queue_stats(session, OWNER)
    assert stats["total"] == 2
    assert stats["by_status"]["completed"] == 1
    assert stats["by_status"]["pending"] == 1
    assert stats["by_status"]["failed"] == 0
    assert stats["by_type"]["echo"]["completed"] == 1
    assert stats["by_type"]["sync_youtube"]["total"] == 1
    assert stats["avg_processing_seconds"] == pytest.approx(12.0)

    overall = await queue_stats(session)
    assert overall["total"] == 3
