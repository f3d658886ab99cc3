from datetime import timedelta

from sqlalchemy import func, select

from jobqueue.commands.append_log import append_log
from jobqueue.commands.claim_job import claim_job
from jobqueue.commands.complete_job import complete_job
from jobqueue.commands.purge_old import purge_old_jobs
from jobqueue.db.models import Job, JobLogEntry
from jobqueue.db.types import utcnow
from jobqueue.domain.states import LogLevel


async def _count(session, model, *where):
    return (await session.execute(select(func.count()).select_from(model).where(*where))).scalar()


async def _finished(session, make_job, set_fields, finished_ago: timedelta):
    job = await make_job()
    await claim_job(session, job.id, "w1")
    await append_log(session, job.id, LogLevel.INFO, "working")
    await complete_job(session, job.id, {"ok": True})
    await session.commit()
    await set_fields(job.id, completed_at=utcnow() - finished_ago)
    return job


async def test_purges_old_terminal_jobs_with_logs(session, make_job, set_fields):
    old = await _finished(session, make_job, set_fields, timedelta(days=30))
    recent = await _finished(session, make_job, set_fields, timedelta(days=1))
    active = await make_job()
    old_logs = await _count(session, JobLogEntry, JobLogEntry.job_id == old.id)
    assert old_logs == 4  # created, claimed, working, completed

    jobs_deleted, logs_deleted = await purge_old_jobs(session)
    await session.commit()

    assert (jobs_deleted, logs_deleted) == (1, old_logs)
    assert await _count(session, Job, Job.id == old.id) == 0
    assert await _count(session, JobLogEntry, JobLogEntry.job_id == old.id) == 0
    assert await _count(session, Job, Job.id.in_([recent.id, active.id])) == 2
    assert await _count(session, JobLogEntry, JobLogEntry.job_id == recent.id) == 4

    assert await purge_old_jobs(session) == (0, 0)


async def test_purge_works_through_backlog_in_batches(session, make_job, set_fields):
    for _ in range(5):
        await _finished(session, make_job, set_fields, timedelta(days=30))

    jobs_deleted, _ = await purge_old_jobs(session, batch_size=2)
    assert jobs_deleted == 5


async def test_purge_custom_horizon(session, make_job, set_fields):
    await _finished(session, make_job, set_fields, timedelta(days=2))

    assert await purge_old_jobs(session) == (0, 0)
    jobs_deleted, _ = await purge_old_jobs(session, older_than=timedelta(days=1))
    assert jobs_deleted == 1
