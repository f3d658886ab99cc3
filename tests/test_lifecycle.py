import asyncio
from datetime import timedelta
from uuid import uuid4

import pytest
from sqlalchemy import select

from jobqueue.commands.append_log import append_log
from jobqueue.commands.cancel_job import cancel_job
from jobqueue.commands.claim_job import claim_job, load_job
from jobqueue.commands.complete_job import complete_job
from jobqueue.commands.create_job import create_job
from jobqueue.commands.fail_job import fail_job
from jobqueue.commands.report_progress import report_progress
from jobqueue.db.models import JobLogEntry
from jobqueue.db.types import utcnow
from jobqueue.domain.errors import JobNotFoundError, UnknownJobTypeError
from jobqueue.domain.states import ErrorCode, JobStatus, LogLevel
from jobqueue.settings import settings

from conftest import OWNER


async def _logs(session, job_id):
    stmt = select(JobLogEntry).where(JobLogEntry.job_id == job_id).order_by(JobLogEntry.id)
    return (await session.execute(stmt)).scalars().all()


async def test_create_sets_defaults_and_logs(session, make_job):
    before = utcnow()
    job = await make_job(params={"x": 1})

    assert job.status == JobStatus.PENDING
    assert job.priority == settings.DEFAULT_PRIORITY
    assert job.max_retries == settings.DEFAULT_MAX_RETRIES
    assert job.retry_count == 0
    assert job.progress_percent == 0
    assert job.worker_id is None
    assert job.scheduled_for >= before
    assert job.expires_at == job.created_at + timedelta(seconds=settings.JOB_TTL_SECONDS)

    logs = await _logs(session, job.id)
    assert [entry.message for entry in logs] == ["Job created"]
    assert logs[0].level == LogLevel.INFO


async def test_create_rejects_unknown_type(session):
    with pytest.raises(UnknownJobTypeError) as exc:
        await create_job(session, OWNER, "mine_bitcoin", {})
    assert exc.value.code == ErrorCode.UNKNOWN_JOB_TYPE
    assert exc.value.status_code == 422


async def test_claim_is_compare_and_swap(session, make_job):
    job = await make_job()

    first = await claim_job(session, job.id, "w1")
    await session.commit()
    assert first.applied
    assert first.job.status == JobStatus.PROCESSING
    assert first.job.worker_id == "w1"
    assert first.job.started_at is not None

    second = await claim_job(session, job.id, "w2")
    assert not second.applied
    assert second.status == JobStatus.PROCESSING
    assert second.job.worker_id == "w1"


async def test_claim_unknown_job_raises(session):
    with pytest.raises(JobNotFoundError):
        await claim_job(session, uuid4(), "w1")


async def test_concurrent_claims_have_one_winner(session_factory, make_job):
    job = await make_job()

    async def attempt(i):
        async with session_factory() as s:
            res = await claim_job(s, job.id, f"w{i}")
            await s.commit()
            return res

    results = await asyncio.gather(*(attempt(i) for i in range(8)))
    winners = [r for r in results if r.applied]
    assert len(winners) == 1

    async with session_factory() as s:
        final = await load_job(s, job.id)
        assert final.status == JobStatus.PROCESSING
        assert final.worker_id == winners[0].job.worker_id
        claimed = (await s.execute(
            select(JobLogEntry).where(JobLogEntry.job_id == job.id, JobLogEntry.message.like("Claimed%"))
        )).scalars().all()
        assert len(claimed) == 1


async def test_progress_is_monotonic(session, make_job):
    job = await make_job()
    await claim_job(session, job.id, "w1")
    await session.commit()

    res = await report_progress(session, job.id, 50, "halfway")
    assert res.applied
    assert res.job.progress_percent == 50

    res = await report_progress(session, job.id, 30, "going back?")
    await session.commit()
    assert res.applied
    assert res.job.progress_percent == 50
    assert res.job.progress_message == "going back?"

    res = await report_progress(session, job.id, 70)
    assert res.job.progress_percent == 70
    assert res.job.progress_message == "going back?"


async def test_progress_validates_range(session, make_job):
    job = await make_job()
    with pytest.raises(ValueError):
        await report_progress(session, job.id, 101)


async def test_progress_on_pending_job_is_noop(session, make_job):
    job = await make_job()
    res = await report_progress(session, job.id, 10)
    assert not res.applied
    assert res.status == JobStatus.PENDING


async def test_complete_is_idempotent(session, make_job):
    job = await make_job()
    await claim_job(session, job.id, "w1")
    await session.commit()

    res = await complete_job(session, job.id, {"answer": 42}, worker_id="w1")
    await session.commit()
    assert res.applied
    assert res.job.status == JobStatus.COMPLETED
    assert res.job.progress_percent == 100
    assert res.job.worker_id is None
    assert res.job.completed_at is not None

    again = await complete_job(session, job.id, {"answer": 0})
    assert not again.applied
    assert again.job.result == {"answer": 42}


async def test_stale_worker_cannot_complete(session, make_job):
    job = await make_job()
    await claim_job(session, job.id, "w1")
    await session.commit()

    res = await complete_job(session, job.id, {"done": True}, worker_id="w2")
    assert not res.applied
    assert res.status == JobStatus.PROCESSING
    assert res.job.worker_id == "w1"

    res = await fail_job(session, job.id, "BOOM", "late failure", worker_id="w2")
    assert not res.applied


async def test_fail_retries_with_growing_backoff(session, make_job):
    job = await make_job(max_retries=2)
    previous = job.scheduled_for

    for attempt in (1, 2):
        await claim_job(session, job.id, "w1")
        before = utcnow()
        res = await fail_job(session, job.id, "UPSTREAM", f"attempt {attempt} broke", worker_id="w1")
        await session.commit()

        assert res.applied
        assert res.job.status == JobStatus.PENDING
        assert res.job.retry_count == attempt
        assert res.job.worker_id is None
        assert res.job.started_at is None
        assert res.job.error_code is None
        assert res.job.scheduled_for > before
        assert res.job.scheduled_for > previous
        previous = res.job.scheduled_for

    await claim_job(session, job.id, "w1")
    res = await fail_job(session, job.id, "UPSTREAM", "gave up", error_details={"http_status": 503})
    await session.commit()

    assert res.applied
    assert res.job.status == JobStatus.FAILED
    assert res.job.retry_count == 2
    assert res.job.error_code == "UPSTREAM"
    assert res.job.error_message == "gave up"
    assert res.job.error_details == {"http_status": 503}
    assert res.job.completed_at is not None

    errors = [e for e in await _logs(session, job.id) if e.level == LogLevel.ERROR]
    assert len(errors) == 3
    assert errors[-1].meta["error_code"] == "UPSTREAM"


async def test_fail_defaults_error_code(session, make_job):
    job = await make_job(max_retries=0)
    await claim_job(session, job.id, "w1")
    res = await fail_job(session, job.id, None, "something broke")
    assert res.job.error_code == ErrorCode.JOB_ERROR


async def test_cancel_then_late_complete_is_noop(session, make_job):
    job = await make_job()
    await claim_job(session, job.id, "w1")
    await session.commit()

    res = await cancel_job(session, job.id, OWNER)
    await session.commit()
    assert res.applied
    assert res.job.status == JobStatus.CANCELLED
    assert res.job.worker_id is None
    assert res.job.completed_at is not None

    progress = await report_progress(session, job.id, 80, worker_id="w1")
    assert not progress.applied
    assert progress.status == JobStatus.CANCELLED

    late = await complete_job(session, job.id, {"too": "late"}, worker_id="w1")
    assert not late.applied
    assert late.job.result is None


async def test_cancel_terminal_job_is_noop(session, make_job):
    job = await make_job()
    await claim_job(session, job.id, "w1")
    await complete_job(session, job.id, {})
    await session.commit()

    res = await cancel_job(session, job.id, OWNER)
    assert not res.applied
    assert res.status == JobStatus.COMPLETED


async def test_cancel_foreign_job_is_not_found(session, make_job):
    job = await make_job()
    with pytest.raises(JobNotFoundError):
        await cancel_job(session, job.id, "someone-else")


async def test_append_log(session, make_job):
    job = await make_job()
    entry = await append_log(session, job.id, LogLevel.DEBUG, "fetched page 1", {"page": 1})
    await session.commit()
    assert entry.id is not None
    assert entry.meta == {"page": 1}

    with pytest.raises(JobNotFoundError):
        await append_log(session, uuid4(), LogLevel.INFO, "orphan")
