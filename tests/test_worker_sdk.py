import asyncio
from uuid import uuid4

import pytest
from httpx import ASGITransport

from worker_sdk import HandlerError, JobCancelled, JobContext, WorkerClient, WorkerRunner


@pytest.fixture
async def worker_client(app):
    client = WorkerClient("http://test", "sdk-worker", transport=ASGITransport(app=app))
    yield client
    await client.close()


async def _create(client, job_type="echo", params=None, **extra):
    resp = await client.post("/api/v1/jobs", json={"job_type": job_type, "params": params or {}, **extra})
    assert resp.status_code == 201, resp.text
    return resp.json()


async def _job(client, job_id):
    return (await client.get(f"/api/v1/jobs/{job_id}")).json()


async def echo(ctx: JobContext):
    await ctx.progress(50, "echoing")
    await ctx.log("echo handler ran", size=len(ctx.params))
    return ctx.params


async def test_runner_processes_echo_job(client, worker_client):
    job = await _create(client, params={"message": "hi"})
    runner = WorkerRunner(worker_client, {"echo": echo})

    assert await runner.run_once() is True
    assert await runner.run_once() is False

    final = await _job(client, job["id"])
    assert final["status"] == "completed"
    assert final["result"] == {"message": "hi"}

    logs = (await client.get(f"/api/v1/jobs/{job['id']}/logs")).json()["items"]
    assert any(e["message"] == "echo handler ran" and e["metadata"] == {"size": 1} for e in logs)


async def test_middleware_wraps_handler(client, worker_client):
    job = await _create(client, params={"n": 1})
    calls = []

    async def tracing(ctx, call_next):
        calls.append(("before", ctx.job_type))
        result = await call_next(ctx)
        calls.append(("after", ctx.job_type))
        return {**result, "traced": True}

    runner = WorkerRunner(worker_client, {"echo": echo}, middlewares=[tracing])
    await runner.run_once()

    assert calls == [("before", "echo"), ("after", "echo")]
    assert (await _job(client, job["id"]))["result"] == {"n": 1, "traced": True}


async def test_unknown_job_type_fails_job(client, worker_client):
    job = await _create(client, job_type="sync_youtube", max_retries=0)
    runner = WorkerRunner(worker_client, {"echo": echo})

    await runner.run_once()

    final = await _job(client, job["id"])
    assert final["status"] == "failed"
    assert final["error_code"] == "UNKNOWN_JOB_TYPE"


async def test_handler_timeout(client, worker_client):
    job = await _create(client, max_retries=0)

    async def slow(ctx):
        await asyncio.sleep(5)

    runner = WorkerRunner(worker_client, {"echo": slow}, handler_timeout=0.05)
    await runner.run_once()

    final = await _job(client, job["id"])
    assert final["status"] == "failed"
    assert final["error_code"] == "HANDLER_TIMEOUT"


async def test_handler_exception_is_retried(client, worker_client):
    job = await _create(client, max_retries=1)

    async def broken(ctx):
        raise RuntimeError("upstream said no")

    runner = WorkerRunner(worker_client, {"echo": broken})
    await runner.run_once()

    after_first = await _job(client, job["id"])
    assert after_first["status"] == "pending"
    assert after_first["retry_count"] == 1

    logs = (await client.get(f"/api/v1/jobs/{job['id']}/logs", params={"level": "error"})).json()["items"]
    assert "RuntimeError: upstream said no" in logs[0]["message"]


async def test_handler_error_code(client, worker_client):
    job = await _create(client, max_retries=0)

    async def picky(ctx):
        raise HandlerError("token revoked", code="AUTH_REVOKED", details={"platform": "youtube"})

    runner = WorkerRunner(worker_client, {"echo": picky})
    await runner.run_once()

    final = await _job(client, job["id"])
    assert final["error_code"] == "AUTH_REVOKED"
    assert final["error_details"] == {"platform": "youtube"}


async def test_cooperative_cancellation(client, worker_client):
    job = await _create(client)
    reached_end = False

    async def long_sync(ctx):
        nonlocal reached_end
        await ctx.progress(10)
        resp = await client.post(f"/api/v1/jobs/{ctx.id}/cancel")
        assert resp.json()["cancelled"] is True
        await ctx.progress(20)
        reached_end = True
        return {"synced": True}

    runner = WorkerRunner(worker_client, {"echo": long_sync})
    await runner.run_once()

    final = await _job(client, job["id"])
    assert not reached_end
    assert final["status"] == "cancelled"
    assert final["result"] is None


async def test_check_cancelled_polls_status(client, worker_client):
    job = await _create(client)
    await client.post(f"/api/v1/jobs/{job['id']}/cancel")

    ctx = JobContext(worker_client, job)
    assert not ctx.cancelled
    with pytest.raises(JobCancelled):
        await ctx.check_cancelled()
    assert ctx.cancelled


async def test_client_swallows_http_errors(worker_client):
    assert await worker_client.status(uuid4()) is None
    assert await worker_client.log(uuid4(), "nothing to attach to") is False
