#!/usr/bin/env python3
"""Against a running server: submit an echo job, run an SDK worker, check the outcome."""
import asyncio
import uuid

import httpx

from worker_sdk import JobContext, Worker

API_URL = "http://localhost:8000"


async def run_worker():
    worker = Worker(API_URL, worker_id="test-worker-1", handler_timeout=30)

    @worker.register("echo")
    async def echo(ctx: JobContext):
        print(f"Processing params: {ctx.params}")
        await ctx.progress(50, "halfway")
        await asyncio.sleep(0.5)  # simulate work
        return ctx.params

    # Run for a bit then stop
    task = asyncio.create_task(worker.run())
    await asyncio.sleep(5)
    worker.stop()
    await task


async def verify():
    # 0. Wait for API Readiness
    print("Waiting for API to be ready...")
    async with httpx.AsyncClient(base_url=API_URL, timeout=5.0) as check_client:
        for i in range(30):
            try:
                resp = await check_client.get("/health")
                if resp.status_code == 200:
                    print("API is ready!")
                    break
            except httpx.HTTPError:
                pass
            await asyncio.sleep(1)
        else:
            print("API failed to become ready.")
            return

    owner_id = f"owner-e2e-{uuid.uuid4()}"
    async with httpx.AsyncClient(base_url=API_URL, timeout=30.0, headers={"X-Owner-ID": owner_id}) as client:
        # 1. Submit Job
        params = {"msg": "hello world"}

        print("Submitting job...")
        resp = await client.post("/api/v1/jobs", json={"job_type": "echo", "params": params, "priority": 0})
        if resp.status_code != 201:
            print(f"Failed to create job: {resp.text}")
            return

        job_id = resp.json()["id"]
        print(f"Job created: {job_id}")

        # 2. Run Worker
        print("Starting worker...")
        await run_worker()

        # 3. Check status
        print("Checking status...")
        resp = await client.get(f"/api/v1/jobs/{job_id}")
        if resp.status_code != 200:
            print(f"Failed to get job: {resp.status_code}")
            return

        job = resp.json()
        print(f"Job status: {job['status']}")
        print(f"Result: {job.get('result')}")

        logs = (await client.get(f"/api/v1/jobs/{job_id}/logs")).json()["items"]
        for entry in reversed(logs):
            print(f"   [{entry['level']}] {entry['message']}")

        if job["status"] == "completed" and job["result"] == params:
            print("SUCCESS: Job completed successfully.")
        else:
            print("FAILURE: Job did not complete.")


if __name__ == "__main__":
    asyncio.run(verify())
