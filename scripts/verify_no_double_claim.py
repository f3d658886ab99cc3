#!/usr/bin/env python3
"""Against a running server: many workers race for one job, exactly one may win."""
import asyncio
import uuid

import httpx

API_URL = "http://localhost:8000"


async def attempt_claim(worker_id):
    async with httpx.AsyncClient(base_url=API_URL) as client:
        try:
            resp = await client.post("/api/v1/workers/claim", json={"worker_id": worker_id}, timeout=5.0)
            if resp.status_code == 200:
                job = resp.json()["job"]
                if job:
                    return {"worker_id": worker_id, "job": job}
        except httpx.HTTPError as e:
            print(f"   {worker_id}: request failed: {e}")
    return None


async def verify_no_double_claim():
    owner_id = f"owner-concurrency-{uuid.uuid4()}"
    # 1. Create 1 job
    async with httpx.AsyncClient(base_url=API_URL, headers={"X-Owner-ID": owner_id}) as client:
        print("1. Creating 1 job...")
        resp = await client.post("/api/v1/jobs", json={
            "job_type": "echo",
            "params": {"task": "concurrency_test"},
            "priority": 0,
        })
        resp.raise_for_status()
        job_id = resp.json()["id"]
        print(f"   Job created: {job_id}")

    # 2. Spawn 20 concurrent workers trying to claim
    print("2. Spawning 20 concurrent claim attempts...")
    results = await asyncio.gather(*(attempt_claim(f"worker-{i}") for i in range(20)))

    # 3. Analyze results (other pending jobs on the server may be handed out too)
    winners = [r for r in results if r is not None and r["job"]["id"] == job_id]
    print(f"3. Results: {len(winners)} workers got job {job_id}.")

    if len(winners) == 1:
        print("SUCCESS: Exactly one worker claimed the job.")
        print(f"   Winner: {winners[0]['worker_id']}")
    elif len(winners) == 0:
        print("FAILURE: No one claimed the job (unexpected).")
    else:
        print(f"FAILURE: {len(winners)} workers claimed the job! Double claim detected.")
        for w in winners:
            print(f"   - {w['worker_id']}")


if __name__ == "__main__":
    asyncio.run(verify_no_double_claim())
