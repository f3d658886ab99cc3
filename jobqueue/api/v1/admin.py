from typing import Optional

from fastapi import APIRouter, Query

from jobqueue.api.deps import DbSession
from jobqueue.commands.expire_stale import expire_stale_jobs
from jobqueue.commands.purge_old import purge_old_jobs
from jobqueue.commands.queries import queue_stats
from jobqueue.commands.reclaim_stuck import reclaim_stuck_jobs
from jobqueue.commands.retry_failed import retry_failed_jobs

router = APIRouter()


# Manual triggers for the maintenance sweeps, for deployments driving them
# from an external cron instead of the in-process scheduler.

@router.post("/sweeps/retry")
async def trigger_retry(session: DbSession, limit: Optional[int] = Query(None, ge=1)):
    count = await retry_failed_jobs(session, limit=limit)
    await session.commit()
    return {"retried_count": count}


@router.post("/sweeps/expire")
async def trigger_expire(session: DbSession, limit: Optional[int] = Query(None, ge=1)):
    count = await expire_stale_jobs(session, limit=limit)
    await session.commit()
    return {"expired_count": count}


@router.post("/sweeps/stuck")
async def trigger_stuck(session: DbSession, limit: Optional[int] = Query(None, ge=1)):
    count = await reclaim_stuck_jobs(session, limit=limit)
    await session.commit()
    return {"recovered_count": count}


@router.post("/sweeps/retention")
async def trigger_retention(session: DbSession):
    jobs_deleted, logs_deleted = await purge_old_jobs(session)
    await session.commit()
    return {"jobs_deleted": jobs_deleted, "logs_deleted": logs_deleted}


@router.get("/stats")
async def global_stats(session: DbSession):
    return await queue_stats(session)
