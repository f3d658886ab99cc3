import asyncio
import logging
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncConnection, AsyncSession

from jobqueue.db.session import AsyncSessionLocal, engine
from jobqueue.scheduler.ticker import SweepSchedule, run_leader_tasks, run_metrics_tasks
from jobqueue.settings import settings
from jobqueue.utils.locking import try_advisory_lock

logger = logging.getLogger(__name__)


class SchedulerService:
    """
    In-process timer for the maintenance sweeps. With several API processes
    only the holder of the leader advisory lock runs sweeps; every process
    refreshes its own metrics gauges.
    """

    def __init__(self, interval: Optional[int] = None, schedule: Optional[SweepSchedule] = None):
        self.interval = interval or settings.SCHEDULER_TICK_SECONDS
        self.schedule = schedule or SweepSchedule()
        self._running = False
        self._task: Optional[asyncio.Task] = None
        self._is_leader = False

    @property
    def is_leader(self) -> bool:
        return self._is_leader

    async def start(self):
        self._running = True
        self._task = asyncio.create_task(self._loop())
        logger.info("Scheduler service started.")

    async def stop(self):
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        logger.info("Scheduler service stopped.")

    async def tick(self, lock_conn: AsyncConnection, session: AsyncSession) -> bool:
        is_leader = await try_advisory_lock(lock_conn)
        await lock_conn.commit()

        if is_leader:
            if not self._is_leader:
                logger.info("Acquired leadership. Running sweeps.")
                self._is_leader = True
            await run_leader_tasks(session, self.schedule)
        elif self._is_leader:
            logger.info("Lost leadership. Stopping sweeps.")
            self._is_leader = False

        await run_metrics_tasks(session)
        return is_leader

    async def _loop(self):
        # The leader lock is tied to this connection; it stays checked out for
        # the lifetime of the loop and is released when it closes.
        lock_conn = None
        try:
            while self._running:
                try:
                    if not lock_conn:
                        lock_conn = await engine.connect()
                    async with AsyncSessionLocal() as session:
                        await self.tick(lock_conn, session)
                except Exception as e:
                    logger.error(f"Error in scheduler ticker: {e}", exc_info=True)
                    self._is_leader = False

                    # If DB error, drop the connection and retry to reconnect
                    if lock_conn:
                        await lock_conn.close()
                        lock_conn = None

                await asyncio.sleep(self.interval)
        finally:
            if lock_conn:
                await lock_conn.close()
