import asyncio
import logging
import signal
from typing import Dict, List, Optional

import httpx

from worker_sdk.client import WorkerClient
from worker_sdk.runner import Handler, Middleware, WorkerRunner

logger = logging.getLogger(__name__)


class Worker:
    """
    Process-level worker: a handler registry plus signal-driven shutdown.

        worker = Worker("http://localhost:8000", "worker-1")

        @worker.register("echo")
        async def echo(ctx):
            await ctx.progress(50)
            return ctx.params

        asyncio.run(worker.run())
    """

    def __init__(
        self,
        base_url: str,
        worker_id: str,
        handler_timeout: Optional[float] = 300.0,
        poll_interval: float = 1.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.client = WorkerClient(base_url, worker_id, transport=transport)
        self.handlers: Dict[str, Handler] = {}
        self.middlewares: List[Middleware] = []
        self.runner = WorkerRunner(
            self.client,
            self.handlers,
            middlewares=self.middlewares,
            handler_timeout=handler_timeout,
            poll_interval=poll_interval,
        )

    def register(self, job_type: str):
        def decorator(fn: Handler) -> Handler:
            self.handlers[job_type] = fn
            return fn
        return decorator

    def add_handler(self, job_type: str, handler: Handler):
        self.handlers[job_type] = handler

    def add_middleware(self, middleware: Middleware):
        self.middlewares.append(middleware)

    async def run(self):
        # Setup signal handlers
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, self.stop)
            except NotImplementedError:
                # Windows support
                pass

        logger.info(f"Worker {self.client.worker_id} handling: {', '.join(sorted(self.handlers)) or '-'}")
        try:
            await self.runner.run()
        finally:
            await self.client.close()
            logger.info("Worker stopped")

    def stop(self):
        logger.info("Shutdown signal received")
        self.runner.stop()
