import asyncio
import logging
from typing import Any, Callable, Coroutine, Dict, List, Optional

from worker_sdk.client import WorkerClient
from worker_sdk.context import HandlerError, JobCancelled, JobContext

logger = logging.getLogger(__name__)

Handler = Callable[[JobContext], Coroutine[Any, Any, Optional[dict]]]
Middleware = Callable[[JobContext, Handler], Coroutine[Any, Any, Optional[dict]]]

# Error codes reported by the runner itself
UNKNOWN_JOB_TYPE = "UNKNOWN_JOB_TYPE"
HANDLER_TIMEOUT = "HANDLER_TIMEOUT"
JOB_ERROR = "JOB_ERROR"


class WorkerRunner:
    """
    Poll, dispatch to the handler registered for the job's type, report.

    Handlers run under `handler_timeout`; a timeout is reported as
    HANDLER_TIMEOUT and any other exception as JOB_ERROR (or the code of a
    HandlerError). The queue decides whether the failure is retried.
    """

    def __init__(
        self,
        client: WorkerClient,
        handlers: Dict[str, Handler],
        middlewares: Optional[List[Middleware]] = None,
        handler_timeout: Optional[float] = 300.0,
        poll_interval: float = 1.0,
    ):
        self.client = client
        self.handlers = handlers
        self.middlewares = middlewares if middlewares is not None else []
        self.handler_timeout = handler_timeout
        self.poll_interval = poll_interval
        self.running = False
        self._shutdown_event = asyncio.Event()

    async def run(self):
        self.running = True
        self._shutdown_event.clear()
        logger.info(f"Worker {self.client.worker_id} started")

        try:
            while self.running:
                try:
                    processed = await self.run_once()
                    if not processed:
                        try:
                            await asyncio.wait_for(self._shutdown_event.wait(), timeout=self.poll_interval)
                        except asyncio.TimeoutError:
                            pass

                except Exception as e:
                    logger.exception("Error in runner loop for worker %s: %s", self.client.worker_id, e)
                    try:
                        await asyncio.wait_for(self._shutdown_event.wait(), timeout=5.0)
                    except asyncio.TimeoutError:
                        pass
        finally:
            logger.info("Worker runner stopped")

    def stop(self):
        self.running = False
        self._shutdown_event.set()

    async def run_once(self) -> bool:
        """Claims and processes at most one job. Returns True if one was processed."""
        job = await self.client.claim()
        if not job:
            return False
        logger.info(f"Claimed job: {job['id']} ({job['job_type']})")
        await self.process_job(job)
        return True

    def _chain(self, handler: Handler) -> Handler:
        chain = handler
        # Apply middleware in reverse order (onion)
        for mw in reversed(self.middlewares):
            def make_wrapper(current_mw, current_chain):
                async def wrapper(ctx: JobContext):
                    return await current_mw(ctx, current_chain)
                return wrapper
            chain = make_wrapper(mw, chain)
        return chain

    async def process_job(self, job: dict):
        try:
            ctx = JobContext(self.client, job)
        except (KeyError, TypeError, ValueError) as e:
            logger.error("Received malformed job payload in runner: %s", e)
            return

        handler = self.handlers.get(ctx.job_type)
        if handler is None:
            logger.error("No handler registered for job type %s (job %s)", ctx.job_type, ctx.id)
            await self._report_failure(ctx, UNKNOWN_JOB_TYPE, f"No handler for job type {ctx.job_type}")
            return

        try:
            result = await asyncio.wait_for(self._chain(handler)(ctx), timeout=self.handler_timeout)
        except JobCancelled:
            logger.info(f"Job {ctx.id} cancelled, handler stopped")
            return
        except asyncio.TimeoutError:
            logger.error(f"Job {ctx.id} timed out after {self.handler_timeout}s")
            await self._report_failure(
                ctx, HANDLER_TIMEOUT, f"Handler exceeded {self.handler_timeout}s",
                {"timeout_seconds": self.handler_timeout},
            )
            return
        except HandlerError as e:
            logger.error(f"Job {ctx.id} failed: [{e.code}] {e}")
            await self._report_failure(ctx, e.code, str(e), e.details)
            return
        except Exception as e:
            error_msg = f"{type(e).__name__}: {str(e)}"
            logger.error(f"Job {ctx.id} failed: {error_msg}")
            await self._report_failure(ctx, JOB_ERROR, error_msg, {"exception": type(e).__name__})
            return

        if result is not None and not isinstance(result, dict):
            result = {"value": result}

        resp = await self.client.complete(ctx.id, result)
        if resp is None:
            logger.error(
                "Job %s handler succeeded but completion ACK failed; the stuck sweep will recover it",
                ctx.id,
            )
        elif not resp.get("applied"):
            logger.info("Completion of job %s ignored, job is %s", ctx.id, resp.get("status"))
        else:
            logger.info(f"Job {ctx.id} completed successfully")

    async def _report_failure(self, ctx: JobContext, code: str, message: str, details: Optional[dict] = None):
        resp = await self.client.fail(ctx.id, code, message, details)
        if resp is None:
            logger.error("Failed to report failure for job %s", ctx.id)
