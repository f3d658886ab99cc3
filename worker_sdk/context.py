import logging
from typing import Any, Dict, Optional
from uuid import UUID

from worker_sdk.client import WorkerClient

logger = logging.getLogger(__name__)


class JobCancelled(Exception):
    """Raised inside a handler once its job has been cancelled by the owner."""


class HandlerError(Exception):
    """Raise from a handler to fail the job with a specific error code."""

    def __init__(self, message: str, code: str = "JOB_ERROR", details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.code = code
        self.details = details


class JobContext:
    """
    What a handler sees of its job: identity, params, and the channel back to
    the queue for progress, logs and cancellation checks.
    """

    def __init__(self, client: WorkerClient, job: Dict[str, Any]):
        self.client = client
        self.job = job
        self.id = UUID(job["id"])
        self.job_type: str = job["job_type"]
        self.params: Dict[str, Any] = job.get("params") or {}
        self.retry_count: int = job.get("retry_count", 0)
        self._cancelled = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def _observe(self, status: Optional[str]):
        if status == "cancelled":
            self._cancelled = True

    async def progress(self, percent: int, message: Optional[str] = None):
        """
        Reports progress. Raises JobCancelled when the queue reports the job
        was cancelled, so handlers stop at their next checkpoint.
        """
        resp = await self.client.progress(self.id, percent, message)
        if resp and not resp.get("applied"):
            self._observe(resp.get("status"))
        if self._cancelled:
            raise JobCancelled(f"Job {self.id} was cancelled")

    async def log(self, message: str, level: str = "info", **metadata: Any):
        await self.client.log(self.id, message, level=level, metadata=metadata or None)

    async def check_cancelled(self):
        """Polls the job status; raises JobCancelled if it was cancelled."""
        self._observe(await self.client.status(self.id))
        if self._cancelled:
            raise JobCancelled(f"Job {self.id} was cancelled")
