import logging
from typing import Any, Dict, Optional
from uuid import UUID

import httpx

logger = logging.getLogger(__name__)


class WorkerClient:
    """
    Thin async client over the worker-facing API.

    Calls never raise on transport or HTTP errors: they log and return None
    (or False), and the runner treats that as "try again later".
    """

    def __init__(
        self,
        base_url: str,
        worker_id: str,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.worker_id = worker_id
        self.client = httpx.AsyncClient(base_url=self.base_url, timeout=timeout, transport=transport)

    async def _request(self, method: str, path: str, json_body: Optional[Dict[str, Any]] = None) -> Optional[Any]:
        try:
            resp = await self.client.request(method, path, json=json_body)
            resp.raise_for_status()
            return resp.json()
        except httpx.HTTPStatusError as e:
            status_code = e.response.status_code
            log_fn = logger.info if status_code in (404, 422) else logger.warning
            log_fn(
                "%s %s rejected for worker=%s status=%s",
                method, path, self.worker_id, status_code,
            )
            return None
        except (httpx.HTTPError, ValueError) as e:
            logger.error("%s %s failed for worker=%s: %s", method, path, self.worker_id, e)
            return None

    async def claim(self) -> Optional[Dict[str, Any]]:
        """Claims the next runnable job. Returns the job payload or None."""
        data = await self._request("POST", "/api/v1/workers/claim", {"worker_id": self.worker_id})
        if not data:
            return None
        return data.get("job")

    async def progress(self, job_id: UUID, percent: int, message: Optional[str] = None) -> Optional[Dict[str, Any]]:
        return await self._request(
            "POST",
            f"/api/v1/workers/{job_id}/progress",
            {"worker_id": self.worker_id, "percent": percent, "message": message},
        )

    async def log(
        self,
        job_id: UUID,
        message: str,
        level: str = "info",
        metadata: Optional[Dict[str, Any]] = None,
    ) -> bool:
        data = await self._request(
            "POST",
            f"/api/v1/workers/{job_id}/logs",
            {"level": level, "message": message, "metadata": metadata},
        )
        return data is not None

    async def complete(self, job_id: UUID, result: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
        return await self._request(
            "POST",
            f"/api/v1/workers/{job_id}/complete",
            {"worker_id": self.worker_id, "result": result},
        )

    async def fail(
        self,
        job_id: UUID,
        error_code: str,
        error_message: str,
        error_details: Optional[Dict[str, Any]] = None,
    ) -> Optional[Dict[str, Any]]:
        return await self._request(
            "POST",
            f"/api/v1/workers/{job_id}/fail",
            {
                "worker_id": self.worker_id,
                "error_code": error_code,
                "error_message": error_message,
                "error_details": error_details,
            },
        )

    async def status(self, job_id: UUID) -> Optional[str]:
        data = await self._request("GET", f"/api/v1/workers/{job_id}/status")
        if not data:
            return None
        return data.get("status")

    async def close(self):
        await self.client.aclose()
