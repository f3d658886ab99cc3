from .client import WorkerClient
from .context import HandlerError, JobCancelled, JobContext
from .runner import Handler, Middleware, WorkerRunner
from .worker import Worker

__all__ = [
    "Handler",
    "HandlerError",
    "JobCancelled",
    "JobContext",
    "Middleware",
    "Worker",
    "WorkerClient",
    "WorkerRunner",
]
