from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING, Any, Optional
from uuid import UUID

from jobqueue.domain.states import JobStatus

if TYPE_CHECKING:
    from jobqueue.db.models import Job


@dataclass
class TransitionResult:
    """
    Outcome of a lifecycle transition request.

    `applied` is False when the job was not in the expected source state; `job`
    then reflects the job's true current state and nothing was written.
    """
    job: "Job"
    applied: bool

    @property
    def status(self) -> JobStatus:
        return JobStatus(self.job.status)


@dataclass(frozen=True)
class JobChangeEvent:
    job_id: UUID
    owner_id: str
    job_type: str
    status: str
    progress_percent: int
    progress_message: Optional[str]
    error_message: Optional[str]
    error_code: Optional[str]
    updated_at: datetime

    @classmethod
    def from_job(cls, job: "Job") -> "JobChangeEvent":
        return cls(
            job_id=job.id,
            owner_id=job.owner_id,
            job_type=job.job_type,
            status=str(job.status),
            progress_percent=job.progress_percent,
            progress_message=job.progress_message,
            error_message=job.error_message,
            error_code=job.error_code,
            updated_at=job.updated_at,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "job_id": str(self.job_id),
            "owner_id": self.owner_id,
            "job_type": self.job_type,
            "status": self.status,
            "progress_percent": self.progress_percent,
            "progress_message": self.progress_message,
            "error_message": self.error_message,
            "error_code": self.error_code,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
