from datetime import datetime
from typing import Optional, Any
from uuid import UUID, uuid4

from sqlalchemy import String, Integer, Text, ForeignKey, Index, Uuid, text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from jobqueue.db.session import Base
from jobqueue.db.types import JSONPayload, UTCDateTime, utcnow
from jobqueue.domain.states import JobStatus, LogLevel
from jobqueue.settings import settings

class Job(Base):
    __tablename__ = "jobs"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    owner_id: Mapped[str] = mapped_column(String, nullable=False)

    # Identification
    job_type: Mapped[str] = mapped_column(String, nullable=False)
    priority: Mapped[int] = mapped_column(Integer, default=lambda: settings.DEFAULT_PRIORITY)
    params: Mapped[dict[str, Any]] = mapped_column(JSONPayload, nullable=False, default=dict)

    # Status tracking
    status: Mapped[JobStatus] = mapped_column(String, default=JobStatus.PENDING, nullable=False)
    progress_percent: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    progress_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Outcome
    result: Mapped[Optional[dict[str, Any]]] = mapped_column(JSONPayload, nullable=True)
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    error_code: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    error_details: Mapped[Optional[dict[str, Any]]] = mapped_column(JSONPayload, nullable=True)

    # Retry logic
    retry_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    max_retries: Mapped[int] = mapped_column(Integer, default=lambda: settings.DEFAULT_MAX_RETRIES, nullable=False)

    # Executor holding the job; only set while processing
    worker_id: Mapped[Optional[str]] = mapped_column(String, nullable=True)

    # Scheduling fields
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)
    scheduled_for: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)
    started_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    expires_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)

    # Relationships
    logs: Mapped[list["JobLogEntry"]] = relationship(
        "JobLogEntry", back_populates="job", cascade="all, delete-orphan", passive_deletes=True
    )

    __table_args__ = (
        # Worker pickup: status=pending + scheduled_for <= now, by priority then age
        Index("ix_jobs_pickup", "status", "scheduled_for", "priority", "created_at",
              postgresql_where=text("status = 'pending'")),
        # Owner listing and rate limiting
        Index("ix_jobs_owner_status_created", "owner_id", "status", "created_at"),
        # Deduplication / cache lookup
        Index("ix_jobs_owner_type_status", "owner_id", "job_type", "status"),
        # Health monitor sweeps
        Index("ix_jobs_expiry", "status", "expires_at", postgresql_where=text("status = 'pending'")),
        Index("ix_jobs_stuck", "status", "started_at", postgresql_where=text("status = 'processing'")),
        Index("ix_jobs_retry", "status", "retry_count", "completed_at", postgresql_where=text("status = 'failed'")),
        # Retention
        Index("ix_jobs_cleanup", "status", "completed_at",
              postgresql_where=text("status IN ('completed', 'failed', 'cancelled')")),
    )

class JobLogEntry(Base):
    __tablename__ = "job_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    job_id: Mapped[UUID] = mapped_column(Uuid, ForeignKey("jobs.id", ondelete="CASCADE"), index=True, nullable=False)

    level: Mapped[LogLevel] = mapped_column(String, nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)

    # Context (e.g. worker_id, error details, retry number)
    meta: Mapped[Optional[dict[str, Any]]] = mapped_column("metadata", JSONPayload, nullable=True)

    job: Mapped["Job"] = relationship("Job", back_populates="logs")

    __table_args__ = (
        Index("ix_job_logs_job_created", "job_id", "created_at"),
    )
