from datetime import datetime, timedelta
from typing import Any, Optional
from uuid import UUID

from fastapi import APIRouter, Query, status
from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from jobqueue.api.deps import DbSession, OwnerId, raise_http
from jobqueue.commands.cancel_job import cancel_job
from jobqueue.commands.create_job import create_job
from jobqueue.commands.deduplicate import find_or_create_job, get_cached_result
from jobqueue.commands.queries import JobSort, SortOrder, get_job, get_job_logs, list_jobs, queue_stats
from jobqueue.domain.errors import JobError
from jobqueue.domain.models import TransitionResult
from jobqueue.domain.states import ErrorCode, JobStatus, LogLevel

router = APIRouter()


class JobCreate(BaseModel):
    job_type: str
    params: dict[str, Any] = Field(default_factory=dict)
    priority: Optional[int] = Field(default=None, ge=0, le=10)
    scheduled_for: Optional[datetime] = None
    max_retries: Optional[int] = Field(default=None, ge=0)


class FindOrCreateRequest(BaseModel):
    job_type: str
    params: dict[str, Any] = Field(default_factory=dict)
    priority: Optional[int] = Field(default=None, ge=0, le=10)
    window_seconds: Optional[int] = Field(default=None, ge=0)


class CachedResultRequest(BaseModel):
    job_type: str
    params: dict[str, Any] = Field(default_factory=dict)
    max_age_seconds: Optional[int] = Field(default=None, ge=0)


class JobResponse(BaseModel):
    id: UUID
    owner_id: str
    job_type: str
    priority: int
    params: dict[str, Any]
    status: JobStatus
    progress_percent: int
    progress_message: Optional[str] = None
    result: Optional[dict[str, Any]] = None
    error_message: Optional[str] = None
    error_code: Optional[str] = None
    error_details: Optional[dict[str, Any]] = None
    retry_count: int
    max_retries: int
    worker_id: Optional[str] = None
    created_at: datetime
    updated_at: datetime
    scheduled_for: datetime
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    model_config = ConfigDict(from_attributes=True)


class LogEntryResponse(BaseModel):
    id: int
    job_id: UUID
    level: LogLevel
    message: str
    metadata: Optional[dict[str, Any]] = Field(default=None, validation_alias=AliasChoices("meta", "metadata"))
    created_at: datetime
    model_config = ConfigDict(from_attributes=True)


class TransitionResponse(BaseModel):
    """`applied=false` means nothing changed; `status` is the job's actual state."""
    applied: bool
    status: JobStatus
    error_code: Optional[str] = None
    job: JobResponse

    @classmethod
    def from_result(cls, res: TransitionResult) -> "TransitionResponse":
        return cls(
            applied=res.applied,
            status=res.status,
            error_code=None if res.applied else ErrorCode.INVALID_TRANSITION,
            job=JobResponse.model_validate(res.job),
        )


class FindOrCreateResponse(BaseModel):
    job: JobResponse
    is_new: bool


class CachedResultResponse(BaseModel):
    result: Optional[dict[str, Any]] = None


class JobListResponse(BaseModel):
    items: list[JobResponse]
    total: int


class LogListResponse(BaseModel):
    items: list[LogEntryResponse]
    total: int


class CancelResponse(BaseModel):
    cancelled: bool
    status: JobStatus


@router.post("", response_model=JobResponse, status_code=status.HTTP_201_CREATED)
async def create(payload: JobCreate, owner_id: OwnerId, session: DbSession):
    try:
        job = await create_job(
            session,
            owner_id=owner_id,
            job_type=payload.job_type,
            params=payload.params,
            priority=payload.priority,
            scheduled_for=payload.scheduled_for,
            max_retries=payload.max_retries,
        )
    except JobError as e:
        raise_http(e)
    await session.commit()
    return job


@router.post("/find-or-create", response_model=FindOrCreateResponse)
async def find_or_create(payload: FindOrCreateRequest, owner_id: OwnerId, session: DbSession):
    window = timedelta(seconds=payload.window_seconds) if payload.window_seconds is not None else None
    try:
        job, is_new = await find_or_create_job(
            session, owner_id, payload.job_type, payload.params,
            priority=payload.priority, window=window,
        )
    except JobError as e:
        raise_http(e)
    await session.commit()
    return FindOrCreateResponse(job=JobResponse.model_validate(job), is_new=is_new)


@router.post("/cached-result", response_model=CachedResultResponse)
async def cached_result(payload: CachedResultRequest, owner_id: OwnerId, session: DbSession):
    max_age = timedelta(seconds=payload.max_age_seconds) if payload.max_age_seconds is not None else None
    try:
        result = await get_cached_result(session, owner_id, payload.job_type, payload.params, max_age=max_age)
    except JobError as e:
        raise_http(e)
    return CachedResultResponse(result=result)


@router.get("", response_model=JobListResponse)
async def list_(
    owner_id: OwnerId,
    session: DbSession,
    status: Optional[JobStatus] = None,
    job_type: Optional[str] = None,
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    sort: JobSort = JobSort.CREATED_AT,
    order: SortOrder = SortOrder.DESC,
):
    jobs, total = await list_jobs(
        session, owner_id,
        status=status, job_type=job_type, limit=limit, offset=offset, sort=sort, order=order,
    )
    return JobListResponse(items=[JobResponse.model_validate(j) for j in jobs], total=total)


@router.get("/stats")
async def stats(owner_id: OwnerId, session: DbSession):
    return await queue_stats(session, owner_id)


@router.get("/{job_id}", response_model=JobResponse)
async def get(job_id: UUID, owner_id: OwnerId, session: DbSession):
    try:
        return await get_job(session, job_id, owner_id)
    except JobError as e:
        raise_http(e)


@router.post("/{job_id}/cancel", response_model=CancelResponse)
async def cancel(job_id: UUID, owner_id: OwnerId, session: DbSession):
    try:
        res = await cancel_job(session, job_id, owner_id)
    except JobError as e:
        raise_http(e)
    await session.commit()
    return CancelResponse(cancelled=res.applied, status=res.status)


@router.get("/{job_id}/logs", response_model=LogListResponse)
async def logs(
    job_id: UUID,
    owner_id: OwnerId,
    session: DbSession,
    level: Optional[LogLevel] = None,
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
):
    try:
        entries, total = await get_job_logs(session, job_id, owner_id, level=level, limit=limit, offset=offset)
    except JobError as e:
        raise_http(e)
    return LogListResponse(items=[LogEntryResponse.model_validate(entry) for entry in entries], total=total)
