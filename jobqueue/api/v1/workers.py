from typing import Any, Optional
from uuid import UUID

from fastapi import APIRouter, status
from pydantic import BaseModel, Field

from jobqueue.api.deps import DbSession, raise_http
from jobqueue.api.v1.jobs import JobResponse, LogEntryResponse, TransitionResponse
from jobqueue.commands.append_log import append_log
from jobqueue.commands.claim_job import load_job
from jobqueue.commands.complete_job import complete_job
from jobqueue.commands.fail_job import fail_job
from jobqueue.commands.report_progress import report_progress
from jobqueue.domain.errors import JobError
from jobqueue.domain.states import JobStatus, LogLevel
from jobqueue.scheduler.dispatcher import next_job

router = APIRouter()


class ClaimRequest(BaseModel):
    worker_id: str = Field(min_length=1)


class ClaimResponse(BaseModel):
    job: Optional[JobResponse] = None


class ProgressRequest(BaseModel):
    worker_id: Optional[str] = None
    percent: int = Field(ge=0, le=100)
    message: Optional[str] = None


class LogRequest(BaseModel):
    level: LogLevel = LogLevel.INFO
    message: str
    metadata: Optional[dict[str, Any]] = None


class CompleteRequest(BaseModel):
    worker_id: Optional[str] = None
    result: Optional[dict[str, Any]] = None


class FailRequest(BaseModel):
    worker_id: Optional[str] = None
    error_code: Optional[str] = None
    error_message: str
    error_details: Optional[dict[str, Any]] = None


class StatusResponse(BaseModel):
    job_id: UUID
    status: JobStatus


@router.post("/claim", response_model=ClaimResponse)
async def claim(body: ClaimRequest, session: DbSession):
    job = await next_job(session, worker_id=body.worker_id)
    if not job:
        return ClaimResponse(job=None)
    await session.commit()
    return ClaimResponse(job=JobResponse.model_validate(job))


@router.post("/{job_id}/progress", response_model=TransitionResponse)
async def progress(job_id: UUID, body: ProgressRequest, session: DbSession):
    try:
        res = await report_progress(session, job_id, body.percent, body.message, worker_id=body.worker_id)
    except JobError as e:
        raise_http(e)
    await session.commit()
    return TransitionResponse.from_result(res)


@router.post("/{job_id}/logs", response_model=LogEntryResponse, status_code=status.HTTP_201_CREATED)
async def add_log(job_id: UUID, body: LogRequest, session: DbSession):
    try:
        entry = await append_log(session, job_id, body.level, body.message, body.metadata)
    except JobError as e:
        raise_http(e)
    await session.commit()
    return LogEntryResponse.model_validate(entry)


@router.post("/{job_id}/complete", response_model=TransitionResponse)
async def complete(job_id: UUID, body: CompleteRequest, session: DbSession):
    try:
        res = await complete_job(session, job_id, body.result, worker_id=body.worker_id)
    except JobError as e:
        raise_http(e)
    await session.commit()
    return TransitionResponse.from_result(res)


@router.post("/{job_id}/fail", response_model=TransitionResponse)
async def fail(job_id: UUID, body: FailRequest, session: DbSession):
    try:
        res = await fail_job(
            session, job_id,
            error_code=body.error_code,
            error_message=body.error_message,
            worker_id=body.worker_id,
            error_details=body.error_details,
        )
    except JobError as e:
        raise_http(e)
    await session.commit()
    return TransitionResponse.from_result(res)


@router.get("/{job_id}/status", response_model=StatusResponse)
async def job_status(job_id: UUID, session: DbSession):
    try:
        job = await load_job(session, job_id)
    except JobError as e:
        raise_http(e)
    return StatusResponse(job_id=job.id, status=job.status)
