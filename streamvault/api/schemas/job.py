from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from streamvault.models.job import JobStatus, SafetyVerdict


class JobResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    status: JobStatus
    title: str
    description: str = ""
    tags: list[str] = []
    original_filename: str
    content_type: str
    size_bytes: int
    progress_percent: int
    stage_label: str | None = None
    safety_verdict: SafetyVerdict
    safety_score: float | None = None
    derived_metadata: dict[str, Any] | None = None
    error_code: str | None = None
    error_detail: str | None = None
    view_count: int = 0
    cancel_requested: bool = False
    created_at: datetime
    started_at: datetime | None = None
    completed_at: datetime | None = None
    stream_available: bool = False

    @classmethod
    def from_job(cls, job) -> "JobResponse":
        return cls(
            id=job.id,
            status=job.status,
            title=job.title,
            description=job.description or "",
            tags=list(job.tags or []),
            original_filename=job.original_filename,
            content_type=job.content_type,
            size_bytes=job.size_bytes,
            progress_percent=job.progress_percent,
            stage_label=job.stage_label,
            safety_verdict=job.safety_verdict,
            safety_score=job.safety_score if job.safety_verdict != SafetyVerdict.PENDING else None,
            derived_metadata=job.derived_metadata if job.status == JobStatus.COMPLETED else None,
            error_code=job.error_code,
            error_detail=job.error_detail if job.status == JobStatus.FAILED else None,
            view_count=job.view_count,
            cancel_requested=job.cancel_requested,
            created_at=job.created_at,
            started_at=job.started_at,
            completed_at=job.completed_at,
            stream_available=job.status == JobStatus.COMPLETED,
        )


class JobListResponse(BaseModel):
    jobs: list[JobResponse]
    total: int
    page: int
    limit: int
    pages: int


class JobStatusResponse(BaseModel):
    id: UUID
    status: JobStatus
    progress_percent: int
    stage_label: str | None = None
    safety_verdict: SafetyVerdict
    message: str | None = None


class JobEventResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    event_type: str
    old_status: JobStatus | None = None
    new_status: JobStatus | None = None
    event_data: dict[str, Any] | None = None
    created_at: datetime


class JobUpdate(BaseModel):
    title: str | None = Field(None, min_length=1, max_length=255)
    description: str | None = Field(None, max_length=5000)
    tags: list[str] | None = None


class UploadResponse(BaseModel):
    job_id: UUID
    status: JobStatus
    message: str


class CancelResponse(BaseModel):
    job_id: UUID
    status: JobStatus
    message: str
