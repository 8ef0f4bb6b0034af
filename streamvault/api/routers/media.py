import uuid
from io import BytesIO
from pathlib import Path
from uuid import UUID

import structlog
from fastapi import APIRouter, File, Form, Query, UploadFile, status

from streamvault.api.dependencies import CurrentOwner, DatabaseSession, verify_job_ownership
from streamvault.api.schemas import CancelResponse, JobListResponse, JobResponse, JobUpdate, UploadResponse
from streamvault.core.config import settings
from streamvault.core.errors import QueueUnavailable, StorageUnavailable
from streamvault.models import JobStatus, SafetyVerdict
from streamvault.services import JobStore, MediaStore
from streamvault.services.intake import blob_key, clean_title, submit, validate_upload

logger = structlog.get_logger()
router = APIRouter(prefix="/media", tags=["Media"])


@router.post(
    "/upload",
    response_model=UploadResponse,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Upload media",
    description=f"""
Upload a media file for safety analysis and streaming.

**Supported formats:** `.mp4`, `.avi`, `.mov`, `.mkv`, `.wmv`, `.flv`, `.webm`

**Max size:** {settings.max_media_size_mb}MB

The job is created as `QUEUED` and analysed in the background. Follow it with
`/jobs/{{id}}/status` or the `/jobs/events` stream.
    """,
)
async def upload_media(
    owner_id: CurrentOwner,
    db: DatabaseSession,
    file: UploadFile = File(..., description="Media file to analyse"),
    title: str | None = Form(None, description="Display title; defaults to the file name"),
    description: str = Form("", description="Free-text description"),
    tags: str = Form("", description="Comma-separated tags"),
) -> UploadResponse:
    file_content = await file.read()
    ext = validate_upload(file.filename, len(file_content))
    title = clean_title(title or Path(file.filename).stem)

    job_id = uuid.uuid4()
    key = blob_key(owner_id, job_id, ext)

    try:
        storage = MediaStore()
        storage.upload_file(BytesIO(file_content), key, file.content_type)
    except Exception as e:
        logger.error("upload_failed", job_id=str(job_id), error=str(e))
        raise StorageUnavailable("Failed to store uploaded media") from e

    try:
        job_id = submit(
            db,
            owner_id=owner_id,
            blob_ref=key,
            size_bytes=len(file_content),
            content_type=file.content_type or "application/octet-stream",
            title=title,
            original_filename=file.filename,
            description=description,
            tags=[t.strip() for t in tags.split(",") if t.strip()],
            job_id=job_id,
        )
    except QueueUnavailable:
        try:
            storage.delete_file(key)
        except Exception as e:
            logger.error("blob_delete_failed", job_id=str(job_id), blob_ref=key, error=str(e))
        raise

    return UploadResponse(job_id=job_id, status=JobStatus.QUEUED, message="Media queued for processing")


@router.get(
    "",
    response_model=JobListResponse,
    summary="List media",
    description="Lists the requester's media jobs, newest first, with optional filters.",
)
async def list_media(
    owner_id: CurrentOwner,
    db: DatabaseSession,
    status_filter: JobStatus | None = Query(None, alias="status", description="Filter by job status"),
    safety_verdict: SafetyVerdict | None = Query(None, description="Filter by safety verdict"),
    search: str | None = Query(None, max_length=255, description="Case-insensitive match on title/description"),
    page: int = Query(1, ge=1, description="Page number"),
    limit: int = Query(20, ge=1, le=100, description="Items per page"),
):
    jobs, total = JobStore(db).list_by_owner(
        owner_id, status=status_filter, safety_verdict=safety_verdict, search=search, page=page, limit=limit
    )
    return JobListResponse(
        jobs=[JobResponse.from_job(j) for j in jobs],
        total=total,
        page=page,
        limit=limit,
        pages=(total + limit - 1) // limit,
    )


@router.get(
    "/{job_id}",
    response_model=JobResponse,
    summary="Media details",
    description="""
Returns a single media job.

**Statuses:**
- `QUEUED` - Waiting for a worker
- `PROCESSING` - Running analysis stages
- `COMPLETED` - Analysed and ready to stream
- `FAILED` - Analysis failed or was cancelled
    """,
)
async def get_media(job_id: UUID, owner_id: CurrentOwner, db: DatabaseSession):
    job = verify_job_ownership(job_id, owner_id, db)
    return JobResponse.from_job(job)


@router.patch("/{job_id}", response_model=JobResponse, summary="Edit media details")
async def update_media(job_id: UUID, payload: JobUpdate, owner_id: CurrentOwner, db: DatabaseSession):
    job = verify_job_ownership(job_id, owner_id, db)
    changes = payload.model_dump(exclude_unset=True, exclude_none=True)
    if "title" in changes:
        changes["title"] = clean_title(changes["title"])

    job = JobStore(db).update_details(job, **changes)
    logger.info("media_updated", job_id=str(job.id), fields=sorted(changes))
    return JobResponse.from_job(job)


@router.post(
    "/{job_id}/cancel",
    response_model=CancelResponse,
    summary="Cancel processing",
    description="""
Flags a `QUEUED` or `PROCESSING` job. The worker stops it at the next stage
boundary (before the first stage for a queued job) and it ends `FAILED` with
`CANCELLED`. Terminal jobs return 409.
    """,
)
async def cancel_media(job_id: UUID, owner_id: CurrentOwner, db: DatabaseSession):
    new_status = JobStore(db).request_cancel(job_id, owner_id)
    logger.info("cancel_handled", job_id=str(job_id), status=new_status.value)
    return CancelResponse(job_id=job_id, status=new_status, message="Cancellation requested")


@router.delete(
    "/{job_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete media",
    description="Deletes a job that is not processing, then releases its blob.",
)
async def delete_media(job_id: UUID, owner_id: CurrentOwner, db: DatabaseSession):
    blob_ref = JobStore(db).delete(job_id, owner_id)
    logger.info("media_deleted", job_id=str(job_id), owner_id=owner_id)

    try:
        storage = MediaStore()
        storage.delete_file(blob_ref)
    except Exception as e:
        logger.error("blob_delete_failed", job_id=str(job_id), blob_ref=blob_ref, error=str(e))
