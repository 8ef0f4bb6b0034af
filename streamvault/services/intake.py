import uuid
from pathlib import Path

import structlog
from sqlalchemy.orm import Session

from streamvault.core.config import settings
from streamvault.core.errors import QueueUnavailable, ValidationFault
from streamvault.core.messaging import get_publisher
from streamvault.services.job_store import JobStore

logger = structlog.get_logger()

SUPPORTED_FORMATS = {".mp4", ".avi", ".mov", ".mkv", ".wmv", ".flv", ".webm"}


def clean_title(title: str | None) -> str:
    title = (title or "").strip()
    if not title:
        raise ValidationFault("Title is required")
    if len(title) > 255:
        raise ValidationFault("Title must be at most 255 characters")
    return title


def validate_upload(filename: str | None, size_bytes: int) -> str:
    """Check the upload's name and size. Returns the lower-cased extension."""
    if not filename:
        raise ValidationFault("No filename provided")

    ext = Path(filename).suffix.lower()
    if ext not in SUPPORTED_FORMATS:
        raise ValidationFault(f"Unsupported format. Allowed: {', '.join(sorted(SUPPORTED_FORMATS))}")
    if size_bytes <= 0:
        raise ValidationFault("Uploaded file is empty")
    if size_bytes > settings.max_media_size_bytes:
        raise ValidationFault(f"File too large. Max: {settings.max_media_size_mb}MB")
    return ext


def blob_key(owner_id: str, job_id: uuid.UUID, ext: str) -> str:
    return f"media/{owner_id}/{job_id}/source{ext}"


def submit(
    db: Session,
    owner_id: str,
    blob_ref: str,
    size_bytes: int,
    content_type: str,
    title: str,
    original_filename: str,
    description: str = "",
    tags: list[str] | None = None,
    job_id: uuid.UUID | None = None,
) -> uuid.UUID:
    """Create a QUEUED job for a sealed blob and trigger a pipeline run.

    The run is triggered asynchronously; this returns as soon as the trigger
    is published. If publishing fails the job record is removed again and
    QueueUnavailable is raised, so no job waits for a trigger that never comes.
    """
    title = clean_title(title)

    fields = dict(
        owner_id=owner_id,
        title=title,
        description=description or "",
        tags=list(tags or []),
        original_filename=original_filename,
        blob_ref=blob_ref,
        size_bytes=size_bytes,
        content_type=content_type or "application/octet-stream",
    )
    if job_id is not None:
        fields["id"] = job_id

    store = JobStore(db)
    job = store.create(**fields)

    try:
        get_publisher().publish_run_trigger(str(job.id), owner_id)
    except Exception as e:
        logger.error("run_trigger_failed", job_id=str(job.id), error=str(e))
        store.delete(job.id, owner_id)
        raise QueueUnavailable("Could not schedule processing, try again") from e

    logger.info("media_submitted", job_id=str(job.id), owner_id=owner_id, size_bytes=size_bytes)
    return job.id
