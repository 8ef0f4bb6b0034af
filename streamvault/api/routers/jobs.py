import json
from typing import AsyncIterator
from uuid import UUID

import anyio
import anyio.to_thread
import structlog
from fastapi import APIRouter, Request
from fastapi.responses import StreamingResponse

from streamvault.api.dependencies import CurrentOwner, DatabaseSession, verify_job_ownership
from streamvault.api.schemas import JobEventResponse, JobStatusResponse
from streamvault.core.config import settings
from streamvault.models import JobStatus
from streamvault.services import JobStore
from streamvault.services.broadcaster import Subscription, get_broadcaster

logger = structlog.get_logger()
router = APIRouter(prefix="/jobs", tags=["Jobs"])

# Threads for blocking subscription reads, apart from AnyIO's default limiter.
_sse_limiter: anyio.CapacityLimiter | None = None


def sse_limiter() -> anyio.CapacityLimiter:
    global _sse_limiter
    if _sse_limiter is None:
        _sse_limiter = anyio.CapacityLimiter(settings.sse_max_clients)
    return _sse_limiter


async def event_stream(
    request: Request,
    subscription: Subscription,
    owner_id: str,
    limiter: anyio.CapacityLimiter,
    poll_seconds: float = 1.0,
) -> AsyncIterator[str]:
    """SSE frames for one subscriber until the client disconnects."""
    try:
        while not await request.is_disconnected():
            event = await anyio.to_thread.run_sync(subscription.get, poll_seconds, limiter=limiter)
            if event is None:
                yield ": keepalive\n\n"
                continue
            yield f"event: {event.kind.value}\ndata: {json.dumps(event.to_dict())}\n\n"
    finally:
        subscription.close()
        logger.info("event_stream_closed", owner_id=owner_id)


@router.get(
    "/events",
    summary="Progress event stream",
    description="""
Server-sent events for every job owned by the requester.

Each message is `event: progress|completed|failed` with a JSON `data` line.
Delivery is best-effort: events published while disconnected are not replayed,
so reconcile with `/jobs/{id}/status` after reconnecting.
    """,
)
async def stream_events(owner_id: CurrentOwner, request: Request):
    subscription = get_broadcaster().subscribe(owner_id)
    return StreamingResponse(
        event_stream(request, subscription, owner_id, sse_limiter()),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )


@router.get(
    "/{job_id}/status",
    response_model=JobStatusResponse,
    summary="Job status",
    description="""
Returns the current status of a processing job.

**Use for polling:** query until the status is `COMPLETED` or `FAILED`.
    """,
)
async def get_job_status(job_id: UUID, owner_id: CurrentOwner, db: DatabaseSession):
    job = verify_job_ownership(job_id, owner_id, db)

    messages = {
        JobStatus.QUEUED: "Waiting in queue",
        JobStatus.PROCESSING: job.stage_label or "Processing media",
        JobStatus.COMPLETED: "Ready to stream",
        JobStatus.FAILED: job.error_detail or "Processing failed",
    }

    return JobStatusResponse(
        id=job.id,
        status=job.status,
        progress_percent=job.progress_percent,
        stage_label=job.stage_label,
        safety_verdict=job.safety_verdict,
        message=messages.get(job.status),
    )


@router.get(
    "/{job_id}/events",
    response_model=list[JobEventResponse],
    summary="Job event timeline",
    description="Persisted state transitions for a job, oldest first.",
)
async def get_job_events(job_id: UUID, owner_id: CurrentOwner, db: DatabaseSession):
    job = verify_job_ownership(job_id, owner_id, db)
    return [JobEventResponse.model_validate(e) for e in JobStore(db).events(job.id)]
