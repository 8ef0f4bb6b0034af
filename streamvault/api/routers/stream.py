from uuid import UUID

from fastapi import APIRouter, BackgroundTasks, Header
from fastapi.responses import StreamingResponse

from streamvault.api.dependencies import CurrentOwner, DatabaseSession
from streamvault.services import JobStore, MediaStore, StreamingService, get_view_counter

router = APIRouter(prefix="/media", tags=["Streaming"])


@router.get(
    "/{job_id}/stream",
    summary="Stream media",
    description="""
Streams a completed media file. Supports a single HTTP byte range
(`Range: bytes=start-end`, `bytes=start-` or `bytes=-suffix`).

- `200` full file with `Accept-Ranges: bytes`
- `206` partial content with `Content-Range`
- `400` media not ready
- `416` malformed or unsatisfiable range
- `503` storage unavailable
    """,
    responses={200: {"content": {"video/mp4": {}}}, 206: {"description": "Partial content"}},
)
def stream_media(
    job_id: UUID,
    owner_id: CurrentOwner,
    db: DatabaseSession,
    background_tasks: BackgroundTasks,
    range_header: str | None = Header(None, alias="Range"),
):
    service = StreamingService(JobStore(db), MediaStore())
    result = service.serve(job_id, owner_id, range_header)

    background_tasks.add_task(get_view_counter().record, result.job_id)

    return StreamingResponse(
        result.body,
        status_code=result.status_code,
        headers=result.headers,
    )
