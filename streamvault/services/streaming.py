"""HTTP byte-range streaming of completed media."""

import re
from collections.abc import Iterator
from dataclasses import dataclass, field

import structlog

from streamvault.core.errors import NotReady, RangeNotSatisfiable
from streamvault.models import JobStatus
from streamvault.services.job_store import JobStore
from streamvault.services.storage import MediaStore

logger = structlog.get_logger()

_RANGE_RE = re.compile(r"^bytes=(\d*)-(\d*)$")


@dataclass(frozen=True)
class ByteRange:
    start: int
    end: int  # inclusive

    @property
    def length(self) -> int:
        return self.end - self.start + 1


@dataclass
class StreamResult:
    status_code: int
    headers: dict[str, str]
    body: Iterator[bytes]
    job_id: str = ""
    byte_range: ByteRange | None = field(default=None)


def parse_range(header: str | None, total: int) -> ByteRange | None:
    """Parse a single ``bytes=`` range against a blob of ``total`` bytes.

    Returns None when no range was requested. ``end`` past the last byte is
    clamped. Anything unparseable or unsatisfiable raises RangeNotSatisfiable.
    """
    if header is None or not header.strip():
        return None

    match = _RANGE_RE.match(header.strip().replace(" ", ""))
    if match is None:
        raise RangeNotSatisfiable(total, header)

    start_text, end_text = match.groups()
    if not start_text and not end_text:
        raise RangeNotSatisfiable(total, header)

    if not start_text:
        # Suffix range: the last N bytes.
        suffix = int(end_text)
        if suffix == 0 or total == 0:
            raise RangeNotSatisfiable(total, header)
        return ByteRange(max(total - suffix, 0), total - 1)

    start = int(start_text)
    end = int(end_text) if end_text else total - 1
    if start >= total or start > end:
        raise RangeNotSatisfiable(total, header)
    return ByteRange(start, min(end, total - 1))


class StreamingService:
    def __init__(self, store: JobStore, media: MediaStore) -> None:
        self.store = store
        self.media = media

    def serve(self, job_id: str, requester_id: str, range_header: str | None = None) -> StreamResult:
        job = self.store.load_owned(job_id, requester_id)
        if job.status != JobStatus.COMPLETED:
            raise NotReady(f"Media is not ready. Status: {job.status.value}")

        total = self.media.get_size(job.blob_ref)
        byte_range = parse_range(range_header, total)

        headers = {
            "Accept-Ranges": "bytes",
            "Content-Type": job.content_type,
        }
        if byte_range is None:
            body = self.media.read_range(job.blob_ref)
            headers["Content-Length"] = str(total)
            status_code = 200
        else:
            body = self.media.read_range(job.blob_ref, byte_range.start, byte_range.end)
            headers["Content-Length"] = str(byte_range.length)
            headers["Content-Range"] = f"bytes {byte_range.start}-{byte_range.end}/{total}"
            status_code = 206

        logger.info(
            "stream_started",
            job_id=str(job.id),
            status_code=status_code,
            range=headers.get("Content-Range"),
        )
        return StreamResult(status_code, headers, body, job_id=str(job.id), byte_range=byte_range)
