from .job import (
    CancelResponse,
    JobEventResponse,
    JobListResponse,
    JobResponse,
    JobStatusResponse,
    JobUpdate,
    UploadResponse,
)

__all__ = [
    "CancelResponse", "JobEventResponse", "JobListResponse", "JobResponse",
    "JobStatusResponse", "JobUpdate", "UploadResponse",
]
