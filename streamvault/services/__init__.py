from .storage import MediaStore
from .job_store import JobStore
from .media_probe import MediaProbe, MediaProbeError
from .streaming import ByteRange, StreamingService, parse_range
from .views import ViewCounter, get_view_counter

__all__ = [
    "MediaStore",
    "JobStore",
    "MediaProbe",
    "MediaProbeError",
    "ByteRange",
    "StreamingService",
    "parse_range",
    "ViewCounter",
    "get_view_counter",
]
