from .media import router as media_router
from .stream import router as stream_router
from .jobs import router as jobs_router
from .health import router as health_router

__all__ = ["media_router", "stream_router", "jobs_router", "health_router"]
