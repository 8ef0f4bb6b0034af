from contextlib import asynccontextmanager
from typing import AsyncGenerator

import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from streamvault.api.routers import health_router, jobs_router, media_router, stream_router
from streamvault.core.config import settings
from streamvault.core.errors import (
    InvalidTransition,
    NotFound,
    NotReady,
    QueueUnavailable,
    RangeNotSatisfiable,
    StorageUnavailable,
    StreamVaultError,
    ValidationFault,
)
from streamvault.services import MediaStore

logger = structlog.get_logger()

ERROR_STATUS = (
    (ValidationFault, 400),
    (NotReady, 400),
    (NotFound, 404),
    (InvalidTransition, 409),
    (RangeNotSatisfiable, 416),
    (StorageUnavailable, 503),
    (QueueUnavailable, 503),
)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    storage = MediaStore()
    storage.ensure_bucket_exists()
    yield


app = FastAPI(
    title="StreamVault API",
    description="""
## Media analysis and streaming

Upload media, follow its analysis pipeline, and stream it back once it is ready.

### Flow

1. Obtain a bearer token from your identity provider
2. Send it as `Authorization: Bearer {token}`
3. Upload a file to `/media/upload`
4. Follow progress on `/jobs/{id}/status` or the `/jobs/events` stream
5. Stream the media from `/media/{id}/stream` once it is `COMPLETED`

### Formats

`.mp4`, `.avi`, `.mov`, `.mkv`, `.wmv`, `.flv`, `.webm`
    """,
    version="1.0.0",
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_tags=[
        {"name": "Health", "description": "Health check endpoints"},
        {"name": "Media", "description": "Upload, listing and management of media"},
        {"name": "Streaming", "description": "Byte-range streaming of analysed media"},
        {"name": "Jobs", "description": "Pipeline status and progress events"},
    ],
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["Content-Range", "Accept-Ranges", "Content-Length"],
)


@app.middleware("http")
async def add_security_headers(request: Request, call_next):
    response = await call_next(request)
    response.headers["X-Content-Type-Options"] = "nosniff"
    response.headers["X-Frame-Options"] = "DENY"
    return response


@app.exception_handler(StreamVaultError)
async def domain_exception_handler(request: Request, exc: StreamVaultError) -> JSONResponse:
    status_code = next((code for error, code in ERROR_STATUS if isinstance(exc, error)), 500)
    logger.info("request_rejected", path=request.url.path, error=type(exc).__name__, status_code=status_code)

    if isinstance(exc, RangeNotSatisfiable):
        return JSONResponse(
            status_code=status_code,
            content={"detail": "Requested range not satisfiable"},
            headers={"Content-Range": f"bytes */{exc.total_size}"},
        )
    if isinstance(exc, NotFound):
        return JSONResponse(status_code=status_code, content={"detail": "Job not found"})
    if status_code == 500:
        return JSONResponse(status_code=500, content={"detail": "Internal server error"})
    return JSONResponse(status_code=status_code, content={"detail": str(exc)})


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error("unhandled_exception", path=request.url.path, error=str(exc))
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})


app.include_router(health_router)
app.include_router(media_router, prefix=settings.api_prefix)
app.include_router(stream_router, prefix=settings.api_prefix)
app.include_router(jobs_router, prefix=settings.api_prefix)


@app.get("/")
async def root():
    return {"service": "streamvault-api", "version": "1.0.0", "docs": "/docs"}
