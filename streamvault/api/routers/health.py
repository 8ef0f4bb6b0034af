import structlog
from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from streamvault.models import Job, JobStatus, get_db

logger = structlog.get_logger()
router = APIRouter(tags=["Health"])


@router.get("/health")
async def health_check() -> dict:
    return {"status": "healthy", "service": "streamvault-api"}


@router.get("/health/ready", description="Database reachability plus the current backlog of queued jobs.")
def readiness_check(db: Session = Depends(get_db)):
    try:
        queued = db.scalar(select(func.count()).select_from(Job).where(Job.status == JobStatus.QUEUED))
    except SQLAlchemyError as e:
        logger.error("readiness_check_failed", error=str(e))
        return JSONResponse(status_code=503, content={"status": "not_ready", "database": "disconnected"})
    return {"status": "ready", "database": "connected", "queued_jobs": queued}
