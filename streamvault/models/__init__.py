from .base import Base, SessionLocal, engine, get_db, session_scope
from .job import Job, JobEvent, JobStatus, SafetyVerdict

__all__ = [
    "Base",
    "get_db",
    "engine",
    "SessionLocal",
    "session_scope",
    "Job",
    "JobEvent",
    "JobStatus",
    "SafetyVerdict",
]
