"""Job Record Store backed by SQLAlchemy.

Every status transition goes through a conditional UPDATE so concurrent
executors and API requests never need a shared lock: the row count of the
UPDATE tells the caller whether it won.
"""

import uuid
from datetime import datetime, timedelta, timezone
from typing import Any

import structlog
from sqlalchemy import delete, or_, select, update
from sqlalchemy.orm import Session

from streamvault.core.errors import InvalidTransition, JobNotFound
from streamvault.models import Job, JobEvent, JobStatus, SafetyVerdict

logger = structlog.get_logger()

def _as_uuid(job_id: uuid.UUID | str) -> uuid.UUID | None:
    if isinstance(job_id, uuid.UUID):
        return job_id
    try:
        return uuid.UUID(str(job_id))
    except ValueError:
        return None


class JobStore:
    def __init__(self, db: Session) -> None:
        self.db = db

    # -- reads ---------------------------------------------------------------

    def load(self, job_id: uuid.UUID | str) -> Job | None:
        job_uuid = _as_uuid(job_id)
        if job_uuid is None:
            return None
        return self.db.query(Job).populate_existing().filter(Job.id == job_uuid).first()

    def load_owned(self, job_id: uuid.UUID | str, owner_id: str) -> Job:
        """Load a job for its owner; missing and foreign jobs look the same."""
        job = self.load(job_id)
        if job is None or job.owner_id != owner_id:
            raise JobNotFound(str(job_id))
        return job

    def list_by_owner(
        self,
        owner_id: str,
        status: JobStatus | None = None,
        safety_verdict: SafetyVerdict | None = None,
        search: str | None = None,
        page: int = 1,
        limit: int = 20,
    ) -> tuple[list[Job], int]:
        query = self.db.query(Job).filter(Job.owner_id == owner_id)
        if status is not None:
            query = query.filter(Job.status == status)
        if safety_verdict is not None:
            query = query.filter(Job.safety_verdict == safety_verdict)
        if search:
            pattern = f"%{search}%"
            query = query.filter(or_(Job.title.ilike(pattern), Job.description.ilike(pattern)))

        total = query.count()
        jobs = (
            query.order_by(Job.created_at.desc())
            .offset((page - 1) * limit)
            .limit(limit)
            .all()
        )
        return jobs, total

    def events(self, job_id: uuid.UUID) -> list[JobEvent]:
        return (
            self.db.query(JobEvent)
            .filter(JobEvent.job_id == job_id)
            .order_by(JobEvent.created_at)
            .all()
        )

    # -- writes --------------------------------------------------------------

    def create(self, **fields: Any) -> Job:
        job = Job(status=JobStatus.QUEUED, **fields)
        self.db.add(job)
        self.db.commit()
        self.db.refresh(job)
        self.log_event(job.id, "JOB_QUEUED", None, JobStatus.QUEUED)
        return job

    def compare_and_set(
        self,
        job_id: uuid.UUID,
        expected_status: JobStatus,
        expected_run_token: str | None = None,
        **values: Any,
    ) -> bool:
        """Apply ``values`` only if the job is still in ``expected_status``.

        When ``expected_run_token`` is given the write also requires the job
        to be owned by that executor run.
        """
        stmt = update(Job).where(Job.id == job_id, Job.status == expected_status)
        if expected_run_token is not None:
            stmt = stmt.where(Job.run_token == expected_run_token)
        result = self.db.execute(
            stmt.values(**values).execution_options(synchronize_session=False)
        )
        self.db.commit()
        return result.rowcount == 1

    def claim(self, job_id: uuid.UUID, run_token: str) -> bool:
        """Atomic QUEUED -> PROCESSING."""
        now = datetime.now(timezone.utc)
        return self.compare_and_set(
            job_id,
            JobStatus.QUEUED,
            status=JobStatus.PROCESSING,
            run_token=run_token,
            started_at=now,
            heartbeat_at=now,
        )

    def reclaim_stale(self, job_id: uuid.UUID, run_token: str, stale_after_seconds: int) -> bool:
        """Take over a PROCESSING job whose heartbeat is older than the threshold."""
        now = datetime.now(timezone.utc)
        cutoff = now - timedelta(seconds=stale_after_seconds)
        result = self.db.execute(
            update(Job)
            .where(
                Job.id == job_id,
                Job.status == JobStatus.PROCESSING,
                or_(Job.heartbeat_at.is_(None), Job.heartbeat_at < cutoff),
            )
            .values(run_token=run_token, started_at=now, heartbeat_at=now)
            .execution_options(synchronize_session=False)
        )
        self.db.commit()
        return result.rowcount == 1

    def record_progress(
        self,
        job_id: uuid.UUID,
        run_token: str,
        percent: int,
        label: str,
        diagnostics: dict | None = None,
    ) -> bool:
        """Persist progress for the owning run; never lowers the stored percent."""
        result = self.db.execute(
            update(Job)
            .where(
                Job.id == job_id,
                Job.status == JobStatus.PROCESSING,
                Job.run_token == run_token,
                Job.progress_percent <= percent,
            )
            .values(
                progress_percent=percent,
                stage_label=label,
                diagnostics=diagnostics,
                heartbeat_at=datetime.now(timezone.utc),
            )
            .execution_options(synchronize_session=False)
        )
        self.db.commit()
        return result.rowcount == 1

    def is_cancel_requested(self, job_id: uuid.UUID) -> bool:
        value = self.db.execute(
            select(Job.cancel_requested).where(Job.id == job_id)
        ).scalar_one_or_none()
        return bool(value)

    def request_cancel(self, job_id: uuid.UUID | str, owner_id: str) -> JobStatus:
        """Flag a QUEUED or PROCESSING job for cancellation.

        The executor honours the flag between stages, so a queued job still
        goes through PROCESSING before it ends FAILED with CANCELLED. Returns
        the status the job had when the flag was set.
        """
        job = self.load_owned(job_id, owner_id)

        # A queued job may be claimed between the read and the write; retry once.
        for _ in range(2):
            if job.status not in (JobStatus.QUEUED, JobStatus.PROCESSING):
                break
            if self.compare_and_set(job.id, job.status, cancel_requested=True):
                self.log_event(job.id, "CANCEL_REQUESTED", job.status, job.status)
                return job.status
            job = self.load_owned(job_id, owner_id)

        raise InvalidTransition(f"Cannot cancel job with status: {job.status.value}")

    def update_details(self, job: Job, **fields: Any) -> Job:
        for key, value in fields.items():
            setattr(job, key, value)
        self.db.commit()
        self.db.refresh(job)
        return job

    def delete(self, job_id: uuid.UUID | str, owner_id: str) -> str:
        """Delete a non-processing job record. Returns the blob reference to release."""
        job = self.load_owned(job_id, owner_id)
        if job.status == JobStatus.PROCESSING:
            raise InvalidTransition("Cannot delete a job while it is processing")
        job_uuid, blob_ref = job.id, job.blob_ref

        self.db.execute(delete(JobEvent).where(JobEvent.job_id == job_uuid))
        result = self.db.execute(
            delete(Job)
            .where(Job.id == job_uuid, Job.status != JobStatus.PROCESSING)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            self.db.rollback()
            raise InvalidTransition("Job started processing before it could be deleted")
        self.db.commit()
        self.db.expunge(job)
        return blob_ref

    def add_views(self, job_id: uuid.UUID | str, count: int) -> None:
        job_uuid = _as_uuid(job_id)
        if job_uuid is None or count <= 0:
            return
        self.db.execute(
            update(Job)
            .where(Job.id == job_uuid)
            .values(view_count=Job.view_count + count)
            .execution_options(synchronize_session=False)
        )
        self.db.commit()

    def log_event(
        self,
        job_id: uuid.UUID,
        event_type: str,
        old_status: JobStatus | None,
        new_status: JobStatus | None,
        event_data: dict | None = None,
    ) -> None:
        self.db.add(
            JobEvent(
                job_id=job_id,
                event_type=event_type,
                old_status=old_status,
                new_status=new_status,
                event_data=event_data,
            )
        )
        self.db.commit()
