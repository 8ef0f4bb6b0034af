"""Pipeline executor: runs the ordered analysis stages for one job.

Ownership of a PROCESSING job is tied to a per-run token. The token is
installed by the QUEUED -> PROCESSING compare-and-set (or by a stale
takeover) and every later write is conditional on it. A run that loses its
token stops without touching the job again.
"""

import tempfile
import time
import uuid
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FuturesTimeout
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import structlog

from streamvault.core.config import settings
from streamvault.core.errors import (
    AnalysisInputError,
    ClassificationUnavailable,
    CorruptUpload,
    JobCancelled,
    JobNotFound,
    StageFault,
    StageTimeout,
    UnsupportedFormat,
)
from streamvault.models import Job, JobStatus, SafetyVerdict, session_scope
from streamvault.services.broadcaster import Broadcaster, EventKind, ProgressEvent, get_broadcaster
from streamvault.services.classifier import ContentClassifier, ContentSample, get_classifier
from streamvault.services.job_store import JobStore
from streamvault.services.media_probe import MediaProbe, MediaProbeError
from streamvault.services.storage import MediaStore

logger = structlog.get_logger()


@dataclass(frozen=True)
class Stage:
    name: str
    label: str
    progress: int
    fault: type[StageFault]


STAGES: tuple[Stage, ...] = (
    Stage("validate", "Validating upload", 10, CorruptUpload),
    Stage("extract_metadata", "Extracting metadata", 25, UnsupportedFormat),
    Stage("sample_content", "Sampling content", 40, AnalysisInputError),
    Stage("classify", "Running safety classification", 60, ClassificationUnavailable),
    Stage("derive_metadata", "Deriving media metadata", 80, StageFault),
)

# Reported in place of a stage when the owner cancels between stages.
CANCELLATION = Stage("cancel", "Cancelled", 0, JobCancelled)


@dataclass
class RunContext:
    job_id: uuid.UUID
    owner_id: str
    blob_ref: str
    size_bytes: int
    content_type: str
    run_token: str
    workdir: Path
    diagnostics: dict[str, Any] = field(default_factory=dict)
    local_path: str | None = None
    probe: dict[str, Any] | None = None
    sample: ContentSample | None = None
    score: float | None = None
    verdict: SafetyVerdict | None = None
    derived: dict[str, Any] | None = None


class RunSuperseded(Exception):
    """The run's token no longer owns the job."""


def derive_metadata(probe: dict[str, Any]) -> dict[str, Any]:
    width, height = probe.get("width"), probe.get("height")
    return {
        "duration_seconds": probe.get("duration_seconds"),
        "resolution": f"{width}x{height}" if width and height else None,
        "width": width,
        "height": height,
        "codec": probe.get("codec"),
        "bitrate_kbps": probe.get("bitrate_kbps"),
        "frame_rate": probe.get("frame_rate"),
    }


class PipelineExecutor:
    def __init__(
        self,
        store: JobStore,
        media: MediaStore,
        broadcaster: Broadcaster,
        classifier: ContentClassifier,
        probe: MediaProbe,
        stage_timeout: float | None = None,
        stale_after_seconds: int | None = None,
    ) -> None:
        self.store = store
        self.media = media
        self.broadcaster = broadcaster
        self.classifier = classifier
        self.probe = probe
        self.stage_timeout = stage_timeout or settings.stage_timeout_seconds
        self.stale_after_seconds = stale_after_seconds or settings.stale_processing_seconds

    def run(self, job_id: uuid.UUID | str, stage_timeout: float | None = None) -> dict:
        """Run the pipeline for ``job_id`` if it is eligible; otherwise do nothing."""
        job = self.store.load(job_id)
        if job is None:
            logger.error("job_not_found", job_id=str(job_id))
            raise JobNotFound(str(job_id))

        run_token = str(uuid.uuid4())
        previous = job.status
        if previous == JobStatus.QUEUED:
            claimed = self.store.claim(job.id, run_token)
        elif previous == JobStatus.PROCESSING:
            claimed = self.store.reclaim_stale(job.id, run_token, self.stale_after_seconds)
        else:
            claimed = False

        if not claimed:
            logger.info("run_skipped", job_id=str(job.id), status=previous.value)
            return {"status": "skipped", "reason": previous.value}

        restarted = previous == JobStatus.PROCESSING
        self.store.log_event(
            job.id,
            "PROCESSING_RESTARTED" if restarted else "PROCESSING_STARTED",
            previous,
            JobStatus.PROCESSING,
        )
        logger.info("processing_started", job_id=str(job.id), restarted=restarted)

        job = self.store.load(job.id)
        try:
            return self._execute(job, run_token, stage_timeout or self.stage_timeout)
        except RunSuperseded:
            logger.warning("run_superseded", job_id=str(job.id))
            return {"status": "superseded", "job_id": str(job.id)}

    def _execute(self, job: Job, run_token: str, budget: float) -> dict:
        started = time.monotonic()
        progress = job.progress_percent
        current = STAGES[0]

        with tempfile.TemporaryDirectory(prefix="streamvault-", ignore_cleanup_errors=True) as temp_dir:
            ctx = RunContext(
                job_id=job.id,
                owner_id=job.owner_id,
                blob_ref=job.blob_ref,
                size_bytes=job.size_bytes,
                content_type=job.content_type,
                run_token=run_token,
                workdir=Path(temp_dir),
                diagnostics=dict(job.diagnostics or {}),
            )

            try:
                for current in STAGES:
                    self._check_cancelled(ctx)
                    self._run_stage(current, ctx, budget)

                    progress = max(progress, current.progress)
                    if not self.store.record_progress(ctx.job_id, run_token, progress, current.label, ctx.diagnostics):
                        raise RunSuperseded()
                    self._emit(ctx, EventKind.PROGRESS, {"progress": progress, "stage": current.label})
                    logger.info("stage_completed", job_id=str(ctx.job_id), stage=current.name, progress=progress)

                self._check_cancelled(ctx)
            except JobCancelled as e:
                return self._fail(ctx, CANCELLATION, e)
            except StageFault as e:
                return self._fail(ctx, current, e)

            return self._finalize(ctx, int(time.monotonic() - started))

    def _check_cancelled(self, ctx: RunContext) -> None:
        if self.store.is_cancel_requested(ctx.job_id):
            raise JobCancelled("Cancelled by owner")

    def _run_stage(self, stage: Stage, ctx: RunContext, budget: float) -> None:
        handler = getattr(self, f"_stage_{stage.name}")
        pool = ThreadPoolExecutor(max_workers=1, thread_name_prefix=f"stage-{stage.name}")
        future = pool.submit(handler, ctx)
        try:
            future.result(timeout=budget)
        except StageFault:
            raise
        except FuturesTimeout as e:
            if not future.done():
                raise StageTimeout(f"Stage '{stage.name}' exceeded its {budget}s budget") from e
            raise stage.fault(f"{stage.label} failed: {e}") from e
        except Exception as e:
            raise stage.fault(f"{stage.label} failed: {e}") from e
        finally:
            # An overrunning stage is abandoned, not awaited.
            pool.shutdown(wait=False, cancel_futures=True)

    # -- stages --------------------------------------------------------------

    def _stage_validate(self, ctx: RunContext) -> None:
        observed = self.media.get_size(ctx.blob_ref)
        ctx.diagnostics["validate"] = {"declared_bytes": ctx.size_bytes, "observed_bytes": observed}
        if observed == 0:
            raise CorruptUpload("Uploaded media is empty")
        if observed != ctx.size_bytes:
            raise CorruptUpload(f"Declared size {ctx.size_bytes} does not match stored size {observed}")

    def _stage_extract_metadata(self, ctx: RunContext) -> None:
        local_path = ctx.workdir / f"source{Path(ctx.blob_ref).suffix}"
        self.media.download_file(ctx.blob_ref, str(local_path))
        ctx.local_path = str(local_path)
        try:
            ctx.probe = self.probe.probe(ctx.local_path)
        except MediaProbeError as e:
            raise UnsupportedFormat(str(e)) from e
        ctx.diagnostics["extract_metadata"] = ctx.probe

    def _stage_sample_content(self, ctx: RunContext) -> None:
        try:
            paths = self.probe.extract_samples(ctx.local_path, str(ctx.workdir / "samples"))
        except MediaProbeError as e:
            raise AnalysisInputError(str(e)) from e
        if not paths:
            raise AnalysisInputError("No frames could be sampled")

        frames = tuple(Path(p).read_bytes() for p in paths)
        ctx.sample = ContentSample(frames=frames, content_type=ctx.content_type, metadata=ctx.probe or {})
        ctx.diagnostics["sample_content"] = {"frame_count": len(frames)}

    def _stage_classify(self, ctx: RunContext) -> None:
        score, verdict = self.classifier.classify(ctx.sample)
        ctx.score, ctx.verdict = float(score), verdict
        ctx.diagnostics["classify"] = {"score": ctx.score, "verdict": verdict.value}

    def _stage_derive_metadata(self, ctx: RunContext) -> None:
        ctx.derived = derive_metadata(ctx.probe or {})

    # -- terminal states -----------------------------------------------------

    def _finalize(self, ctx: RunContext, processing_time: int) -> dict:
        completed = self.store.compare_and_set(
            ctx.job_id,
            JobStatus.PROCESSING,
            expected_run_token=ctx.run_token,
            status=JobStatus.COMPLETED,
            progress_percent=100,
            stage_label="Completed",
            safety_verdict=ctx.verdict,
            safety_score=ctx.score,
            derived_metadata=ctx.derived,
            diagnostics=ctx.diagnostics,
            error_code=None,
            error_detail=None,
            completed_at=datetime.now(timezone.utc),
        )
        if not completed:
            raise RunSuperseded()

        self.store.log_event(
            ctx.job_id, "PROCESSING_COMPLETED", JobStatus.PROCESSING, JobStatus.COMPLETED,
            {"safety_verdict": ctx.verdict.value, "safety_score": ctx.score, "processing_time": processing_time},
        )
        self._emit(ctx, EventKind.COMPLETED, {
            "status": JobStatus.COMPLETED.value,
            "progress": 100,
            "safety_verdict": ctx.verdict.value,
            "safety_score": ctx.score,
        })
        logger.info("processing_completed", job_id=str(ctx.job_id), verdict=ctx.verdict.value, score=ctx.score)

        return {
            "status": "completed",
            "job_id": str(ctx.job_id),
            "safety_verdict": ctx.verdict.value,
            "safety_score": ctx.score,
            "processing_time_seconds": processing_time,
        }

    def _fail(self, ctx: RunContext, stage: Stage, error: StageFault) -> dict:
        detail = (str(error) or error.code)[:1000]
        logger.error("processing_failed", job_id=str(ctx.job_id), stage=stage.name, code=error.code, error=detail)

        failed = self.store.compare_and_set(
            ctx.job_id,
            JobStatus.PROCESSING,
            expected_run_token=ctx.run_token,
            status=JobStatus.FAILED,
            stage_label=f"Failed: {stage.label}",
            error_code=error.code,
            error_detail=detail,
            diagnostics=ctx.diagnostics,
            completed_at=datetime.now(timezone.utc),
        )
        if not failed:
            raise RunSuperseded()

        self.store.log_event(
            ctx.job_id, "PROCESSING_FAILED", JobStatus.PROCESSING, JobStatus.FAILED,
            {"stage": stage.name, "error_code": error.code},
        )
        self._emit(ctx, EventKind.FAILED, {"error": detail, "error_code": error.code, "stage": stage.name})
        return {"status": "failed", "job_id": str(ctx.job_id), "error_code": error.code, "error": detail}

    def _emit(self, ctx: RunContext, kind: EventKind, payload: dict) -> None:
        event = ProgressEvent(job_id=str(ctx.job_id), owner_id=ctx.owner_id, kind=kind, payload=payload)
        try:
            self.broadcaster.publish(event)
        except Exception as e:
            logger.error("progress_publish_failed", job_id=str(ctx.job_id), kind=kind.value, error=str(e))


def run_job(job_id: str, stage_timeout: float | None = None) -> dict:
    """Worker entry point: run one job with production collaborators."""
    with session_scope() as db:
        executor = PipelineExecutor(
            store=JobStore(db),
            media=MediaStore(),
            broadcaster=get_broadcaster(),
            classifier=get_classifier(),
            probe=MediaProbe(),
        )
        return executor.run(job_id, stage_timeout=stage_timeout)
