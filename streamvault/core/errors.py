"""Domain error taxonomy shared by the API, the executor and the worker."""


class StreamVaultError(Exception):
    """Base class for all domain errors."""


class ValidationFault(StreamVaultError):
    """Bad input to intake; rejected before a job is created."""


class NotFound(StreamVaultError):
    """Missing or not owned by the requester. Callers cannot tell which."""


class JobNotFound(NotFound):
    pass


class NotReady(StreamVaultError):
    """Media requested before its job reached COMPLETED."""


class StorageUnavailable(StreamVaultError):
    """Transient Media Store failure. Safe to retry at the caller."""


class QueueUnavailable(StreamVaultError):
    """A run trigger could not be published; the upload was rolled back."""


class RangeNotSatisfiable(StreamVaultError):
    def __init__(self, total_size: int, header: str | None = None) -> None:
        super().__init__(f"Range not satisfiable: {header!r} (size {total_size})")
        self.total_size = total_size
        self.header = header


class InvalidTransition(StreamVaultError):
    """Requested operation is not valid for the job's current status."""


class StageFault(StreamVaultError):
    """A pipeline stage failed. Always terminal for the job."""

    code = "STAGE_ERROR"


class CorruptUpload(StageFault):
    code = "CORRUPT_UPLOAD"


class UnsupportedFormat(StageFault):
    code = "UNSUPPORTED_FORMAT"


class AnalysisInputError(StageFault):
    code = "ANALYSIS_INPUT_ERROR"


class ClassificationUnavailable(StageFault):
    code = "CLASSIFICATION_UNAVAILABLE"


class StageTimeout(StageFault):
    code = "STAGE_TIMEOUT"


class JobCancelled(StageFault):
    code = "CANCELLED"
