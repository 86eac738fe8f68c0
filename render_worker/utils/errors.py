"""Custom exception classes for the render worker."""

from typing import Optional

RATE_LIMIT_MARKERS = (
    "rate exceeded",
    "rate limit",
    "concurrency limit",
    "toomanyrequestsexception",
    "concurrentinvocationlimitexceeded",
    "currently busy",
)


class RenderWorkerError(Exception):
    """Base exception for all application errors."""

    pass


class JobStoreError(RenderWorkerError):
    """Errors from the job store."""

    pass


class AssetGenerationError(RenderWorkerError):
    """Errors from the asset generation service."""

    pass


class AssetServiceAPIError(AssetGenerationError):
    """Asset generation API returned an error."""

    def __init__(self, status_code: int, message: str) -> None:
        self.status_code = status_code
        super().__init__(f"Asset service error {status_code}: {message}")


class QualityEvaluationError(RenderWorkerError):
    """Errors from the quality evaluation service."""

    pass


class RenderExecutorError(RenderWorkerError):
    """Errors from the remote render executor."""

    pass


class RenderExecutorAPIError(RenderExecutorError):
    """Remote render executor returned an error."""

    def __init__(self, status_code: int, message: str) -> None:
        self.status_code = status_code
        super().__init__(f"Render executor error {status_code}: {message}")

    @property
    def is_rate_limited(self) -> bool:
        """Whether the executor refused the request for capacity reasons."""
        if self.status_code in (429, 503):
            return True
        text = str(self).lower()
        return any(marker in text for marker in RATE_LIMIT_MARKERS)


class RenderFailed(RenderExecutorError):
    """A chunk could not be completed; the job should be re-queued."""

    def __init__(self, chunk_index: int, cause: str) -> None:
        self.chunk_index = chunk_index
        self.cause = cause
        super().__init__(f"Chunk {chunk_index} failed: {cause}")


class RenderConfigError(RenderWorkerError):
    """Required render configuration is missing or invalid."""

    pass


class FinalizeError(RenderWorkerError):
    """Rendered chunks could not be assembled into the final artifact."""

    def __init__(self, message: str, cause: Optional[Exception] = None) -> None:
        self.cause = cause
        super().__init__(message)


class JobStateError(RenderWorkerError):
    """A job is not in a status that allows the requested action."""

    def __init__(self, job_id: str, status: str, action: str) -> None:
        self.job_id = job_id
        self.status = status
        super().__init__(f"Cannot {action} job {job_id} in status {status}")
