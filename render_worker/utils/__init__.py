"""Utility modules for the render worker."""

from render_worker.utils.errors import (
    AssetGenerationError,
    AssetServiceAPIError,
    FinalizeError,
    JobStateError,
    JobStoreError,
    QualityEvaluationError,
    RenderConfigError,
    RenderExecutorAPIError,
    RenderExecutorError,
    RenderFailed,
    RenderWorkerError,
)
from render_worker.utils.retry import with_retry

__all__ = [
    "RenderWorkerError",
    "JobStoreError",
    "JobStateError",
    "AssetGenerationError",
    "AssetServiceAPIError",
    "QualityEvaluationError",
    "RenderExecutorError",
    "RenderExecutorAPIError",
    "RenderFailed",
    "RenderConfigError",
    "FinalizeError",
    "with_retry",
]
