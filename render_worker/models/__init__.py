"""Pydantic data models for the render worker."""

from render_worker.models.job import (
    AuditEntry,
    GenerationStage,
    Job,
    JobProgress,
    JobStatus,
    RenderStage,
    ServiceFailure,
    project_render_status,
)
from render_worker.models.quality import GateVerdict, QualityReport, SceneScore
from render_worker.models.render import (
    ChunkCheck,
    ChunkRenderState,
    ChunkResult,
    ChunkSpec,
    DispatchHandle,
    RenderConfig,
    RenderSpec,
    RenderStatus,
)
from render_worker.models.scene import AnalysisIssue, Scene, SceneAnalysis, SceneAssets

__all__ = [
    "AnalysisIssue",
    "AuditEntry",
    "ChunkCheck",
    "ChunkRenderState",
    "ChunkResult",
    "ChunkSpec",
    "DispatchHandle",
    "GateVerdict",
    "GenerationStage",
    "Job",
    "JobProgress",
    "JobStatus",
    "QualityReport",
    "RenderConfig",
    "RenderSpec",
    "RenderStage",
    "RenderStatus",
    "Scene",
    "SceneAnalysis",
    "SceneAssets",
    "SceneScore",
    "ServiceFailure",
    "project_render_status",
]
