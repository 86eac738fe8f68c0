"""Service layer for the render worker."""

from render_worker.services.assembler import ChunkAssembler, create_chunk_assembler
from render_worker.services.assets import AssetService, create_asset_service
from render_worker.services.chunked_render import (
    ChunkedRenderService,
    build_render_spec,
    calculate_chunks,
    create_chunked_render_service,
)
from render_worker.services.job_store import JobStore, create_job_store
from render_worker.services.pipeline import JobPipeline, create_job_pipeline
from render_worker.services.quality import QualityService, create_quality_service
from render_worker.services.recovery import (
    RecoverySummary,
    StartupRecovery,
    create_startup_recovery,
)
from render_worker.services.render_executor import RenderExecutor, create_render_executor
from render_worker.services.render_gate import (
    approve_review,
    build_quality_report,
    can_proceed_to_render,
    force_render,
    request_render,
)
from render_worker.services.stall_detector import StallDetector, create_stall_detector

__all__ = [
    "ChunkAssembler",
    "create_chunk_assembler",
    "AssetService",
    "create_asset_service",
    "ChunkedRenderService",
    "build_render_spec",
    "calculate_chunks",
    "create_chunked_render_service",
    "JobStore",
    "create_job_store",
    "JobPipeline",
    "create_job_pipeline",
    "QualityService",
    "create_quality_service",
    "RecoverySummary",
    "StartupRecovery",
    "create_startup_recovery",
    "RenderExecutor",
    "create_render_executor",
    "approve_review",
    "build_quality_report",
    "can_proceed_to_render",
    "force_render",
    "request_render",
    "StallDetector",
    "create_stall_detector",
]
