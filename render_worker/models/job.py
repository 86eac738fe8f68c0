"""Job and job progress Pydantic models."""

from datetime import datetime
from enum import Enum
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, Field, field_validator

from render_worker.models.render import (
    ChunkRenderState,
    ChunkResult,
    RenderConfig,
    RenderPhase,
    RenderStatus,
    utcnow,
)
from render_worker.models.scene import Scene


class JobStatus(str, Enum):
    QUEUED = "queued"
    GENERATING = "generating"
    READY = "ready"
    RENDER_QUEUED = "render_queued"
    LAMBDA_PENDING = "lambda_pending"
    RENDERING = "rendering"
    COMPLETE = "complete"
    ERROR = "error"


# Statuses a render is in flight in; recovered on startup.
RENDER_ACTIVE = (JobStatus.LAMBDA_PENDING, JobStatus.RENDERING)

TERMINAL = (JobStatus.COMPLETE, JobStatus.ERROR)


class ServiceFailure(BaseModel):
    """A collaborator call that failed while driving a job."""

    service: str
    message: str
    timestamp: datetime = Field(default_factory=utcnow)


class AuditEntry(BaseModel):
    """A human action that changed how a job is allowed to proceed."""

    action: str
    actor: str
    reason: str = ""
    timestamp: datetime = Field(default_factory=utcnow)


class GenerationStage(BaseModel):
    kind: Literal["generation"] = "generation"
    total_scenes: int = 0
    completed_scenes: int = 0
    current_scene: Optional[int] = None


class RenderStage(BaseModel):
    kind: Literal["render"] = "render"
    total_chunks: int = 0
    chunk_results: list[ChunkResult] = Field(default_factory=list)
    active_chunk: Optional[ChunkRenderState] = None
    started_at: datetime = Field(default_factory=utcnow)

    @property
    def completed_indexes(self) -> set[int]:
        return {r.chunk_index for r in self.chunk_results if r.success}

    @property
    def is_fully_rendered(self) -> bool:
        if self.total_chunks <= 0:
            return False
        return self.completed_indexes >= set(range(self.total_chunks))

    def record_result(self, result: ChunkResult) -> None:
        """Append a chunk result, replacing any earlier entry for that index."""
        self.chunk_results = [
            r for r in self.chunk_results if r.chunk_index != result.chunk_index
        ]
        self.chunk_results.append(result)
        self.chunk_results.sort(key=lambda r: r.chunk_index)
        if self.active_chunk and self.active_chunk.chunk_index == result.chunk_index:
            self.active_chunk = None


Stage = Annotated[Union[GenerationStage, RenderStage], Field(discriminator="kind")]


class JobProgress(BaseModel):
    """Versioned progress record persisted alongside a job."""

    version: Literal[1] = 1
    stage: Optional[Stage] = None
    errors: list[str] = Field(default_factory=list)
    service_failures: list[ServiceFailure] = Field(default_factory=list)
    render_status: Optional[RenderStatus] = None
    audit: list[AuditEntry] = Field(default_factory=list)

    @property
    def render(self) -> Optional[RenderStage]:
        if isinstance(self.stage, RenderStage):
            return self.stage
        return None

    @property
    def generation(self) -> Optional[GenerationStage]:
        if isinstance(self.stage, GenerationStage):
            return self.stage
        return None

    def record_failure(self, service: str, message: str) -> None:
        self.errors.append(f"{service}: {message}")
        self.service_failures.append(ServiceFailure(service=service, message=message))


def project_render_status(
    stage: RenderStage,
    phase: RenderPhase,
    message: str = "",
    chunk_percent: int = 0,
    error: Optional[str] = None,
    now: Optional[datetime] = None,
) -> RenderStatus:
    """
    Derive the UI projection of a render from its authoritative stage.

    Rendering spans 10-89%, finalizing sits at 90% and completion at 100%.

    Args:
        stage: Render stage holding chunk results and the active chunk
        phase: Current render phase
        message: Human-readable status line
        chunk_percent: Executor-reported percent of the active chunk
        error: Error text when phase is "error"
        now: Override for the current time

    Returns:
        RenderStatus snapshot
    """
    now = now or utcnow()
    total = stage.total_chunks
    completed = len(stage.completed_indexes)
    current = stage.active_chunk.chunk_index if stage.active_chunk else None

    if phase == "preparing":
        percent = 5
    elif phase == "finalizing":
        percent = 90
    elif phase == "complete":
        percent = 100
    elif total > 0:
        share = 80 / total
        percent = 10 + round(completed * share) + round(chunk_percent / 100 * share)
        percent = min(percent, 89)
    else:
        percent = 10

    return RenderStatus(
        phase=phase,
        total_chunks=total,
        completed_chunks=completed,
        current_chunk=current,
        percent=percent,
        message=message,
        started_at=stage.started_at,
        last_update_at=now,
        elapsed_ms=max(0, int((now - stage.started_at).total_seconds() * 1000)),
        error=error,
    )


class Job(BaseModel):
    """One video-assembly unit of work."""

    id: str = Field(min_length=1)
    owner_id: str = ""
    status: JobStatus = JobStatus.QUEUED
    scenes: list[Scene] = Field(default_factory=list)
    progress: JobProgress = Field(default_factory=JobProgress)
    render_config: Optional[RenderConfig] = None
    review_override: bool = False
    external_render_id: Optional[str] = None
    external_storage_location: Optional[str] = None
    output_location: Optional[str] = None
    error_message: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @field_validator("progress", mode="before")
    @classmethod
    def empty_progress(cls, v: Any) -> Any:
        """Rows written before any stage ran carry a null progress column."""
        if v is None:
            return JobProgress()
        return v

    @field_validator("scenes", mode="before")
    @classmethod
    def empty_scenes(cls, v: Any) -> Any:
        if v is None:
            return []
        return v

    @property
    def total_duration_seconds(self) -> float:
        return sum(scene.duration_seconds for scene in self.scenes)

    def to_row(self) -> dict[str, Any]:
        """Serialize to a JSON-compatible row for the job table."""
        return self.model_dump(mode="json")

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "Job":
        """Build a Job from a job table row."""
        return cls.model_validate(row)
