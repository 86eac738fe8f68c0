"""Render-related Pydantic models."""

from datetime import datetime, timezone
from typing import Any, Literal, Optional

from pydantic import BaseModel, Field

RenderPhase = Literal["preparing", "rendering", "finalizing", "complete", "error"]

ChunkStatus = Literal["in_progress", "complete", "failed", "not_found"]


def utcnow() -> datetime:
    """Timezone-aware current time; every persisted timestamp uses it."""
    return datetime.now(timezone.utc)


class RenderConfig(BaseModel):
    """Composition settings a job needs before it can be rendered."""

    composition_id: str = Field(min_length=1)
    fps: Optional[int] = Field(default=None, gt=0)
    input_props: dict[str, Any] = Field(default_factory=dict)


class ChunkSpec(BaseModel):
    """A bounded slice of the render timeline sent to the executor."""

    chunk_index: int = Field(ge=0)
    start_frame: int = 0
    end_frame: int = 0
    start_seconds: float = 0.0
    end_seconds: float = 0.0
    scenes: list[dict[str, Any]] = Field(default_factory=list)

    @property
    def duration_seconds(self) -> float:
        return self.end_seconds - self.start_seconds


class RenderSpec(BaseModel):
    """Everything the orchestrator needs to render one job."""

    composition_id: str
    fps: int
    input_props: dict[str, Any] = Field(default_factory=dict)
    chunks: list[ChunkSpec] = Field(default_factory=list)

    @property
    def total_chunks(self) -> int:
        return len(self.chunks)

    def chunk_payload(self, chunk: ChunkSpec) -> dict[str, Any]:
        """
        Build the executor input for a single chunk.

        Chunk renders carry only their own scenes, and sound design is
        disabled because it is applied once to the assembled artifact.
        """
        props = dict(self.input_props)
        props["scenes"] = chunk.scenes
        props["isChunk"] = True
        props["chunkIndex"] = chunk.chunk_index
        sound_design = dict(props.get("soundDesignConfig") or {})
        sound_design.update(
            enabled=False,
            ambientLayer=False,
            transitionSounds=False,
            impactSounds=False,
        )
        props["soundDesignConfig"] = sound_design
        props.pop("soundEffectsBaseUrl", None)
        return {
            "composition_id": self.composition_id,
            "fps": self.fps,
            "chunk_index": chunk.chunk_index,
            "start_frame": chunk.start_frame,
            "end_frame": chunk.end_frame,
            "input_props": props,
        }


class DispatchHandle(BaseModel):
    """Correlation handles returned by the executor for a dispatched chunk."""

    external_render_id: str = Field(min_length=1)
    external_storage_location: str = Field(min_length=1)


class ChunkCheck(BaseModel):
    """One status query against the executor."""

    status: ChunkStatus
    percent: int = Field(default=0, ge=0, le=100)
    output_location: Optional[str] = None
    error: Optional[str] = None


class ChunkRenderState(BaseModel):
    """A chunk currently rendering remotely; at most one per job."""

    chunk_index: int = Field(ge=0)
    external_render_id: str
    external_storage_location: str
    started_at: datetime = Field(default_factory=utcnow)


class ChunkResult(BaseModel):
    """A completed chunk."""

    chunk_index: int = Field(ge=0)
    output_location: str
    success: bool = True
    render_time_ms: Optional[int] = None


class RenderStatus(BaseModel):
    """Denormalized render progress for UI consumption."""

    phase: RenderPhase = "preparing"
    total_chunks: int = 0
    completed_chunks: int = 0
    current_chunk: Optional[int] = None
    percent: int = Field(default=0, ge=0, le=100)
    message: str = ""
    started_at: Optional[datetime] = None
    last_update_at: Optional[datetime] = None
    elapsed_ms: int = 0
    error: Optional[str] = None
