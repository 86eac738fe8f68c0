"""Scene-related Pydantic models."""

from datetime import datetime, timezone
from typing import Literal, Optional

from pydantic import BaseModel, Field, field_validator

Recommendation = Literal["approve", "needs_review", "reject", "pending"]

Severity = Literal["critical", "major", "minor"]


class AnalysisIssue(BaseModel):
    """A single problem reported by the quality evaluation service."""

    severity: Severity
    description: str = ""


class SceneAnalysis(BaseModel):
    """Quality scores attached to a scene after evaluation."""

    scene_index: int = Field(ge=0)
    overall_score: float = Field(ge=0, le=100)
    recommendation: Recommendation = "pending"
    issues: list[AnalysisIssue] = Field(default_factory=list)
    analyzed_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    def count_issues(self, severity: Severity) -> int:
        return sum(1 for issue in self.issues if issue.severity == severity)


class SceneAssets(BaseModel):
    """Generated asset locations for a scene."""

    image_url: Optional[str] = None
    video_url: Optional[str] = None
    audio_url: Optional[str] = None


class Scene(BaseModel):
    """One scene of a video-assembly job, rendered in list order."""

    id: str = Field(min_length=1)
    narration: str = ""
    visual_direction: str = ""
    duration_seconds: float = Field(default=0.0, ge=0)
    assets: Optional[SceneAssets] = None
    analysis: Optional[SceneAnalysis] = None

    @field_validator("id")
    @classmethod
    def id_not_whitespace(cls, v: str) -> str:
        """Validate that id is not only whitespace."""
        if not v.strip():
            raise ValueError("id cannot be only whitespace")
        return v

    @property
    def asset_ref(self) -> Optional[str]:
        """Location of the visual asset the quality service should inspect."""
        if self.assets is None:
            return None
        return self.assets.image_url or self.assets.video_url

    @property
    def has_assets(self) -> bool:
        return self.asset_ref is not None
