"""Quality report Pydantic models."""

from pydantic import BaseModel, Field

from render_worker.models.scene import Recommendation


class SceneScore(BaseModel):
    """Gate view of one scene's analysis."""

    scene_index: int
    score: float
    recommendation: Recommendation
    critical_issues: int = 0
    major_issues: int = 0
    minor_issues: int = 0


class QualityReport(BaseModel):
    """Aggregate quality view of a job, recomputed from scene analyses."""

    job_id: str
    scene_scores: list[SceneScore] = Field(default_factory=list)
    overall_score: int = 0
    recommendation: Recommendation = "pending"
    approved_count: int = 0
    needs_review_count: int = 0
    rejected_count: int = 0
    pending_count: int = 0
    critical_issue_count: int = 0
    major_issue_count: int = 0
    minor_issue_count: int = 0
    blocking_reasons: list[str] = Field(default_factory=list)


class GateVerdict(BaseModel):
    """Allow/block decision returned by the render gate."""

    allowed: bool
    blocking_reasons: list[str] = Field(default_factory=list)
