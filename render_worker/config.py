"""Application settings from environment variables."""

import os
from functools import lru_cache

from dotenv import load_dotenv
from pydantic import Field, model_validator
from pydantic_settings import BaseSettings

# Load environment variables
load_dotenv()


class Settings(BaseSettings):
    """Application settings from environment."""

    # Supabase
    supabase_url: str = ""
    supabase_key: str = ""
    jobs_table: str = "render_jobs"
    output_bucket: str = "renders"

    # Collaborators
    asset_service_url: str = ""
    asset_service_api_key: str = ""
    quality_service_url: str = ""
    quality_service_api_key: str = ""
    render_executor_url: str = ""
    render_executor_api_key: str = ""

    # Worker loop
    log_level: str = "INFO"
    worker_id: str = Field(default_factory=lambda: f"worker_{os.getpid()}")
    poll_interval_seconds: float = 5.0
    stall_check_interval_seconds: float = 60.0
    generating_stall_threshold_seconds: float = 300.0
    render_stall_threshold_seconds: float = 180.0

    # Remote rendering
    render_poll_interval_seconds: float = 2.0
    chunk_poll_timeout_seconds: float = 1800.0
    max_consecutive_poll_errors: int = 5
    max_chunk_duration_seconds: float = 120.0
    default_fps: int = 30
    dispatch_max_attempts: int = 3
    dispatch_base_delay_seconds: float = 15.0
    dispatch_max_delay_seconds: float = 60.0
    work_dir: str = "/tmp/render-worker"

    # Quality gate
    minimum_project_score: int = 75

    # Collaborator retries
    max_retry_attempts: int = 3
    base_delay_seconds: float = 1.0
    asset_timeout_seconds: float = 90.0
    quality_timeout_seconds: float = 120.0

    model_config = {"env_file": ".env"}

    @model_validator(mode="after")
    def render_poll_faster_than_stall(self) -> "Settings":
        """A live render must refresh updated_at inside the stall window."""
        if self.render_poll_interval_seconds >= self.render_stall_threshold_seconds:
            raise ValueError(
                "render_poll_interval_seconds must be shorter than "
                "render_stall_threshold_seconds"
            )
        return self

    @model_validator(mode="after")
    def scene_fits_generating_stall(self) -> "Settings":
        """One scene's worst case must finish inside the generating stall window."""
        backoff = sum(self.base_delay_seconds * 2**n for n in range(self.max_retry_attempts - 1))
        asset_worst_case = self.asset_timeout_seconds * self.max_retry_attempts + backoff
        if asset_worst_case >= self.generating_stall_threshold_seconds:
            raise ValueError(
                f"asset generation may take {asset_worst_case:.0f}s per scene; "
                "it must be shorter than generating_stall_threshold_seconds"
            )
        if self.quality_timeout_seconds >= self.generating_stall_threshold_seconds:
            raise ValueError(
                "quality_timeout_seconds must be shorter than "
                "generating_stall_threshold_seconds"
            )
        return self


@lru_cache
def get_settings() -> Settings:
    """Get cached application settings."""
    return Settings()
