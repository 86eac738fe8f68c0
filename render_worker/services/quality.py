"""Client for the quality evaluation service."""

import logging
from typing import Optional

import httpx
from pydantic import ValidationError

from render_worker.models.scene import Scene, SceneAnalysis
from render_worker.utils.errors import QualityEvaluationError

logger = logging.getLogger(__name__)


class QualityService:
    """Scores generated scene assets."""

    def __init__(self, base_url: str, api_key: str = "", timeout: float = 120.0) -> None:
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout

    def is_available(self) -> bool:
        """Analysis is optional; an unconfigured service is skipped."""
        return bool(self.base_url)

    async def analyze_scene(
        self, asset_ref: str, scene: Scene, scene_index: int
    ) -> SceneAnalysis:
        """
        Analyze one scene's visual asset.

        Args:
            asset_ref: Location of the image or clip to inspect
            scene: Scene the asset belongs to
            scene_index: Position of the scene in render order

        Returns:
            SceneAnalysis for the scene

        Raises:
            QualityEvaluationError: If the service fails or returns bad data
        """
        payload = {
            "asset_url": asset_ref,
            "scene_index": scene_index,
            "narration": scene.narration,
            "visual_direction": scene.visual_direction,
        }

        try:
            async with httpx.AsyncClient() as client:
                response = await client.post(
                    f"{self.base_url}/analyze",
                    json=payload,
                    headers={"Authorization": f"Bearer {self.api_key}"},
                    timeout=self.timeout,
                )
        except httpx.HTTPError as e:
            raise QualityEvaluationError(f"HTTP error analyzing scene {scene.id}: {e}")

        if response.status_code != 200:
            raise QualityEvaluationError(
                f"Quality service error {response.status_code}: {response.text}"
            )

        try:
            data = response.json()
            data.setdefault("scene_index", scene_index)
            return SceneAnalysis.model_validate(data)
        except (ValueError, ValidationError) as e:
            raise QualityEvaluationError(f"Invalid analysis for scene {scene.id}: {e}")


def create_quality_service(base_url: Optional[str] = None) -> QualityService:
    """Create a QualityService instance using application settings."""
    from render_worker.config import get_settings

    settings = get_settings()
    return QualityService(
        base_url=base_url if base_url is not None else settings.quality_service_url,
        api_key=settings.quality_service_api_key,
        timeout=settings.quality_timeout_seconds,
    )
