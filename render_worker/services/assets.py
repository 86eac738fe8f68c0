"""Client for the asset generation service."""

import logging
from typing import Optional

import httpx

from render_worker.models.job import Job
from render_worker.models.scene import Scene, SceneAssets
from render_worker.utils.errors import AssetGenerationError, AssetServiceAPIError
from render_worker.utils.retry import with_retry

logger = logging.getLogger(__name__)


class AssetService:
    """Generates images, clips and narration audio for a job's scenes."""

    def __init__(
        self,
        base_url: str,
        api_key: str = "",
        timeout: float = 90.0,
        max_attempts: int = 3,
        base_delay: float = 1.0,
    ) -> None:
        """
        Initialize the AssetService.

        Args:
            base_url: Root URL of the asset generation service
            api_key: Bearer token for the service
            timeout: Per-request timeout in seconds; generation is slow
            max_attempts: Attempts per scene when the service returns an error
            base_delay: First backoff delay in seconds
        """
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self._generate_with_retry = with_retry(
            max_attempts=max_attempts,
            base_delay=base_delay,
            exceptions=(AssetServiceAPIError,),
        )(self._generate_once)

    async def _generate_once(self, job: Job, scene: Scene) -> Scene:
        payload = {
            "job_id": job.id,
            "owner_id": job.owner_id,
            "scene": scene.model_dump(mode="json", exclude={"analysis"}),
        }

        try:
            async with httpx.AsyncClient() as client:
                response = await client.post(
                    f"{self.base_url}/scenes/generate",
                    json=payload,
                    headers={"Authorization": f"Bearer {self.api_key}"},
                    timeout=self.timeout,
                )
        except httpx.HTTPError as e:
            raise AssetGenerationError(f"HTTP error generating scene {scene.id}: {e}")

        if response.status_code not in (200, 201):
            raise AssetServiceAPIError(response.status_code, response.text)

        data = response.json()
        assets = SceneAssets.model_validate(data.get("assets") or {})
        if not (assets.image_url or assets.video_url):
            raise AssetGenerationError(f"No visual asset returned for scene {scene.id}")

        return scene.model_copy(update={"assets": assets})

    async def generate_scene_assets(self, job: Job, scene: Scene) -> Scene:
        """
        Generate the assets for a single scene.

        Args:
            job: Job the scene belongs to
            scene: Scene to generate assets for

        Returns:
            Copy of the scene with its assets set

        Raises:
            AssetServiceAPIError: If the service keeps returning an error
            AssetGenerationError: If the request fails or the response is unusable
        """
        generated = await self._generate_with_retry(job, scene)
        logger.info(f"Generated assets for scene {scene.id} of job {job.id}")
        return generated


def create_asset_service(base_url: Optional[str] = None) -> AssetService:
    """Create an AssetService instance using application settings."""
    from render_worker.config import get_settings

    settings = get_settings()
    return AssetService(
        base_url=base_url or settings.asset_service_url,
        api_key=settings.asset_service_api_key,
        timeout=settings.asset_timeout_seconds,
        max_attempts=settings.max_retry_attempts,
        base_delay=settings.base_delay_seconds,
    )
