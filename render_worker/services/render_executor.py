"""Client for the remote render executor."""

import logging
from typing import Any, Optional

import httpx

from render_worker.models.render import ChunkCheck, DispatchHandle
from render_worker.utils.errors import RenderExecutorAPIError, RenderExecutorError
from render_worker.utils.retry import with_retry

logger = logging.getLogger(__name__)


def _is_rate_limited(error: Exception) -> bool:
    return isinstance(error, RenderExecutorAPIError) and error.is_rate_limited


class RenderExecutor:
    """Dispatches chunk renders to a remote executor and polls their status."""

    def __init__(
        self,
        base_url: str,
        api_key: str = "",
        dispatch_max_attempts: int = 3,
        dispatch_base_delay: float = 15.0,
        dispatch_max_delay: float = 60.0,
        timeout: float = 60.0,
    ) -> None:
        """
        Initialize the RenderExecutor.

        Args:
            base_url: Root URL of the executor API
            api_key: Bearer token for the executor
            dispatch_max_attempts: Attempts for a rate-limited dispatch
            dispatch_base_delay: First backoff delay in seconds
            dispatch_max_delay: Cap on a single backoff delay
            timeout: Per-request timeout in seconds
        """
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self._dispatch_with_retry = with_retry(
            max_attempts=dispatch_max_attempts,
            base_delay=dispatch_base_delay,
            exceptions=(RenderExecutorAPIError,),
            retry_if=_is_rate_limited,
            max_delay=dispatch_max_delay,
        )(self._dispatch_once)

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

    async def _dispatch_once(self, chunk_payload: dict[str, Any]) -> DispatchHandle:
        try:
            async with httpx.AsyncClient() as client:
                response = await client.post(
                    f"{self.base_url}/renders",
                    json=chunk_payload,
                    headers=self._headers(),
                    timeout=self.timeout,
                )
        except httpx.HTTPError as e:
            raise RenderExecutorError(f"HTTP error dispatching render: {e}")

        if response.status_code not in (200, 201, 202):
            raise RenderExecutorAPIError(response.status_code, response.text)

        data = response.json()
        try:
            return DispatchHandle(
                external_render_id=data.get("render_id", ""),
                external_storage_location=data.get("storage_location", ""),
            )
        except ValueError as e:
            raise RenderExecutorError(f"Executor returned no render handle: {e}")

    async def dispatch(self, chunk_payload: dict[str, Any]) -> DispatchHandle:
        """
        Start a chunk render.

        Rate-limited dispatches are retried with exponential backoff; any
        other failure is raised immediately.

        Args:
            chunk_payload: Executor input built from a ChunkSpec

        Returns:
            DispatchHandle identifying the remote render

        Raises:
            RenderExecutorError: If the render could not be started
        """
        handle = await self._dispatch_with_retry(chunk_payload)
        logger.info(
            f"Dispatched chunk {chunk_payload.get('chunk_index')}: "
            f"render_id={handle.external_render_id}"
        )
        return handle

    async def check_status(
        self, external_render_id: str, external_storage_location: str
    ) -> ChunkCheck:
        """
        Query the status of a dispatched render.

        Args:
            external_render_id: Render ID returned by dispatch
            external_storage_location: Storage location returned by dispatch

        Returns:
            ChunkCheck; an unknown render maps to "not_found"

        Raises:
            RenderExecutorError: If the executor could not be queried
        """
        try:
            async with httpx.AsyncClient() as client:
                response = await client.get(
                    f"{self.base_url}/renders/{external_render_id}",
                    params={"storage_location": external_storage_location},
                    headers=self._headers(),
                    timeout=self.timeout,
                )
        except httpx.HTTPError as e:
            raise RenderExecutorError(f"HTTP error checking render {external_render_id}: {e}")

        if response.status_code == 404:
            return ChunkCheck(status="not_found", error="Render not found on executor")
        if response.status_code != 200:
            raise RenderExecutorAPIError(response.status_code, response.text)

        data = response.json()
        errors = data.get("errors") or []
        percent = max(0, min(100, round(float(data.get("progress", 0)) * 100)))

        if errors:
            return ChunkCheck(status="failed", percent=percent, error=", ".join(map(str, errors)))
        if data.get("done"):
            output = data.get("output_location")
            if not output:
                return ChunkCheck(
                    status="failed",
                    percent=percent,
                    error="Render completed but no output file generated",
                )
            return ChunkCheck(status="complete", percent=100, output_location=output)
        return ChunkCheck(status="in_progress", percent=percent)


def create_render_executor(base_url: Optional[str] = None) -> RenderExecutor:
    """Create a RenderExecutor instance using application settings."""
    from render_worker.config import get_settings

    settings = get_settings()
    return RenderExecutor(
        base_url=base_url or settings.render_executor_url,
        api_key=settings.render_executor_api_key,
        dispatch_max_attempts=settings.dispatch_max_attempts,
        dispatch_base_delay=settings.dispatch_base_delay_seconds,
        dispatch_max_delay=settings.dispatch_max_delay_seconds,
    )
