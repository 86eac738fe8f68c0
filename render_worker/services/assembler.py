"""Assembles rendered chunks into the final artifact."""

import asyncio
import logging
from pathlib import Path
from typing import Any, Awaitable, Callable, Optional, Sequence
from uuid import uuid4

import httpx

from render_worker.models.render import ChunkResult
from render_worker.utils.errors import FinalizeError

logger = logging.getLogger(__name__)

StepCallback = Callable[[str], Awaitable[None]]


class ChunkAssembler:
    """Downloads chunk outputs, concatenates them with ffmpeg and uploads the result."""

    def __init__(
        self,
        supabase_client: Optional[Any],
        bucket: str = "renders",
        work_dir: str = "/tmp/render-worker",
        ffmpeg_binary: str = "ffmpeg",
    ) -> None:
        self.supabase = supabase_client
        self.bucket = bucket
        self.work_dir = Path(work_dir)
        self.ffmpeg_binary = ffmpeg_binary

    async def _download(self, client: httpx.AsyncClient, url: str, dest: Path) -> None:
        response = await client.get(url, timeout=300.0, follow_redirects=True)
        if response.status_code != 200:
            raise FinalizeError(f"Download of {url} failed with HTTP {response.status_code}")
        dest.write_bytes(response.content)

    async def _concatenate(self, chunk_paths: Sequence[Path], output_path: Path) -> None:
        list_file = output_path.with_suffix(".txt")
        list_file.write_text("\n".join(f"file '{p}'" for p in chunk_paths))
        try:
            process = await asyncio.create_subprocess_exec(
                self.ffmpeg_binary,
                "-y",
                "-f",
                "concat",
                "-safe",
                "0",
                "-i",
                str(list_file),
                "-c",
                "copy",
                str(output_path),
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.PIPE,
            )
            _, stderr = await process.communicate()
            if process.returncode != 0:
                raise FinalizeError(
                    f"ffmpeg concat exited with {process.returncode}: "
                    f"{stderr.decode(errors='replace')[-500:]}"
                )
        finally:
            list_file.unlink(missing_ok=True)

    def _upload(self, job_id: str, output_path: Path) -> str:
        if not self.supabase:
            raise FinalizeError("Supabase client not configured")
        # Storage refuses to overwrite; every assembly gets its own key.
        storage_path = f"renders/{job_id}/final_{job_id}_{uuid4().hex[:12]}.mp4"
        self.supabase.storage.from_(self.bucket).upload(
            storage_path,
            output_path.read_bytes(),
            {"content-type": "video/mp4"},
        )
        return self.supabase.storage.from_(self.bucket).get_public_url(storage_path)

    async def assemble(
        self,
        job_id: str,
        chunk_results: Sequence[ChunkResult],
        on_step: Optional[StepCallback] = None,
    ) -> str:
        """
        Build the final video from completed chunks.

        A single chunk is returned as-is without re-encoding or upload.

        Args:
            job_id: Job the chunks belong to
            chunk_results: Completed chunks, in any order
            on_step: Called with a message before each download, the concat
                and the upload

        Returns:
            Location of the final artifact

        Raises:
            FinalizeError: If any step fails
        """
        ordered = sorted(chunk_results, key=lambda r: r.chunk_index)
        if not ordered:
            raise FinalizeError(f"No chunks to assemble for job {job_id}")
        if len(ordered) == 1:
            return ordered[0].output_location

        async def step(message: str) -> None:
            logger.debug(f"Job {job_id}: {message}")
            if on_step is not None:
                await on_step(message)

        job_dir = self.work_dir / f"{job_id}_{uuid4().hex[:8]}"
        job_dir.mkdir(parents=True, exist_ok=True)
        temp_files: list[Path] = []

        try:
            chunk_paths: list[Path] = []
            async with httpx.AsyncClient() as client:
                for result in ordered:
                    await step(f"Downloading chunk {result.chunk_index + 1} of {len(ordered)}...")
                    dest = job_dir / f"chunk_{result.chunk_index}.mp4"
                    temp_files.append(dest)
                    await self._download(client, result.output_location, dest)
                    chunk_paths.append(dest)

            output_path = job_dir / f"final_{job_id}.mp4"
            temp_files.append(output_path)
            await step(f"Joining {len(ordered)} chunks...")
            await self._concatenate(chunk_paths, output_path)

            await step("Uploading final video...")
            url = self._upload(job_id, output_path)
            logger.info(f"Assembled {len(ordered)} chunks for job {job_id}: {url}")
            return url

        except FinalizeError:
            raise
        except Exception as e:
            raise FinalizeError(f"Failed to assemble job {job_id}: {e}", cause=e)
        finally:
            for path in temp_files:
                try:
                    path.unlink(missing_ok=True)
                except OSError as e:
                    logger.warning(f"Failed to delete temp file {path}: {e}")
            try:
                job_dir.rmdir()
            except OSError:
                logger.debug(f"Leaving non-empty work dir {job_dir}")


def create_chunk_assembler(supabase_client: Optional[Any] = None) -> ChunkAssembler:
    """Create a ChunkAssembler using application settings."""
    from render_worker.config import get_settings

    settings = get_settings()
    return ChunkAssembler(
        supabase_client=supabase_client,
        bucket=settings.output_bucket,
        work_dir=settings.work_dir,
    )
