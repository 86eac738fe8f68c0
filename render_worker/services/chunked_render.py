"""Chunked render orchestration against the remote render executor."""

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Awaitable, Callable, Iterable, Optional, Sequence

from render_worker.models.job import Job, RenderStage, project_render_status
from render_worker.models.render import (
    ChunkCheck,
    ChunkRenderState,
    ChunkResult,
    ChunkSpec,
    RenderPhase,
    RenderSpec,
    RenderStatus,
    utcnow,
)
from render_worker.models.scene import Scene
from render_worker.services.assembler import ChunkAssembler
from render_worker.services.render_executor import RenderExecutor
from render_worker.utils.errors import RenderConfigError, RenderExecutorError, RenderFailed

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[RenderStatus], Awaitable[None]]
DispatchCallback = Callable[[ChunkRenderState], Awaitable[None]]
CompleteCallback = Callable[[ChunkResult], Awaitable[None]]


def calculate_chunks(
    scenes: Sequence[Scene], fps: int, max_chunk_duration: float
) -> list[ChunkSpec]:
    """
    Split scenes into chunks of at most max_chunk_duration seconds.

    Chunks break on scene boundaries; a single scene longer than the bound
    becomes a chunk of its own.

    Args:
        scenes: Scenes in render order
        fps: Frames per second of the composition
        max_chunk_duration: Upper bound on a chunk's duration in seconds

    Returns:
        Chunks in render order, indexed from 0
    """
    chunks: list[ChunkSpec] = []
    current: list[dict] = []
    chunk_duration = 0.0
    chunk_frames = 0
    chunk_start_frame = 0
    chunk_start_time = 0.0
    global_frame = 0
    global_time = 0.0

    def close_chunk() -> None:
        chunks.append(
            ChunkSpec(
                chunk_index=len(chunks),
                start_frame=chunk_start_frame,
                end_frame=global_frame - 1,
                start_seconds=chunk_start_time,
                end_seconds=global_time,
                scenes=list(current),
            )
        )

    for scene in scenes:
        duration = scene.duration_seconds
        frames = round(duration * fps)

        if current and chunk_duration + duration > max_chunk_duration:
            close_chunk()
            current = []
            chunk_duration = 0.0
            chunk_frames = 0
            chunk_start_frame = global_frame
            chunk_start_time = global_time

        scene_data = scene.model_dump(mode="json")
        scene_data["chunkStartFrame"] = chunk_frames
        current.append(scene_data)
        chunk_duration += duration
        chunk_frames += frames
        global_frame += frames
        global_time += duration

    if current:
        close_chunk()

    logger.info(f"Calculated {len(chunks)} chunks from {len(scenes)} scenes")
    return chunks


def build_render_spec(job: Job, default_fps: int, max_chunk_duration: float) -> RenderSpec:
    """
    Build the render spec for a job.

    Raises:
        RenderConfigError: If the job has no render config or nothing to render
    """
    if job.render_config is None:
        raise RenderConfigError(f"Job {job.id} has no render configuration")
    if not job.scenes:
        raise RenderConfigError(f"Job {job.id} has no scenes to render")

    fps = job.render_config.fps or default_fps
    return RenderSpec(
        composition_id=job.render_config.composition_id,
        fps=fps,
        input_props=job.render_config.input_props,
        chunks=calculate_chunks(job.scenes, fps, max_chunk_duration),
    )


class ChunkedRenderService:
    """Renders a job chunk by chunk so a restart can resume where it stopped."""

    def __init__(
        self,
        executor: RenderExecutor,
        assembler: ChunkAssembler,
        poll_interval: float = 2.0,
        poll_timeout: float = 1800.0,
        max_poll_errors: int = 5,
    ) -> None:
        """
        Initialize the ChunkedRenderService.

        Args:
            executor: Remote render executor client
            assembler: Joins completed chunks into the final artifact
            poll_interval: Seconds between status checks
            poll_timeout: Seconds a chunk may render before it is abandoned
            max_poll_errors: Consecutive failed status checks tolerated
        """
        self.executor = executor
        self.assembler = assembler
        self.poll_interval = poll_interval
        self.poll_timeout = poll_timeout
        self.max_poll_errors = max_poll_errors

    async def check_chunk(self, state: ChunkRenderState) -> ChunkCheck:
        """Query the executor once for an in-flight chunk."""
        return await self.executor.check_status(
            state.external_render_id, state.external_storage_location
        )

    async def poll_chunk(
        self,
        state: ChunkRenderState,
        on_percent: Optional[Callable[[int], Awaitable[None]]] = None,
    ) -> str:
        """
        Poll an in-flight chunk until it resolves.

        Args:
            state: The dispatched chunk
            on_percent: Called with the executor's percent after each check

        Returns:
            Output location of the rendered chunk

        Raises:
            RenderFailed: If the chunk failed, vanished, timed out, or its
                status could not be read too many times in a row
        """
        deadline = state.started_at + timedelta(seconds=self.poll_timeout)
        consecutive_errors = 0

        while True:
            try:
                check = await self.check_chunk(state)
            except RenderExecutorError as e:
                consecutive_errors += 1
                logger.warning(
                    f"Status check {consecutive_errors}/{self.max_poll_errors} for "
                    f"chunk {state.chunk_index} failed: {e}"
                )
                if consecutive_errors >= self.max_poll_errors:
                    raise RenderFailed(state.chunk_index, f"status unavailable: {e}")
            else:
                consecutive_errors = 0
                if check.status == "complete" and check.output_location:
                    return check.output_location
                if check.status in ("failed", "not_found"):
                    raise RenderFailed(state.chunk_index, check.error or check.status)
                if on_percent is not None:
                    await on_percent(check.percent)

            if utcnow() >= deadline:
                raise RenderFailed(
                    state.chunk_index, f"no result after {self.poll_timeout:.0f}s"
                )
            await asyncio.sleep(self.poll_interval)

    async def render_long_video(
        self,
        job_id: str,
        render_spec: RenderSpec,
        on_progress: Optional[ProgressCallback] = None,
        on_chunk_dispatched: Optional[DispatchCallback] = None,
        on_chunk_complete: Optional[CompleteCallback] = None,
        completed_chunks: Iterable[ChunkResult] = (),
        active_chunk: Optional[ChunkRenderState] = None,
        started_at: Optional[datetime] = None,
    ) -> str:
        """
        Render every chunk of a job and assemble the final video.

        Chunks that already have a result are skipped. If active_chunk is
        given, that chunk is polled instead of being dispatched again.

        Args:
            job_id: Job being rendered
            render_spec: Composition and chunk layout
            on_progress: Receives RenderStatus snapshots
            on_chunk_dispatched: Receives the state of each newly dispatched chunk
            on_chunk_complete: Receives each completed chunk's result
            completed_chunks: Results recorded by earlier attempts
            active_chunk: Chunk still rendering from an earlier attempt
            started_at: When the render first started

        Returns:
            Location of the final artifact

        Raises:
            RenderFailed: If a chunk could not be completed
            FinalizeError: If the chunks could not be assembled
        """
        stage = RenderStage(
            total_chunks=render_spec.total_chunks,
            chunk_results=list(completed_chunks),
            active_chunk=active_chunk,
            started_at=started_at or utcnow(),
        )

        async def emit(
            phase: RenderPhase,
            message: str,
            chunk_percent: int = 0,
            error: Optional[str] = None,
        ) -> None:
            status = project_render_status(stage, phase, message, chunk_percent, error)
            logger.debug(f"Job {job_id} render {status.phase} {status.percent}%: {message}")
            if on_progress is not None:
                await on_progress(status)

        total = render_spec.total_chunks
        skipped = stage.completed_indexes
        if skipped:
            logger.info(f"Job {job_id}: resuming with {len(skipped)}/{total} chunks already rendered")

        for chunk in render_spec.chunks:
            index = chunk.chunk_index
            if index in stage.completed_indexes:
                continue

            if stage.active_chunk and stage.active_chunk.chunk_index == index:
                state = stage.active_chunk
                logger.info(f"Job {job_id}: resuming poll of chunk {index} ({state.external_render_id})")
            else:
                try:
                    handle = await self.executor.dispatch(render_spec.chunk_payload(chunk))
                except RenderExecutorError as e:
                    stage.active_chunk = None
                    await emit("error", f"Chunk {index + 1}/{total} could not be dispatched", error=str(e))
                    raise RenderFailed(index, str(e))
                state = ChunkRenderState(
                    chunk_index=index,
                    external_render_id=handle.external_render_id,
                    external_storage_location=handle.external_storage_location,
                )
                stage.active_chunk = state
                if on_chunk_dispatched is not None:
                    await on_chunk_dispatched(state)

            await emit("rendering", f"Rendering chunk {index + 1} of {total}...")

            async def on_percent(percent: int, index: int = index) -> None:
                await emit("rendering", f"Rendering chunk {index + 1} of {total} ({percent}%)...", percent)

            try:
                output_location = await self.poll_chunk(state, on_percent)
            except RenderFailed as e:
                stage.active_chunk = None
                await emit("error", f"Chunk {index + 1}/{total} failed", error=e.cause)
                raise

            result = ChunkResult(
                chunk_index=index,
                output_location=output_location,
                success=True,
                render_time_ms=int((utcnow() - state.started_at).total_seconds() * 1000),
            )
            stage.record_result(result)
            if on_chunk_complete is not None:
                await on_chunk_complete(result)
            logger.info(f"Job {job_id}: chunk {index + 1}/{total} complete")

        return await self.finalize(job_id, stage, on_progress)

    async def finalize(
        self,
        job_id: str,
        stage: RenderStage,
        on_progress: Optional[ProgressCallback] = None,
    ) -> str:
        """
        Assemble a fully rendered stage into the final artifact.

        Every assembly step is reported as a finalizing status, so progress
        keeps being written while chunks download and join.

        Raises:
            FinalizeError: If assembly or upload fails
        """

        async def on_step(message: str) -> None:
            if on_progress is not None:
                await on_progress(project_render_status(stage, "finalizing", message))

        await on_step("Assembling final video...")

        results = [r for r in stage.chunk_results if r.chunk_index < stage.total_chunks]
        output_location = await self.assembler.assemble(job_id, results, on_step=on_step)

        if on_progress is not None:
            await on_progress(project_render_status(stage, "complete", "Video rendering complete"))
        return output_location


def create_chunked_render_service(
    executor: Optional[RenderExecutor] = None,
    assembler: Optional[ChunkAssembler] = None,
) -> ChunkedRenderService:
    """Create a ChunkedRenderService using application settings."""
    from render_worker.config import get_settings
    from render_worker.services.assembler import create_chunk_assembler
    from render_worker.services.render_executor import create_render_executor

    settings = get_settings()
    return ChunkedRenderService(
        executor=executor or create_render_executor(),
        assembler=assembler or create_chunk_assembler(),
        poll_interval=settings.render_poll_interval_seconds,
        poll_timeout=settings.chunk_poll_timeout_seconds,
        max_poll_errors=settings.max_consecutive_poll_errors,
    )
