"""Job poller and state machine driver."""

import logging
from typing import Optional

from render_worker.models.job import (
    GenerationStage,
    Job,
    JobStatus,
    RenderStage,
    project_render_status,
)
from render_worker.models.render import ChunkRenderState, ChunkResult, RenderStatus, utcnow
from render_worker.services.assets import AssetService
from render_worker.services.chunked_render import ChunkedRenderService, build_render_spec
from render_worker.services.job_store import JobStore
from render_worker.services.quality import QualityService
from render_worker.utils.errors import (
    FinalizeError,
    RenderConfigError,
    RenderExecutorError,
    RenderFailed,
    RenderWorkerError,
)

logger = logging.getLogger(__name__)


class JobPipeline:
    """
    Drives claimed jobs through generation and rendering.

    Every tick is stateless with respect to this object: the conditional
    claim in the job store is the only thing that keeps two workers from
    processing the same job.
    """

    def __init__(
        self,
        store: JobStore,
        assets: AssetService,
        quality: QualityService,
        renderer: ChunkedRenderService,
        default_fps: int = 30,
        max_chunk_duration: float = 120.0,
        worker_id: str = "worker",
    ) -> None:
        self.store = store
        self.assets = assets
        self.quality = quality
        self.renderer = renderer
        self.default_fps = default_fps
        self.max_chunk_duration = max_chunk_duration
        self.worker_id = worker_id

    async def tick(self) -> Optional[Job]:
        """
        Claim and drive at most one job.

        Render work takes priority over generation work.

        Returns:
            The job that was driven, reloaded from the store, or None
        """
        job = await self.store.claim_job(JobStatus.RENDER_QUEUED, JobStatus.LAMBDA_PENDING)
        if job is not None:
            logger.info(f"[{self.worker_id}] Rendering job {job.id}")
            await self.run_render(job)
            return await self.store.get_job(job.id)

        job = await self.store.claim_job(JobStatus.QUEUED, JobStatus.GENERATING)
        if job is not None:
            logger.info(f"[{self.worker_id}] Generating job {job.id}")
            await self.run_generation(job)
            return await self.store.get_job(job.id)

        return None

    # ==================== GENERATION ====================

    async def run_generation(self, job: Job) -> None:
        """
        Generate assets for every scene, then run scene analysis.

        Progress is persisted after each scene, so a crash loses at most the
        scene in flight; scenes that already have assets are not regenerated.
        """
        try:
            stage = job.progress.generation
            if stage is None:
                stage = GenerationStage()
                job.progress.stage = stage
            stage.total_scenes = len(job.scenes)

            for index, scene in enumerate(job.scenes):
                if scene.has_assets:
                    continue

                stage.current_scene = index
                try:
                    job.scenes[index] = await self.assets.generate_scene_assets(job, scene)
                except Exception as e:
                    logger.warning(f"Asset generation failed for scene {index} of job {job.id}: {e}")
                    job.progress.record_failure("asset_generation", f"scene {index}: {e}")

                stage.completed_scenes = sum(1 for s in job.scenes if s.has_assets)
                await self._save_progress(job)

            stage.current_scene = None
            await self._analyze_scenes(job)

            job.status = JobStatus.READY
            await self.store.save_job(job)
            logger.info(
                f"Job {job.id} assets ready "
                f"({stage.completed_scenes}/{stage.total_scenes} scenes)"
            )

        except Exception as e:
            await self.fail_job(job, "Asset generation failed", e)

    async def _analyze_scenes(self, job: Job) -> None:
        # Best effort: a failed analysis leaves scene.analysis unset.
        if not self.quality.is_available():
            logger.debug(f"Quality service not configured; skipping analysis for {job.id}")
            return

        for index, scene in enumerate(job.scenes):
            asset_ref = scene.asset_ref
            if asset_ref is None:
                continue
            try:
                analysis = await self.quality.analyze_scene(asset_ref, scene, index)
            except Exception as e:
                logger.warning(f"Scene analysis failed for scene {index} of job {job.id}: {e}")
                job.progress.record_failure("scene_analysis", f"scene {index}: {e}")
            else:
                job.scenes[index] = scene.model_copy(update={"analysis": analysis})
            # Keeps updated_at inside the generating stall window.
            await self._save_progress(job)

    async def _save_progress(self, job: Job) -> None:
        await self.store.update_job(
            job.id,
            {
                "scenes": [s.model_dump(mode="json") for s in job.scenes],
                "progress": job.progress.model_dump(mode="json"),
            },
        )

    # ==================== RENDERING ====================

    async def run_render(
        self, job: Job, active_chunk: Optional[ChunkRenderState] = None
    ) -> None:
        """
        Render a claimed or recovered job to completion.

        A chunk failure returns the job to render_queued so the next attempt
        dispatches from a clean state; configuration and assembly failures
        are fatal. A chunk still recorded as in flight is queried before it
        is dispatched again.

        Args:
            job: Job in lambda_pending or rendering
            active_chunk: Chunk left in flight by an earlier process
        """
        try:
            spec = build_render_spec(job, self.default_fps, self.max_chunk_duration)

            stage = job.progress.render
            if stage is None or stage.total_chunks != spec.total_chunks:
                if stage is not None:
                    logger.warning(
                        f"Job {job.id} chunk layout changed "
                        f"({stage.total_chunks} -> {spec.total_chunks}); starting over"
                    )
                stage = RenderStage(total_chunks=spec.total_chunks)
                job.progress.stage = stage
                active_chunk = None
            if active_chunk is None:
                active_chunk = await self._reconcile_active_chunk(job, stage)
            job.progress.render_status = project_render_status(
                stage, "preparing", f"Rendering {spec.total_chunks} chunk(s)"
            )
            await self._save_progress(job)

            async def on_progress(status: RenderStatus) -> None:
                job.progress.render_status = status
                await self.store.update_job(
                    job.id, {"progress": job.progress.model_dump(mode="json")}
                )

            async def on_chunk_dispatched(state: ChunkRenderState) -> None:
                stage.active_chunk = state
                await self.store.update_job(
                    job.id,
                    {
                        "status": JobStatus.RENDERING,
                        "external_render_id": state.external_render_id,
                        "external_storage_location": state.external_storage_location,
                        "progress": job.progress.model_dump(mode="json"),
                    },
                )

            async def on_chunk_complete(result: ChunkResult) -> None:
                stage.record_result(result)
                await self.store.update_job(
                    job.id,
                    {
                        "status": JobStatus.RENDERING,
                        "external_render_id": None,
                        "external_storage_location": None,
                        "progress": job.progress.model_dump(mode="json"),
                    },
                )

            if active_chunk is not None:
                await on_chunk_dispatched(active_chunk)

            output_location = await self.renderer.render_long_video(
                job.id,
                spec,
                on_progress=on_progress,
                on_chunk_dispatched=on_chunk_dispatched,
                on_chunk_complete=on_chunk_complete,
                completed_chunks=stage.chunk_results,
                active_chunk=active_chunk,
                started_at=stage.started_at,
            )
            await self.complete_job(job, output_location)

        except RenderFailed as e:
            await self.requeue_render(job, e)
        except (RenderConfigError, FinalizeError) as e:
            await self.fail_job(job, "Render failed", e)
        except Exception as e:
            await self.fail_job(job, "Unexpected render error", e)

    async def _reconcile_active_chunk(
        self, job: Job, stage: RenderStage
    ) -> Optional[ChunkRenderState]:
        """
        Query a chunk a stall reset left in flight before dispatching it again.

        Returns:
            The chunk to keep polling, or None if it must be dispatched
        """
        state = stage.active_chunk
        if state is None or state.chunk_index in stage.completed_indexes:
            stage.active_chunk = None
            return None

        try:
            check = await self.renderer.check_chunk(state)
        except RenderExecutorError as e:
            logger.warning(
                f"Job {job.id}: status of chunk {state.chunk_index} unavailable ({e}); "
                f"resuming poll of {state.external_render_id}"
            )
            return state

        logger.info(
            f"Job {job.id}: chunk {state.chunk_index} "
            f"({state.external_render_id}) is {check.status}"
        )
        if check.status == "in_progress":
            return state
        if check.status == "complete" and check.output_location:
            stage.record_result(
                ChunkResult(
                    chunk_index=state.chunk_index,
                    output_location=check.output_location,
                    success=True,
                    render_time_ms=int((utcnow() - state.started_at).total_seconds() * 1000),
                )
            )
            return None

        job.progress.record_failure(
            "render_executor",
            f"chunk {state.chunk_index} {check.status}: {check.error or ''}".strip(),
        )
        stage.active_chunk = None
        return None

    async def finalize_render(self, job: Job) -> None:
        """Assemble a job whose chunks are all rendered."""
        stage = job.progress.render
        try:
            if stage is None or not stage.is_fully_rendered:
                raise FinalizeError(f"Job {job.id} has chunks left to render")

            async def on_progress(status: RenderStatus) -> None:
                job.progress.render_status = status
                await self.store.update_job(
                    job.id, {"progress": job.progress.model_dump(mode="json")}
                )

            output_location = await self.renderer.finalize(job.id, stage, on_progress)
            await self.complete_job(job, output_location)
        except Exception as e:
            await self.fail_job(job, "Finalize failed", e)

    async def complete_job(self, job: Job, output_location: str) -> None:
        stage = job.progress.render
        if stage is not None:
            stage.active_chunk = None
            job.progress.render_status = project_render_status(
                stage, "complete", "Video rendering complete"
            )
        await self.store.update_job(
            job.id,
            {
                "status": JobStatus.COMPLETE,
                "output_location": output_location,
                "external_render_id": None,
                "external_storage_location": None,
                "error_message": None,
                "progress": job.progress.model_dump(mode="json"),
            },
        )
        logger.info(f"Job {job.id} complete: {output_location}")

    async def requeue_render(self, job: Job, error: RenderFailed) -> None:
        """Return a job to render_queued after a chunk failure."""
        stage = job.progress.render
        if stage is not None:
            stage.active_chunk = None
            job.progress.render_status = project_render_status(
                stage,
                "error",
                f"Chunk {error.chunk_index + 1} failed; re-queued",
                error=error.cause,
            )
        job.progress.record_failure("render_executor", str(error))
        try:
            await self.store.update_job(
                job.id,
                {
                    "status": JobStatus.RENDER_QUEUED,
                    "external_render_id": None,
                    "external_storage_location": None,
                    "progress": job.progress.model_dump(mode="json"),
                },
            )
        except RenderWorkerError as e:
            logger.error(f"Failed to re-queue job {job.id}: {e}")
            return
        logger.warning(f"Job {job.id} re-queued for render: {error}")

    async def fail_job(self, job: Job, message: str, error: Exception) -> None:
        """
        Move a job to the terminal error status.

        The failure is recorded, never raised: a store outage here is logged
        and left to the stall detector.
        """
        detail = f"{message}: {type(error).__name__}: {error}"
        logger.error(f"Job {job.id} failed. {detail}")

        job.progress.errors.append(detail)
        stage = job.progress.render
        if stage is not None:
            stage.active_chunk = None
            job.progress.render_status = project_render_status(
                stage, "error", message, error=str(error)
            )
        try:
            await self.store.update_job(
                job.id,
                {
                    "status": JobStatus.ERROR,
                    "error_message": detail,
                    "external_render_id": None,
                    "external_storage_location": None,
                    "progress": job.progress.model_dump(mode="json"),
                },
            )
        except RenderWorkerError as e:
            logger.error(f"Failed to save error status for job {job.id}: {e}")


def create_job_pipeline(store: Optional[JobStore] = None) -> JobPipeline:
    """Create a JobPipeline wired to the configured collaborators."""
    from render_worker.config import get_settings
    from render_worker.services.assembler import create_chunk_assembler
    from render_worker.services.assets import create_asset_service
    from render_worker.services.chunked_render import create_chunked_render_service
    from render_worker.services.job_store import create_job_store
    from render_worker.services.quality import create_quality_service

    settings = get_settings()
    store = store or create_job_store()
    return JobPipeline(
        store=store,
        assets=create_asset_service(),
        quality=create_quality_service(),
        renderer=create_chunked_render_service(
            assembler=create_chunk_assembler(store.supabase),
        ),
        default_fps=settings.default_fps,
        max_chunk_duration=settings.max_chunk_duration_seconds,
        worker_id=settings.worker_id,
    )
