"""Startup recovery of renders interrupted by a previous process."""

import logging

from pydantic import BaseModel, Field

from render_worker.models.job import RENDER_ACTIVE, Job, JobStatus
from render_worker.models.render import ChunkResult, utcnow
from render_worker.services.job_store import JobStore
from render_worker.services.pipeline import JobPipeline
from render_worker.utils.errors import RenderExecutorError, RenderWorkerError

logger = logging.getLogger(__name__)


class RecoverySummary(BaseModel):
    """What startup recovery did with each interrupted job."""

    finalized: list[str] = Field(default_factory=list)
    requeued: list[str] = Field(default_factory=list)
    resumed: list[str] = Field(default_factory=list)
    failed: list[str] = Field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.finalized) + len(self.requeued) + len(self.resumed) + len(self.failed)


class StartupRecovery:
    """
    Reconciles in-flight renders with the remote executor at startup.

    No chunk with a recorded result is rendered again, and every chunk that
    was in flight is queried at least once before anything else happens to
    its job.
    """

    def __init__(self, store: JobStore, pipeline: JobPipeline) -> None:
        self.store = store
        self.pipeline = pipeline

    async def recover(self) -> RecoverySummary:
        """
        Recover every job left in lambda_pending or rendering.

        Returns:
            RecoverySummary of the actions taken
        """
        summary = RecoverySummary()
        jobs = await self.store.scan_by_status(RENDER_ACTIVE)
        if jobs:
            logger.info(f"Recovering {len(jobs)} interrupted render(s)")

        for job in jobs:
            try:
                await self._recover_job(job, summary)
            except RenderWorkerError as e:
                logger.error(f"Recovery of job {job.id} failed: {e}")
                summary.failed.append(job.id)

        return summary

    async def _requeue(self, job: Job, summary: RecoverySummary, reason: str) -> None:
        stage = job.progress.render
        if stage is not None:
            stage.active_chunk = None
        moved = await self.store.transition(
            job.id,
            RENDER_ACTIVE,
            JobStatus.RENDER_QUEUED,
            patch={
                "external_render_id": None,
                "external_storage_location": None,
                "progress": job.progress.model_dump(mode="json"),
            },
        )
        if moved:
            logger.info(f"Re-queued job {job.id}: {reason}")
            summary.requeued.append(job.id)

    async def _recover_job(self, job: Job, summary: RecoverySummary) -> None:
        stage = job.progress.render
        active = stage.active_chunk if stage is not None else None

        if active is None:
            if stage is not None and stage.is_fully_rendered:
                logger.info(f"Job {job.id}: all {stage.total_chunks} chunks rendered, finalizing")
                await self.pipeline.finalize_render(job)
                summary.finalized.append(job.id)
            else:
                await self._requeue(job, summary, "no chunk in flight")
            return

        try:
            check = await self.pipeline.renderer.check_chunk(active)
        except RenderExecutorError as e:
            logger.warning(f"Job {job.id}: status of chunk {active.chunk_index} unavailable: {e}")
            job.progress.record_failure("render_executor", str(e))
            await self._requeue(job, summary, "in-flight chunk could not be queried")
            return

        logger.info(
            f"Job {job.id}: chunk {active.chunk_index} "
            f"({active.external_render_id}) is {check.status}"
        )

        if check.status in ("failed", "not_found"):
            job.progress.record_failure(
                "render_executor",
                f"chunk {active.chunk_index} {check.status}: {check.error or ''}".strip(),
            )
            await self._requeue(job, summary, f"in-flight chunk {check.status}")
            return

        if check.status == "complete" and check.output_location:
            stage.record_result(
                ChunkResult(
                    chunk_index=active.chunk_index,
                    output_location=check.output_location,
                    success=True,
                    render_time_ms=int((utcnow() - active.started_at).total_seconds() * 1000),
                )
            )
            await self.store.update_job(
                job.id,
                {
                    "external_render_id": None,
                    "external_storage_location": None,
                    "progress": job.progress.model_dump(mode="json"),
                },
            )
            if stage.is_fully_rendered:
                await self.pipeline.finalize_render(job)
                summary.finalized.append(job.id)
                return
            active = None

        await self.pipeline.run_render(job, active_chunk=active)
        summary.resumed.append(job.id)


def create_startup_recovery(store: JobStore, pipeline: JobPipeline) -> StartupRecovery:
    """Create a StartupRecovery for the given store and pipeline."""
    return StartupRecovery(store, pipeline)
