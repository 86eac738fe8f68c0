"""Stall detector: returns abandoned jobs to a retryable status."""

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Optional

from render_worker.models.job import RENDER_ACTIVE, JobStatus
from render_worker.models.render import utcnow
from render_worker.services.job_store import JobStore
from render_worker.utils.errors import RenderWorkerError

logger = logging.getLogger(__name__)


class StallDetector:
    """
    Resets jobs whose updated_at has not moved within a threshold.

    Resets are conditional status writes and touch nothing else; a remote
    render abandoned this way is left to expire on the executor.
    """

    def __init__(
        self,
        store: JobStore,
        generating_threshold: float = 300.0,
        render_threshold: float = 180.0,
        interval: float = 60.0,
        worker_id: str = "worker",
    ) -> None:
        """
        Initialize the StallDetector.

        Args:
            store: Job store
            generating_threshold: Seconds before a generating job is re-queued
            render_threshold: Seconds before a rendering job is re-queued
            interval: Seconds between sweeps
            worker_id: Label used in log messages
        """
        self.store = store
        self.rules: list[tuple[tuple[JobStatus, ...], JobStatus, timedelta]] = [
            ((JobStatus.GENERATING,), JobStatus.QUEUED, timedelta(seconds=generating_threshold)),
            (RENDER_ACTIVE, JobStatus.RENDER_QUEUED, timedelta(seconds=render_threshold)),
        ]
        self.interval = interval
        self.worker_id = worker_id

    async def sweep(self, now: Optional[datetime] = None) -> list[str]:
        """
        Run one stall check.

        Args:
            now: Override for the current time

        Returns:
            IDs of the jobs that were reset
        """
        now = now or utcnow()
        reset: list[str] = []

        for statuses, target, threshold in self.rules:
            cutoff = now - threshold
            stalled = await self.store.find_stalled(statuses, cutoff)
            for job in stalled:
                moved = await self.store.transition(
                    job.id, statuses, target, updated_before=cutoff
                )
                if not moved:
                    continue
                reset.append(job.id)
                logger.warning(
                    f"[{self.worker_id}] Reset stalled job {job.id}: "
                    f"{job.status.value} -> {target.value} "
                    f"(last update {job.updated_at.isoformat()})"
                )

        return reset

    async def run(self, stop_event: asyncio.Event) -> None:
        """Sweep on a fixed timer until stop_event is set."""
        logger.info(f"[{self.worker_id}] Stall detector running every {self.interval}s")
        while not stop_event.is_set():
            try:
                await self.sweep()
            except RenderWorkerError as e:
                logger.error(f"[{self.worker_id}] Stall sweep failed: {e}")
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=self.interval)
            except asyncio.TimeoutError:
                pass


def create_stall_detector(store: JobStore) -> StallDetector:
    """Create a StallDetector using application settings."""
    from render_worker.config import get_settings

    settings = get_settings()
    return StallDetector(
        store,
        generating_threshold=settings.generating_stall_threshold_seconds,
        render_threshold=settings.render_stall_threshold_seconds,
        interval=settings.stall_check_interval_seconds,
        worker_id=settings.worker_id,
    )
