"""Long-running worker process: recovery, stall detection and the poll loop."""

import asyncio
import logging
import signal
from typing import Optional

from render_worker.services.pipeline import JobPipeline
from render_worker.services.recovery import StartupRecovery
from render_worker.services.stall_detector import StallDetector
from render_worker.utils.errors import RenderWorkerError

logger = logging.getLogger(__name__)


class Worker:
    """
    Runs one worker process.

    Startup order is fixed: startup recovery runs to completion first, then
    the stall detector starts, and only then does the poller claim new
    work. A job left behind by a crash is older than the stall threshold,
    so sweeping before recovery would re-queue it without its in-flight
    chunk ever being queried. Stopping cancels in-flight work without
    touching the persisted chunk state, so the next start resumes it.
    """

    def __init__(
        self,
        pipeline: JobPipeline,
        recovery: StartupRecovery,
        stall_detector: StallDetector,
        poll_interval: float = 5.0,
        worker_id: str = "worker",
    ) -> None:
        self.pipeline = pipeline
        self.recovery = recovery
        self.stall_detector = stall_detector
        self.poll_interval = poll_interval
        self.worker_id = worker_id
        self.stop_event = asyncio.Event()
        self._main_task: Optional[asyncio.Task] = None
        self._detector_task: Optional[asyncio.Task] = None

    def stop(self) -> None:
        """Request shutdown; the current job is cancelled where it stands."""
        if self.stop_event.is_set():
            return
        logger.info(f"[{self.worker_id}] Shutdown requested")
        self.stop_event.set()
        if self._main_task is not None and not self._main_task.done():
            self._main_task.cancel()

    def install_signal_handlers(self) -> list[signal.Signals]:
        """Route SIGINT and SIGTERM to stop(); returns the signals installed."""
        loop = asyncio.get_running_loop()
        installed = []
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, self.stop)
            except (NotImplementedError, RuntimeError):
                logger.debug(f"Signal handlers not supported here; {sig.name} ignored")
                continue
            installed.append(sig)
        return installed

    async def poll_once(self) -> bool:
        """
        Run one poller tick.

        Returns:
            True if a job was driven
        """
        try:
            job = await self.pipeline.tick()
        except RenderWorkerError as e:
            logger.error(f"[{self.worker_id}] Poll failed: {e}")
            return False
        if job is not None:
            logger.info(f"[{self.worker_id}] Job {job.id} now {job.status.value}")
        return job is not None

    async def _poll_loop(self) -> None:
        while not self.stop_event.is_set():
            worked = await self.poll_once()
            if worked:
                continue
            try:
                await asyncio.wait_for(self.stop_event.wait(), timeout=self.poll_interval)
            except asyncio.TimeoutError:
                pass

    async def _main(self) -> None:
        summary = await self.recovery.recover()
        if summary.total:
            logger.info(
                f"[{self.worker_id}] Recovery: {len(summary.resumed)} resumed, "
                f"{len(summary.finalized)} finalized, {len(summary.requeued)} re-queued, "
                f"{len(summary.failed)} failed"
            )
        self._detector_task = asyncio.create_task(self.stall_detector.run(self.stop_event))
        await self._poll_loop()

    async def run(self) -> None:
        """Run until stop() is called or a signal arrives."""
        logger.info(f"[{self.worker_id}] Worker starting (poll every {self.poll_interval}s)")
        installed = self.install_signal_handlers()

        self._main_task = asyncio.create_task(self._main())
        try:
            await self._main_task
        except asyncio.CancelledError:
            logger.info(f"[{self.worker_id}] In-flight work cancelled; chunk state left for resume")
        finally:
            self.stop_event.set()
            if self._detector_task is not None:
                await self._detector_task
            loop = asyncio.get_running_loop()
            for sig in installed:
                loop.remove_signal_handler(sig)
            logger.info(f"[{self.worker_id}] Worker stopped")


def create_worker() -> Worker:
    """Create a Worker wired to the configured collaborators."""
    from render_worker.config import get_settings
    from render_worker.services.job_store import create_job_store
    from render_worker.services.pipeline import create_job_pipeline
    from render_worker.services.recovery import create_startup_recovery
    from render_worker.services.stall_detector import create_stall_detector

    settings = get_settings()
    store = create_job_store()
    pipeline = create_job_pipeline(store)
    return Worker(
        pipeline=pipeline,
        recovery=create_startup_recovery(store, pipeline),
        stall_detector=create_stall_detector(store),
        poll_interval=settings.poll_interval_seconds,
        worker_id=settings.worker_id,
    )
