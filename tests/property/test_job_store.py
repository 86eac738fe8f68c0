"""Property-based tests for the job store.

Feature: render-worker
Properties 1, 2: Exclusive Claims and Conditional Transitions
"""

import asyncio
from datetime import timedelta

import pytest
from hypothesis import HealthCheck, given, settings, strategies as st

from render_worker.models.job import Job, JobProgress, JobStatus
from render_worker.models.render import utcnow
from render_worker.services.job_store import JobStore
from render_worker.utils.errors import JobStoreError


def _job(job_id: str, status: JobStatus = JobStatus.QUEUED, age_seconds: float = 0) -> Job:
    stamp = utcnow() - timedelta(seconds=age_seconds)
    return Job(id=job_id, status=status, created_at=stamp, updated_at=stamp)


class TestProperty1ExclusiveClaims:
    """Property 1: Exclusive Claims.

    *For any* number of workers polling the same table, each queued job
    SHALL be claimed by exactly one worker.
    """

    @pytest.mark.asyncio
    async def test_claim_moves_oldest_job(self, job_store: JobStore) -> None:
        await job_store.insert_job(_job("newer", age_seconds=10))
        await job_store.insert_job(_job("older", age_seconds=60))

        claimed = await job_store.claim_job(JobStatus.QUEUED, JobStatus.GENERATING)

        assert claimed is not None
        assert claimed.id == "older"
        assert claimed.status == JobStatus.GENERATING
        stored = await job_store.get_job("older")
        assert stored.status == JobStatus.GENERATING

    @pytest.mark.asyncio
    async def test_claim_returns_none_when_nothing_queued(self, job_store: JobStore) -> None:
        await job_store.insert_job(_job("busy", status=JobStatus.RENDERING))

        assert await job_store.claim_job(JobStatus.QUEUED, JobStatus.GENERATING) is None

    @pytest.mark.asyncio
    async def test_stale_candidate_is_not_claimed_twice(self, mock_supabase, job_store: JobStore) -> None:
        """Two workers read the same candidate; only one conditional update lands."""
        await job_store.insert_job(_job("job-1"))

        def other_worker_wins(rows):
            rows["job-1"]["status"] = JobStatus.GENERATING.value

        mock_supabase.after_select.append(other_worker_wins)

        claimed = await job_store.claim_job(JobStatus.QUEUED, JobStatus.GENERATING)

        assert claimed is None
        assert mock_supabase.rows()["job-1"]["status"] == "generating"

    @settings(
        max_examples=50,
        deadline=None,
        suppress_health_check=[HealthCheck.function_scoped_fixture],
    )
    @given(
        num_jobs=st.integers(min_value=0, max_value=8),
        num_workers=st.integers(min_value=1, max_value=4),
    )
    def test_each_job_claimed_exactly_once(
        self, supabase_factory, num_jobs: int, num_workers: int
    ) -> None:
        """Workers sharing one table never claim the same job."""
        client = supabase_factory()
        stores = [JobStore(client) for _ in range(num_workers)]

        async def run_test() -> list[str]:
            for i in range(num_jobs):
                await stores[0].insert_job(_job(f"job-{i}", age_seconds=num_jobs - i))
            claimed: list[str] = []
            idle = 0
            turn = 0
            while idle < num_workers:
                job = await stores[turn % num_workers].claim_job(
                    JobStatus.QUEUED, JobStatus.GENERATING
                )
                turn += 1
                if job is None:
                    idle += 1
                else:
                    idle = 0
                    claimed.append(job.id)
            return claimed

        claimed = asyncio.run(run_test())

        assert sorted(claimed) == sorted(f"job-{i}" for i in range(num_jobs))
        assert len(claimed) == len(set(claimed))


class TestProperty2ConditionalTransitions:
    """Property 2: Conditional Transitions.

    *For any* transition, the row SHALL move only if it is still in one of
    the expected statuses, and updated_at SHALL advance on every write.
    """

    @pytest.mark.asyncio
    async def test_transition_requires_expected_status(self, job_store: JobStore) -> None:
        await job_store.insert_job(_job("job-1", status=JobStatus.READY))

        moved = await job_store.transition(
            "job-1", [JobStatus.QUEUED], JobStatus.GENERATING
        )
        assert moved is False
        assert (await job_store.get_job("job-1")).status == JobStatus.READY

        moved = await job_store.transition(
            "job-1", [JobStatus.READY], JobStatus.RENDER_QUEUED, patch={"review_override": True}
        )
        assert moved is True
        job = await job_store.get_job("job-1")
        assert job.status == JobStatus.RENDER_QUEUED
        assert job.review_override is True

    @pytest.mark.asyncio
    async def test_transition_respects_updated_before(self, job_store: JobStore) -> None:
        await job_store.insert_job(_job("job-1", status=JobStatus.RENDERING, age_seconds=30))

        moved = await job_store.transition(
            "job-1",
            [JobStatus.RENDERING],
            JobStatus.RENDER_QUEUED,
            updated_before=utcnow() - timedelta(seconds=60),
        )

        assert moved is False

    @pytest.mark.asyncio
    async def test_update_job_rewrites_updated_at(self, job_store: JobStore) -> None:
        await job_store.insert_job(_job("job-1", age_seconds=600))
        before = (await job_store.get_job("job-1")).updated_at

        await job_store.update_job("job-1", {"status": JobStatus.GENERATING})

        job = await job_store.get_job("job-1")
        assert job.status == JobStatus.GENERATING
        assert job.updated_at > before

    @pytest.mark.asyncio
    async def test_null_progress_column_loads_as_empty(self, mock_supabase, job_store: JobStore) -> None:
        row = _job("job-1").to_row()
        row["progress"] = None
        row["scenes"] = None
        mock_supabase.rows()["job-1"] = row

        job = await job_store.get_job("job-1")

        assert job.progress == JobProgress()
        assert job.scenes == []

    @pytest.mark.asyncio
    async def test_find_stalled_filters_on_status_and_age(self, job_store: JobStore) -> None:
        await job_store.insert_job(_job("old-gen", status=JobStatus.GENERATING, age_seconds=600))
        await job_store.insert_job(_job("new-gen", status=JobStatus.GENERATING, age_seconds=5))
        await job_store.insert_job(_job("old-ready", status=JobStatus.READY, age_seconds=600))

        stalled = await job_store.find_stalled(
            [JobStatus.GENERATING], utcnow() - timedelta(seconds=300)
        )

        assert [job.id for job in stalled] == ["old-gen"]

    @pytest.mark.asyncio
    async def test_store_failures_raise_job_store_error(self, mock_supabase, job_store: JobStore) -> None:
        mock_supabase.fail_next = ConnectionError("connection reset")

        with pytest.raises(JobStoreError, match="connection reset"):
            await job_store.get_job("job-1")
