"""Job store backed by a Supabase table."""

import logging
from datetime import datetime
from typing import Any, Iterable, List, Optional

from render_worker.models.job import Job, JobStatus
from render_worker.models.render import utcnow
from render_worker.utils.errors import JobStoreError

logger = logging.getLogger(__name__)


def _status_value(status: Any) -> str:
    return status.value if isinstance(status, JobStatus) else str(status)


class JobStore:
    """
    Persistence for job records.

    Mutual exclusion between workers rests entirely on conditional updates:
    a claim or status transition filters on the status it expects, so only
    one writer can move a row out of a given status.
    """

    def __init__(self, supabase_client: Any, table_name: str = "render_jobs") -> None:
        """
        Initialize the JobStore.

        Args:
            supabase_client: Supabase client instance
            table_name: Name of the job table
        """
        self.supabase = supabase_client
        self.table_name = table_name

    def _table(self) -> Any:
        return self.supabase.table(self.table_name)

    async def insert_job(self, job: Job) -> Job:
        """
        Insert a new job row.

        Raises:
            JobStoreError: If the insert fails
        """
        try:
            result = self._table().insert(job.to_row()).execute()
        except Exception as e:
            raise JobStoreError(f"Failed to insert job {job.id}: {e}")

        if not result.data:
            raise JobStoreError(f"Insert returned no row for job {job.id}")
        return Job.from_row(result.data[0])

    async def get_job(self, job_id: str) -> Optional[Job]:
        """
        Retrieve a job by ID.

        Returns:
            Job if found, None otherwise

        Raises:
            JobStoreError: If the query fails
        """
        try:
            result = self._table().select("*").eq("id", job_id).limit(1).execute()
        except Exception as e:
            raise JobStoreError(f"Failed to get job {job_id}: {e}")

        if not result.data:
            return None
        return Job.from_row(result.data[0])

    async def claim_job(
        self,
        status: JobStatus,
        to_status: JobStatus,
        older_than: Optional[datetime] = None,
    ) -> Optional[Job]:
        """
        Atomically claim the oldest job in a status.

        The oldest candidate is read first, then moved with an update that
        still requires the original status. If another worker advanced the
        row in between, the update matches nothing and None is returned.

        Args:
            status: Status to claim from
            to_status: Status the claimed job moves to
            older_than: Only consider rows last updated before this time

        Returns:
            The claimed job with its new status, or None

        Raises:
            JobStoreError: If the query fails
        """
        try:
            query = self._table().select("*").eq("status", _status_value(status))
            if older_than is not None:
                query = query.lt("updated_at", older_than.isoformat())
            candidates = query.order("created_at").limit(1).execute()

            if not candidates.data:
                return None

            job_id = candidates.data[0]["id"]
            claimed = (
                self._table()
                .update(
                    {
                        "status": _status_value(to_status),
                        "updated_at": utcnow().isoformat(),
                    }
                )
                .eq("id", job_id)
                .eq("status", _status_value(status))
                .execute()
            )
        except Exception as e:
            raise JobStoreError(f"Failed to claim {_status_value(status)} job: {e}")

        if not claimed.data:
            logger.debug(f"Job {job_id} was claimed by another worker")
            return None

        logger.info(
            f"Claimed job {job_id}: {_status_value(status)} -> {_status_value(to_status)}"
        )
        return Job.from_row(claimed.data[0])

    async def update_job(self, job_id: str, patch: dict[str, Any]) -> None:
        """
        Apply a patch to a job; updated_at is always rewritten.

        Raises:
            JobStoreError: If the update fails
        """
        data = {key: _status_value(v) if isinstance(v, JobStatus) else v for key, v in patch.items()}
        data["updated_at"] = utcnow().isoformat()
        try:
            self._table().update(data).eq("id", job_id).execute()
        except Exception as e:
            raise JobStoreError(f"Failed to update job {job_id}: {e}")

    async def save_job(self, job: Job) -> None:
        """Persist the mutable fields of a job in one write."""
        row = job.to_row()
        for key in ("id", "owner_id", "created_at", "updated_at"):
            row.pop(key, None)
        await self.update_job(job.id, row)

    async def transition(
        self,
        job_id: str,
        from_statuses: Iterable[JobStatus],
        to_status: JobStatus,
        patch: Optional[dict[str, Any]] = None,
        updated_before: Optional[datetime] = None,
    ) -> bool:
        """
        Conditionally move a job to a new status.

        Args:
            job_id: Job to move
            from_statuses: Statuses the row must currently be in
            to_status: Target status
            patch: Extra columns to write alongside the status
            updated_before: Only move the row if updated_at is older

        Returns:
            True if the row was moved, False if the condition did not hold

        Raises:
            JobStoreError: If the update fails
        """
        data = dict(patch or {})
        data["status"] = _status_value(to_status)
        data["updated_at"] = utcnow().isoformat()
        try:
            query = (
                self._table()
                .update(data)
                .eq("id", job_id)
                .in_("status", [_status_value(s) for s in from_statuses])
            )
            if updated_before is not None:
                query = query.lt("updated_at", updated_before.isoformat())
            result = query.execute()
        except Exception as e:
            raise JobStoreError(f"Failed to transition job {job_id}: {e}")

        return bool(result.data)

    async def scan_by_status(self, statuses: Iterable[JobStatus]) -> List[Job]:
        """
        List jobs in any of the given statuses, oldest first.

        Raises:
            JobStoreError: If the query fails
        """
        try:
            result = (
                self._table()
                .select("*")
                .in_("status", [_status_value(s) for s in statuses])
                .order("created_at")
                .execute()
            )
        except Exception as e:
            raise JobStoreError(f"Failed to scan jobs: {e}")

        return [Job.from_row(row) for row in result.data or []]

    async def find_stalled(
        self, statuses: Iterable[JobStatus], older_than: datetime
    ) -> List[Job]:
        """
        List jobs in the given statuses whose updated_at is before a cutoff.

        Raises:
            JobStoreError: If the query fails
        """
        try:
            result = (
                self._table()
                .select("*")
                .in_("status", [_status_value(s) for s in statuses])
                .lt("updated_at", older_than.isoformat())
                .execute()
            )
        except Exception as e:
            raise JobStoreError(f"Failed to find stalled jobs: {e}")

        return [Job.from_row(row) for row in result.data or []]


def create_job_store(supabase_client: Optional[Any] = None) -> JobStore:
    """
    Create a JobStore using application settings.

    Args:
        supabase_client: Optional pre-built Supabase client

    Returns:
        Configured JobStore instance
    """
    from render_worker.config import get_settings

    settings = get_settings()
    if supabase_client is None:
        from supabase import create_client

        supabase_client = create_client(settings.supabase_url, settings.supabase_key)
    return JobStore(supabase_client, table_name=settings.jobs_table)
