"""Pytest fixtures for render worker tests."""

import copy
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional

import pytest

from render_worker.models.job import Job, JobStatus
from render_worker.models.render import ChunkCheck, DispatchHandle, RenderConfig
from render_worker.models.scene import Scene, SceneAnalysis, SceneAssets
from render_worker.services.chunked_render import ChunkedRenderService
from render_worker.services.job_store import JobStore
from render_worker.services.pipeline import JobPipeline
from render_worker.utils.errors import AssetGenerationError, QualityEvaluationError


def _parse_ts(value: Any) -> datetime:
    if isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value).replace("Z", "+00:00"))


# ==================== Mock Supabase Client ====================


class MockSupabaseResponse:
    """Mock response from Supabase operations."""

    def __init__(self, data: Optional[List[Dict[str, Any]]] = None) -> None:
        self.data = data or []


class MockSupabaseTable:
    """Mock Supabase query builder over a shared in-memory table."""

    def __init__(self, rows: Dict[str, Dict[str, Any]], client: "MockSupabaseClient") -> None:
        self._rows = rows
        self._client = client
        self._filters: List[tuple[str, str, Any]] = []
        self._update_data: Optional[Dict[str, Any]] = None
        self._insert_data: Optional[Dict[str, Any]] = None
        self._order_by: Optional[str] = None
        self._limit_value: Optional[int] = None

    def select(self, columns: str = "*") -> "MockSupabaseTable":
        return self

    def insert(self, data: Dict[str, Any]) -> "MockSupabaseTable":
        self._insert_data = copy.deepcopy(data)
        return self

    def update(self, data: Dict[str, Any]) -> "MockSupabaseTable":
        self._update_data = copy.deepcopy(data)
        return self

    def eq(self, field: str, value: Any) -> "MockSupabaseTable":
        self._filters.append(("eq", field, value))
        return self

    def in_(self, field: str, values: List[Any]) -> "MockSupabaseTable":
        self._filters.append(("in", field, list(values)))
        return self

    def lt(self, field: str, value: Any) -> "MockSupabaseTable":
        self._filters.append(("lt", field, value))
        return self

    def order(self, field: str, desc: bool = False) -> "MockSupabaseTable":
        self._order_by = field
        return self

    def limit(self, count: int) -> "MockSupabaseTable":
        self._limit_value = count
        return self

    def _matches(self, record: Dict[str, Any]) -> bool:
        for op, field, value in self._filters:
            current = record.get(field)
            if op == "eq" and current != value:
                return False
            if op == "in" and current not in value:
                return False
            if op == "lt" and (current is None or not _parse_ts(current) < _parse_ts(value)):
                return False
        return True

    def execute(self) -> MockSupabaseResponse:
        self._client.execute_count += 1
        if self._client.fail_next is not None:
            error, self._client.fail_next = self._client.fail_next, None
            raise error

        if self._insert_data is not None:
            self._rows[self._insert_data["id"]] = self._insert_data
            return MockSupabaseResponse([copy.deepcopy(self._insert_data)])

        if self._update_data is not None:
            updated = []
            for record in self._rows.values():
                if self._matches(record):
                    record.update(copy.deepcopy(self._update_data))
                    updated.append(copy.deepcopy(record))
            self._client.updates.append(copy.deepcopy(self._update_data))
            return MockSupabaseResponse(updated)

        results = [copy.deepcopy(r) for r in self._rows.values() if self._matches(r)]
        if self._order_by:
            results.sort(key=lambda r: _parse_ts(r[self._order_by]))
        if self._limit_value:
            results = results[: self._limit_value]

        if self._client.after_select:
            hook = self._client.after_select.pop(0)
            hook(self._rows)
        return MockSupabaseResponse(results)


class MockStorageBucket:
    """Mock Supabase storage bucket; refuses to overwrite like the real one."""

    def __init__(self, name: str, uploads: Dict[str, bytes]) -> None:
        self.name = name
        self._uploads = uploads

    def upload(self, path: str, data: bytes, options: Optional[Dict[str, str]] = None) -> None:
        key = f"{self.name}/{path}"
        upsert = str((options or {}).get("upsert", "false")).lower() == "true"
        if key in self._uploads and not upsert:
            raise RuntimeError(f"The resource already exists: {key}")
        self._uploads[key] = data

    def get_public_url(self, path: str) -> str:
        return f"https://storage.test/{self.name}/{path}"


class MockStorage:
    def __init__(self) -> None:
        self.uploads: Dict[str, bytes] = {}

    def from_(self, bucket: str) -> MockStorageBucket:
        return MockStorageBucket(bucket, self.uploads)


class MockSupabaseClient:
    """Mock Supabase client for testing."""

    def __init__(self) -> None:
        self.tables: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self.storage = MockStorage()
        self.updates: List[Dict[str, Any]] = []
        self.after_select: List[Callable[[Dict[str, Dict[str, Any]]], None]] = []
        self.fail_next: Optional[Exception] = None
        self.execute_count = 0

    def table(self, name: str) -> MockSupabaseTable:
        return MockSupabaseTable(self.tables.setdefault(name, {}), self)

    def rows(self, name: str = "render_jobs") -> Dict[str, Dict[str, Any]]:
        return self.tables.setdefault(name, {})


# ==================== Fake collaborators ====================


class FakeAssetService:
    """Asset service that fabricates an image per scene."""

    def __init__(self) -> None:
        self.fail_ids: set[str] = set()
        self.calls: List[str] = []

    async def generate_scene_assets(self, job: Job, scene: Scene) -> Scene:
        self.calls.append(scene.id)
        if scene.id in self.fail_ids:
            raise AssetGenerationError(f"Generation failed for {scene.id}")
        return scene.model_copy(
            update={"assets": SceneAssets(image_url=f"https://cdn.test/{scene.id}.png")}
        )


class FakeQualityService:
    """Quality service that returns scripted analyses."""

    def __init__(self) -> None:
        self.available = True
        self.fail_indexes: set[int] = set()
        self.scores: Dict[int, float] = {}
        self.calls: List[int] = []

    def is_available(self) -> bool:
        return self.available

    async def analyze_scene(self, asset_ref: str, scene: Scene, scene_index: int) -> SceneAnalysis:
        self.calls.append(scene_index)
        if scene_index in self.fail_indexes:
            raise QualityEvaluationError(f"Analysis failed for scene {scene_index}")
        return SceneAnalysis(
            scene_index=scene_index,
            overall_score=self.scores.get(scene_index, 90),
            recommendation="approve",
        )


class FakeRenderExecutor:
    """
    Render executor with scripted status checks.

    A script is a queue of ChunkCheck objects or exceptions, keyed by render
    ID or by chunk index; the last entry repeats once the queue is drained.
    Unscripted renders complete on their first check.
    """

    def __init__(self) -> None:
        self.dispatched: List[Dict[str, Any]] = []
        self.checked: List[str] = []
        self.by_render_id: Dict[str, List[Any]] = {}
        self.by_chunk: Dict[int, List[Any]] = {}
        self.dispatch_errors: Dict[int, Exception] = {}
        self._chunk_of: Dict[str, int] = {}

    def script(self, key: Any, *entries: Any) -> None:
        target = self.by_render_id if isinstance(key, str) else self.by_chunk
        target[key] = list(entries)

    async def dispatch(self, chunk_payload: Dict[str, Any]) -> DispatchHandle:
        index = chunk_payload["chunk_index"]
        if index in self.dispatch_errors:
            raise self.dispatch_errors[index]
        self.dispatched.append(chunk_payload)
        render_id = f"render-{index}-{len(self.dispatched)}"
        self._chunk_of[render_id] = index
        return DispatchHandle(
            external_render_id=render_id,
            external_storage_location=f"bucket-{index}",
        )

    async def check_status(self, external_render_id: str, external_storage_location: str) -> ChunkCheck:
        self.checked.append(external_render_id)
        queue = self.by_render_id.get(external_render_id)
        if queue is None:
            queue = self.by_chunk.get(self._chunk_of.get(external_render_id, -1))
        if not queue:
            return ChunkCheck(
                status="complete",
                percent=100,
                output_location=f"https://renders.test/{external_render_id}.mp4",
            )
        entry = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(entry, Exception):
            raise entry
        return entry

    @property
    def dispatched_indexes(self) -> List[int]:
        return [p["chunk_index"] for p in self.dispatched]


class FakeAssembler:
    """Assembler that records what it was given and reports one step."""

    def __init__(self) -> None:
        self.assembled: List[tuple[str, List[int]]] = []
        self.error: Optional[Exception] = None

    async def assemble(
        self,
        job_id: str,
        chunk_results: List[Any],
        on_step: Optional[Callable[[str], Awaitable[None]]] = None,
    ) -> str:
        if on_step is not None:
            await on_step("Joining chunks...")
        if self.error is not None:
            raise self.error
        indexes = sorted(r.chunk_index for r in chunk_results)
        self.assembled.append((job_id, indexes))
        return f"https://renders.test/final/{job_id}.mp4"


# ==================== Fixtures ====================


@pytest.fixture
def supabase_factory() -> Callable[[], MockSupabaseClient]:
    """Builds a fresh mock client, for property tests that need one per example."""
    return MockSupabaseClient


@pytest.fixture
def executor_factory() -> Callable[[], FakeRenderExecutor]:
    return FakeRenderExecutor


@pytest.fixture
def assembler_factory() -> Callable[[], FakeAssembler]:
    return FakeAssembler


@pytest.fixture
def mock_supabase() -> MockSupabaseClient:
    return MockSupabaseClient()


@pytest.fixture
def job_store(mock_supabase: MockSupabaseClient) -> JobStore:
    return JobStore(mock_supabase, table_name="render_jobs")


@pytest.fixture
def executor() -> FakeRenderExecutor:
    return FakeRenderExecutor()


@pytest.fixture
def assembler() -> FakeAssembler:
    return FakeAssembler()


@pytest.fixture
def asset_service() -> FakeAssetService:
    return FakeAssetService()


@pytest.fixture
def quality_service() -> FakeQualityService:
    return FakeQualityService()


@pytest.fixture
def renderer(executor: FakeRenderExecutor, assembler: FakeAssembler) -> ChunkedRenderService:
    return ChunkedRenderService(
        executor=executor,
        assembler=assembler,
        poll_interval=0,
        poll_timeout=60,
        max_poll_errors=3,
    )


@pytest.fixture
def pipeline(
    job_store: JobStore,
    asset_service: FakeAssetService,
    quality_service: FakeQualityService,
    renderer: ChunkedRenderService,
) -> JobPipeline:
    return JobPipeline(
        store=job_store,
        assets=asset_service,
        quality=quality_service,
        renderer=renderer,
        default_fps=30,
        max_chunk_duration=120.0,
        worker_id="worker_test",
    )


@pytest.fixture
def make_job() -> Callable[..., Job]:
    """Factory for jobs with one scene per duration."""

    def _make(
        job_id: str = "job-1",
        status: JobStatus = JobStatus.QUEUED,
        durations: tuple = (30.0, 30.0),
        with_assets: bool = False,
        **kwargs: Any,
    ) -> Job:
        scenes = [
            Scene(
                id=f"scene-{i}",
                narration=f"Narration for scene {i}",
                visual_direction="Slow pan across the skyline",
                duration_seconds=d,
                assets=SceneAssets(image_url=f"https://cdn.test/scene-{i}.png") if with_assets else None,
            )
            for i, d in enumerate(durations)
        ]
        kwargs.setdefault("render_config", RenderConfig(composition_id="UniversalVideo", fps=30))
        return Job(id=job_id, owner_id="owner-1", status=status, scenes=scenes, **kwargs)

    return _make


@pytest.fixture
def sample_scene_data() -> dict:
    """Sample scene data for testing."""
    return {
        "id": "scene-001",
        "narration": "In 1969, the first crew walked on the moon.",
        "visual_direction": "Archive footage, slow zoom",
        "duration_seconds": 12.5,
    }
