import sys
from collections.abc import Callable
from pathlib import Path
from typing import Any, Generator

import pytest
import redis.asyncio as aioredis

ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from services.orchestration.actions import FollowUpRunner, ResultAction
from services.orchestration.monitor import JobMonitor
from services.orchestration.registry import AnalysisStatusRegistry
from services.providers import ProviderClient
from services.storage import InMemoryJobStore, InMemoryWebhookEventStore
from shared.models import JobSpec, JobStatusSnapshot, OrchestrationOptions, TrackedJob
from shared.utils import config as service_config


class DummyRedis:
    def __init__(self) -> None:
        self._store: dict[str, list[str]] = {}

    async def rpush(self, key: str, value: str) -> int:
        self._store.setdefault(key, []).append(value)
        return len(self._store[key])

    async def lpop(self, key: str):
        queue = self._store.get(key)
        if not queue:
            return None
        value = queue.pop(0)
        if not queue:
            self._store.pop(key, None)
        return value

    async def llen(self, key: str) -> int:
        return len(self._store.get(key, []))

    async def aclose(self) -> None:
        return None


@pytest.fixture(scope="session", autouse=True)
def fake_redis() -> Generator[None, None, None]:
    """Patch redis client to use in-memory storage for tests."""
    original_from_url = aioredis.Redis.from_url

    def fake_from_url(cls, url: str, *args, **kwargs):  # type: ignore[unused-argument]
        return DummyRedis()

    aioredis.Redis.from_url = classmethod(fake_from_url)  # type: ignore[assignment]
    try:
        yield
    finally:
        aioredis.Redis.from_url = original_from_url  # type: ignore[assignment]


@pytest.fixture(autouse=True)
def test_environment(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Generator[Path, None, None]:
    """Point media storage at a temporary directory and keep the database out of tests."""
    media_root = tmp_path / "media"
    monkeypatch.setenv("MEDIA_ROOT", str(media_root))
    previous = {key: service_config.get(key) for key in ("media_root", "database_url")}
    service_config.set("media_root", str(media_root))
    service_config.set("database_url", None)
    try:
        yield media_root
    finally:
        for key, value in previous.items():
            service_config.set(key, value)


class FakeProvider(ProviderClient):
    """Provider whose every job follows the same scripted sequence of poll results.

    Script entries are snapshots or exceptions to raise; the last entry repeats.
    """

    name = "fake"

    def __init__(self, script: list[JobStatusSnapshot | Exception] | None = None) -> None:
        self.script = script or [JobStatusSnapshot.completed()]
        self.submitted: list[JobSpec] = []
        self.poll_counts: dict[str, int] = {}
        self.fail_submit_for: set[str] = set()

    async def submit(self, spec: JobSpec) -> str:
        if spec.subject_id in self.fail_submit_for:
            from shared.exceptions import TerminalProviderError

            raise TerminalProviderError(f"Rejected {spec.subject_id}", status_code=400)
        self.submitted.append(spec)
        external_job_id = f"fake-{len(self.submitted)}"
        self.poll_counts[external_job_id] = 0
        return external_job_id

    async def poll_status(self, external_job_id: str) -> JobStatusSnapshot:
        count = self.poll_counts.get(external_job_id, 0)
        self.poll_counts[external_job_id] = count + 1
        entry = self.script[min(count, len(self.script) - 1)]
        if isinstance(entry, Exception):
            raise entry
        return entry

    @property
    def total_polls(self) -> int:
        return sum(self.poll_counts.values())


class RecordingAction(ResultAction):
    name = "recording"

    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.calls: list[str] = []

    async def execute(self, job: TrackedJob) -> None:
        self.calls.append(job.handle.handle_id)
        if self.fail:
            raise RuntimeError("storage unavailable")


@pytest.fixture
def registry() -> AnalysisStatusRegistry:
    return AnalysisStatusRegistry(max_errors=50, retention_seconds=3600, max_entries=100)


@pytest.fixture
def job_store() -> InMemoryJobStore:
    return InMemoryJobStore()


@pytest.fixture
def event_store() -> InMemoryWebhookEventStore:
    return InMemoryWebhookEventStore()


@pytest.fixture
def recording_action() -> RecordingAction:
    return RecordingAction()


@pytest.fixture
def follow_up(job_store: InMemoryJobStore, recording_action: RecordingAction) -> FollowUpRunner:
    return FollowUpRunner(job_store, recording_action)


@pytest.fixture
def fake_provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
def provider_factory(fake_provider: FakeProvider) -> Callable[[str], ProviderClient]:
    def _factory(_name: str) -> ProviderClient:
        return fake_provider

    return _factory


@pytest.fixture
def monitor(
    job_store: InMemoryJobStore,
    registry: AnalysisStatusRegistry,
    follow_up: FollowUpRunner,
    provider_factory: Callable[[str], ProviderClient],
) -> JobMonitor:
    return JobMonitor(job_store, registry, follow_up, provider_factory)


@pytest.fixture
def fast_options() -> OrchestrationOptions:
    return OrchestrationOptions(
        max_concurrent=5,
        per_item_timeout=2.0,
        poll_interval=0.01,
        max_wait=0.05,
        parallel_enabled=True,
    )


def make_options(**overrides: Any) -> OrchestrationOptions:
    values: dict[str, Any] = {
        "max_concurrent": 5,
        "per_item_timeout": 2.0,
        "poll_interval": 0.01,
        "max_wait": 0.05,
        "parallel_enabled": True,
    }
    values.update(overrides)
    return OrchestrationOptions(**values)
