"""API tests for the orchestration endpoints mounted on the unified application."""

import time
from collections.abc import Generator

import pytest
from fastapi.testclient import TestClient

from conftest import FakeProvider, RecordingAction
from services.orchestration.registry import AnalysisStatusRegistry
from services.orchestration.service import OrchestrationService
from services.providers import StubProviderClient
from services.storage import InMemoryJobStore, InMemoryWebhookEventStore
from shared.models import JobStatusSnapshot

PREFIX = "/api/v1/orchestration"


@pytest.fixture
def stub_provider() -> StubProviderClient:
    return StubProviderClient(steps_to_complete=2)


@pytest.fixture
def scripted_provider() -> FakeProvider:
    return FakeProvider([JobStatusSnapshot.processing(progress=20)])


@pytest.fixture
def client(
    monkeypatch: pytest.MonkeyPatch, stub_provider: StubProviderClient, scripted_provider: FakeProvider
) -> Generator[TestClient, None, None]:
    from app import app
    from services.orchestration import app as orchestration_module

    providers = {"stub": stub_provider, "scripted": scripted_provider}
    service = OrchestrationService(
        job_store=InMemoryJobStore(),
        event_store=InMemoryWebhookEventStore(),
        registry=AnalysisStatusRegistry(),
        result_action=RecordingAction(),
        provider_factory=lambda name: providers.get(name, stub_provider),
    )
    monkeypatch.setattr(orchestration_module, "service", service)
    with TestClient(app) as test_client:
        yield test_client


def wait_for_state(client: TestClient, path: str, states: set[str], timeout: float = 3.0) -> dict:
    deadline = time.monotonic() + timeout
    while True:
        body = client.get(path).json()
        if body["state"] in states or time.monotonic() > deadline:
            return body
        time.sleep(0.02)


FAST = {"poll_interval": 0.01, "max_wait": 1, "per_item_timeout": 2}


def test_health_endpoints(client: TestClient) -> None:
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"

    response = client.get(f"{PREFIX}/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


def test_root_lists_service(client: TestClient) -> None:
    body = client.get("/").json()
    assert body["services"]["orchestration"]["base_url"] == PREFIX


def test_unknown_status_is_not_started(client: TestClient) -> None:
    response = client.get(f"{PREFIX}/status/deck-404/slide_analysis")
    assert response.status_code == 200
    body = response.json()
    assert body["state"] == "not_started"
    assert body["total"] == 0
    assert body["progress_percentage"] == 0


def test_invalid_kind_is_rejected(client: TestClient) -> None:
    response = client.get(f"{PREFIX}/status/deck-1/not_a_kind")
    assert response.status_code == 400
    assert response.json()["error_code"] == "invalid_request"


def test_batch_runs_to_completion(client: TestClient) -> None:
    response = client.post(
        f"{PREFIX}/batches",
        json={
            "subject_id": "deck-1",
            "kind": "avatar_video",
            "provider": "stub",
            "items": [
                {"item_id": "slide-1", "label": "Slide 1"},
                {"item_id": "slide-2", "label": "Slide 2", "payload": {"simulate": "fail"}},
                {"item_id": "slide-3", "label": "Slide 3", "already_completed": True},
            ],
            "options": FAST,
        },
    )
    assert response.status_code == 202
    assert response.json()["data"]["total"] == 3

    body = wait_for_state(client, f"{PREFIX}/status/deck-1/avatar_video", {"completed", "failed"})
    assert body["state"] == "completed"
    assert (body["completed"], body["failed"], body["skipped"], body["in_progress"]) == (1, 1, 1, 0)
    assert body["errors"] == ["Slide 2: Simulated provider failure"]
    assert body["progress_percentage"] == 100

    jobs = client.get(f"{PREFIX}/jobs/deck-1").json()
    assert sorted(job["status"] for job in jobs) == ["completed", "failed"]
    assert all(job["parent_id"] == "deck-1" for job in jobs)


def test_batch_rejects_duplicate_items(client: TestClient) -> None:
    response = client.post(
        f"{PREFIX}/batches",
        json={
            "subject_id": "deck-1",
            "kind": "slide_analysis",
            "items": [{"item_id": "slide-1"}, {"item_id": "slide-1"}],
        },
    )
    assert response.status_code == 400
    assert response.json()["error_code"] == "invalid_request"


def test_batch_request_validation(client: TestClient) -> None:
    response = client.post(f"{PREFIX}/batches", json={"subject_id": "deck-1", "kind": "nonsense", "items": []})
    assert response.status_code == 422


def test_cancel_unknown_batch_and_monitor(client: TestClient) -> None:
    assert client.delete(f"{PREFIX}/batches/deck-1/slide_analysis").status_code == 404
    assert client.delete(f"{PREFIX}/monitors/no-such-handle").status_code == 404


def test_monitor_completed_by_webhook(client: TestClient) -> None:
    response = client.post(
        f"{PREFIX}/monitors",
        json={
            "subject_id": "deck-2",
            "kind": "render_job",
            "provider": "scripted",
            "external_job_id": "render-77",
            "options": {"poll_interval": 0.05, "max_wait": 5},
        },
    )
    assert response.status_code == 202
    data = response.json()["data"]
    assert data["started"] is True

    running = wait_for_state(client, f"{PREFIX}/status/deck-2/render_job", {"in_progress"})
    assert running["state"] == "in_progress"
    active = client.get(f"{PREFIX}/status/deck-2").json()
    assert [record["kind"] for record in active] == ["render_job"]

    webhook = client.post(
        f"{PREFIX}/webhooks/scripted",
        json={"job_id": "render-77", "status": "completed", "url": "stub://render-77.mp4"},
    )
    assert webhook.status_code == 202

    body = wait_for_state(client, f"{PREFIX}/status/deck-2/render_job", {"completed", "failed"})
    assert body["state"] == "completed"
    assert client.get(f"{PREFIX}/status/deck-2").json() == []

    jobs = client.get(f"{PREFIX}/jobs/deck-2").json()
    assert jobs[0]["handle_id"] == data["handle_id"]
    assert jobs[0]["result"]["url"] == "stub://render-77.mp4"
    assert jobs[0]["follow_up_completed"] is True


def test_monitor_conflicting_handle(client: TestClient) -> None:
    payload = {
        "subject_id": "deck-3",
        "kind": "render_job",
        "provider": "scripted",
        "external_job_id": "render-1",
        "options": {"poll_interval": 0.05, "max_wait": 5},
    }
    assert client.post(f"{PREFIX}/monitors", json=payload).status_code == 202

    response = client.post(f"{PREFIX}/monitors", json=payload)
    assert response.status_code == 409
    assert response.json()["error_code"] == "invalid_handle"


def test_malformed_webhook(client: TestClient) -> None:
    response = client.post(
        f"{PREFIX}/webhooks/heygen", content=b"{broken", headers={"Content-Type": "application/json"}
    )
    assert response.status_code == 400
    body = response.json()
    assert body["success"] is False
    assert body["error_code"] == "malformed_event"


def test_unmatched_webhook_is_accepted_and_not_stuck_yet(client: TestClient) -> None:
    response = client.post(
        f"{PREFIX}/webhooks/heygen",
        json={"event_type": "avatar_video.success", "event_data": {"video_id": "unknown-video"}},
    )
    assert response.status_code == 202
    assert client.get(f"{PREFIX}/webhooks/stuck").json() == []
