"""HTTP surface: enqueue, polling and the authenticated triggers."""

from __future__ import annotations

from unittest.mock import AsyncMock, Mock

import pytest
from fastapi.testclient import TestClient

from app.api.deps import get_audio_storage, get_cleanup_sweeper, get_content_cache, get_enqueuer, get_job_queue, get_job_worker
from app.content.cache import ContentCache
from app.content.models import ContentItem
from app.jobs.queue import JobQueue
from app.main import app
from app.services.cleanup import CleanupSweeper
from tests.fakes import FakeEnqueuer, InMemoryCleanupRepository, StaticAdapter

IDENTITY = {"x-client-info": "device-abc"}
WORKER_AUTH = {"authorization": "Bearer test-worker-token"}
CLEANUP_AUTH = {"authorization": "Bearer test-cleanup-token"}


class _HeadlinesAdapter(StaticAdapter):
  def configured_scopes(self, settings):  # type: ignore[no-untyped-def]
    return ["us:general"]


def _payload(**overrides):  # type: ignore[no-untyped-def]
  payload = {
    "local_date": "2026-10-18",
    "scheduled_at": "2026-10-18T06:30:00-07:00",
    "timezone": "America/Los_Angeles",
    "include_weather": False,
    "include_news": True,
    "include_sports": False,
    "include_stocks": False,
    "include_calendar": False,
    "include_quotes": False,
    "daystart_length": 3,
  }
  payload.update(overrides)
  return payload


@pytest.fixture
def enqueuer() -> FakeEnqueuer:
  return FakeEnqueuer()


@pytest.fixture
def worker() -> Mock:
  batch_worker = Mock(worker_id="worker-test")
  batch_worker.run_batch = AsyncMock()
  return batch_worker


@pytest.fixture
def client(jobs_repo, content_repo, settings, clock, storage, enqueuer, worker):
  cache = ContentCache(content_repo, {"news": _HeadlinesAdapter("news", [ContentItem(headline="Ferry service expands")], clock=clock)}, settings, holder="api-test", clock=clock)
  cleanup_repo = InMemoryCleanupRepository(jobs_repo, content_repo)
  app.dependency_overrides[get_job_queue] = lambda: JobQueue(jobs_repo, settings, clock=clock)
  app.dependency_overrides[get_enqueuer] = lambda: enqueuer
  app.dependency_overrides[get_audio_storage] = lambda: storage
  app.dependency_overrides[get_content_cache] = lambda: cache
  app.dependency_overrides[get_job_worker] = lambda: worker
  app.dependency_overrides[get_cleanup_sweeper] = lambda: CleanupSweeper(cleanup_repo, storage, settings, clock=clock)
  try:
    yield TestClient(app)
  finally:
    app.dependency_overrides.clear()


def test_create_job_returns_created_and_rejects_duplicate(client: TestClient, enqueuer: FakeEnqueuer) -> None:
  first = client.post("/v1/create_job", json=_payload(), headers=IDENTITY)
  assert first.status_code == 201
  body = first.json()
  assert body["status"] == "queued"
  assert body["local_date"] == "2026-10-18"
  assert first.headers["x-request-id"]

  second = client.post("/v1/create_job", json=_payload(), headers=IDENTITY)
  assert second.status_code == 409
  detail = second.json()["detail"]
  assert detail["code"] == "duplicate_active_job"
  assert detail["existing_job_id"] == body["job_id"]
  assert enqueuer.job_ids == []


def test_immediate_job_is_dispatched(client: TestClient, enqueuer: FakeEnqueuer) -> None:
  response = client.post("/v1/create_job", json=_payload(scheduled_at="NOW"), headers=IDENTITY)
  assert response.status_code == 201
  assert enqueuer.job_ids == [response.json()["job_id"]]


def test_create_job_requires_identity(client: TestClient) -> None:
  response = client.post("/v1/create_job", json=_payload())
  assert response.status_code == 401
  assert response.json()["detail"]["code"] == "missing_identity"


def test_invalid_length_is_a_client_error(client: TestClient, jobs_repo) -> None:
  response = client.post("/v1/create_job", json=_payload(daystart_length=20), headers=IDENTITY)
  assert response.status_code == 400
  detail = response.json()["detail"]
  assert detail["code"] == "invalid_field"
  assert detail["field"] == "daystart_length"
  assert jobs_repo.jobs == {}


def test_malformed_body_is_rejected_without_echoing_input(client: TestClient) -> None:
  response = client.post("/v1/create_job", json=_payload(include_news="yes", preferred_name="Sam"), headers=IDENTITY)
  assert response.status_code == 422
  assert "Sam" not in response.text
  assert response.json()["requestId"]


def test_audio_status_by_date_and_identity(client: TestClient) -> None:
  created = client.post("/v1/create_job", json=_payload(), headers=IDENTITY).json()

  mine = client.get("/v1/get_audio_status", params={"date": "2026-10-18"}, headers=IDENTITY)
  assert mine.status_code == 200
  assert mine.json()["status"] == "processing"
  assert mine.json()["job_id"] == created["job_id"]

  theirs = client.get("/v1/get_audio_status", params={"job_id": created["job_id"]}, headers={"x-client-info": "someone-else"})
  assert theirs.json()["status"] == "not_found"

  bad = client.get("/v1/get_audio_status", params={"date": "18-10-2026"}, headers=IDENTITY)
  assert bad.status_code == 400


def test_process_jobs_requires_worker_token(client: TestClient, worker: Mock) -> None:
  denied = client.post("/v1/process_jobs", headers=CLEANUP_AUTH)
  assert denied.status_code == 401

  accepted = client.post("/v1/process_jobs", headers=WORKER_AUTH)
  assert accepted.status_code == 202
  assert accepted.json()["worker_id"] == "worker-test"
  worker.run_batch.assert_awaited_once()


def test_refresh_and_content_status(client: TestClient) -> None:
  unauthorized = client.get("/v1/content_status", headers=IDENTITY)
  assert unauthorized.status_code == 401

  refreshed = client.post("/v1/refresh_content", json={"content_types": ["news"]}, headers=WORKER_AUTH)
  assert refreshed.status_code == 200
  body = refreshed.json()
  assert body["success"] is True
  assert body["successful"] == 1
  assert body["results"][0]["scope"] == "us:general"

  status = client.get("/v1/content_status", headers=WORKER_AUTH)
  assert status.status_code == 200
  assert status.json()["content"][0]["bucket"] == "fresh"


def test_cleanup_requires_cleanup_token_and_skips_repeat_runs(client: TestClient) -> None:
  denied = client.post("/v1/cleanup-audio", headers=WORKER_AUTH)
  assert denied.status_code == 401

  first = client.post("/v1/cleanup-audio", headers=CLEANUP_AUTH)
  assert first.status_code == 200
  assert first.json()["status"] == "completed"

  second = client.post("/v1/cleanup-audio", headers=CLEANUP_AUTH)
  assert second.json()["status"] == "skipped"
