"""Test configuration: baseline environment plus shared fixtures."""

from __future__ import annotations

import os

# Settings are read at import time by app.main, so the environment must be in place first.
os.environ.setdefault("DAYSTART_ALLOWED_ORIGINS", "http://localhost:3000")
os.environ.setdefault("DAYSTART_WORKER_AUTH_TOKEN", "test-worker-token")
os.environ.setdefault("DAYSTART_CLEANUP_AUTH_TOKEN", "test-cleanup-token")
os.environ.setdefault("DAYSTART_TASK_SECRET", "test-task-secret")
os.environ.setdefault("DAYSTART_ENV_CONTRACT_ENFORCE", "false")

import pytest  # noqa: E402

from app.config import get_settings  # noqa: E402
from tests.fakes import FakeClock, FakeStorage, InMemoryContentRepository, InMemoryJobsRepository, make_settings  # noqa: E402


@pytest.fixture
def anyio_backend() -> str:
  return "asyncio"


@pytest.fixture(autouse=True)
def _fresh_settings():
  get_settings.cache_clear()
  yield
  get_settings.cache_clear()


@pytest.fixture
def settings():
  return make_settings()


@pytest.fixture
def clock() -> FakeClock:
  return FakeClock()


@pytest.fixture
def jobs_repo() -> InMemoryJobsRepository:
  return InMemoryJobsRepository()


@pytest.fixture
def content_repo() -> InMemoryContentRepository:
  return InMemoryContentRepository()


@pytest.fixture
def storage() -> FakeStorage:
  return FakeStorage()
