"""Shared FastAPI dependencies wiring the queue, cache, worker and sweeper."""

from __future__ import annotations

from functools import lru_cache
from typing import Annotated

from fastapi import Depends

from app.ai.composer import ScriptComposer
from app.ai.narration import build_narration_synthesizer
from app.ai.providers import get_script_model
from app.config import Settings, get_settings
from app.content.adapters import build_adapters
from app.content.cache import ContentCache
from app.content.rate_limit import PostgresRateLimiter, parse_budgets
from app.jobs.queue import JobQueue
from app.jobs.worker import JobWorker
from app.services.cleanup import CleanupSweeper
from app.services.storage_client import AudioStorage, build_storage_client
from app.services.tasks.factory import get_task_enqueuer
from app.services.tasks.interface import TaskEnqueuer
from app.storage.factory import _get_cleanup_repo, _get_content_repo, _get_jobs_repo
from app.utils.ids import generate_worker_id


@lru_cache(maxsize=1)
def _storage_client() -> AudioStorage:
  return build_storage_client(get_settings())


def get_audio_storage() -> AudioStorage:
  """Return the process-wide artifact store."""
  return _storage_client()


def get_job_queue(settings: Annotated[Settings, Depends(get_settings)]) -> JobQueue:
  return JobQueue(_get_jobs_repo(settings), settings)


def get_enqueuer(settings: Annotated[Settings, Depends(get_settings)]) -> TaskEnqueuer:
  return get_task_enqueuer(settings)


def build_content_cache(settings: Settings, *, holder: str) -> ContentCache:
  """Wire the cache with adapters sharing one persisted rate limiter."""
  rate_limiter = PostgresRateLimiter(parse_budgets(settings.provider_budgets))
  return ContentCache(_get_content_repo(settings), build_adapters(settings, rate_limiter), settings, holder=holder)


def get_content_cache(settings: Annotated[Settings, Depends(get_settings)]) -> ContentCache:
  return build_content_cache(settings, holder=generate_worker_id("refresh"))


def build_job_worker(settings: Settings) -> JobWorker:
  """Assemble a worker with a fresh lease-owner id for one invocation."""
  worker_id = generate_worker_id()
  return JobWorker(
    queue=JobQueue(_get_jobs_repo(settings), settings),
    cache=build_content_cache(settings, holder=worker_id),
    composer=ScriptComposer(get_script_model(settings), provider=settings.script_provider),
    synthesizer=build_narration_synthesizer(settings),
    storage=get_audio_storage(),
    settings=settings,
    worker_id=worker_id,
  )


def get_job_worker(settings: Annotated[Settings, Depends(get_settings)]) -> JobWorker:
  return build_job_worker(settings)


def get_cleanup_sweeper(settings: Annotated[Settings, Depends(get_settings)], storage: Annotated[AudioStorage, Depends(get_audio_storage)]) -> CleanupSweeper:
  return CleanupSweeper(_get_cleanup_repo(settings), storage, settings)
