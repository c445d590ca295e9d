"""Background processor for queued briefing jobs."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Literal

import httpx

from app.ai.composer import Script, ScriptComposer, ScriptPreferences
from app.ai.narration import NarrationSynthesizer, SynthesizedAudio
from app.config import Settings
from app.content.adapters.stocks import stocks_scope
from app.content.adapters.weather import content_from_client_weather, weather_scope
from app.content.cache import ContentCache
from app.content.models import ContentItem, NormalizedContent, usable_content
from app.content.quotes import daily_quotes
from app.core.errors import JobValidationError, LeaseConflictError, PermanentJobError, PermanentSourceError, StorageError, TransientSourceError
from app.jobs.models import JobRecord, JobResult
from app.jobs.queue import JobQueue
from app.services.storage_client import AudioStorage, audio_object_name

Outcome = Literal["completed", "failed", "requeued", "skipped"]


@dataclass
class WorkerSummary:
  """Counters reported by one worker invocation."""

  claimed: int = 0
  completed: int = 0
  failed: int = 0
  requeued: int = 0
  skipped: int = 0
  reclaimed: int = 0
  runtime_seconds: float = 0.0

  def record(self, outcome: Outcome) -> None:
    setattr(self, outcome, getattr(self, outcome) + 1)


class JobWorker:
  """Claims queued jobs and turns each into a narrated briefing."""

  def __init__(self, *, queue: JobQueue, cache: ContentCache, composer: ScriptComposer, synthesizer: NarrationSynthesizer, storage: AudioStorage, settings: Settings, worker_id: str) -> None:
    self._queue = queue
    self._cache = cache
    self._composer = composer
    self._synthesizer = synthesizer
    self._storage = storage
    self._settings = settings
    self._worker_id = worker_id
    self._logger = logging.getLogger(__name__)

  @property
  def worker_id(self) -> str:
    return self._worker_id

  async def run_batch(self, max_jobs: int | None = None) -> WorkerSummary:
    """Reclaim expired leases, claim a batch and process it with bounded concurrency."""
    started = time.monotonic()
    summary = WorkerSummary()
    reclaimed = await self._queue.reclaim_stale()
    summary.reclaimed = reclaimed.total
    jobs = await self._queue.claim(max_jobs or self._settings.worker_batch_size, worker_id=self._worker_id)
    summary.claimed = len(jobs)

    semaphore = asyncio.Semaphore(self._settings.worker_concurrency)

    async def _bounded(job: JobRecord) -> Outcome:
      async with semaphore:
        return await self.process_job(job)

    # Every job runs to completion before an infrastructure error is re-raised.
    errors: list[BaseException] = []
    for outcome in await asyncio.gather(*(_bounded(job) for job in jobs), return_exceptions=True):
      if isinstance(outcome, BaseException):
        errors.append(outcome)
        continue
      summary.record(outcome)
    summary.runtime_seconds = round(time.monotonic() - started, 3)
    self._logger.info("Worker %s batch claimed=%d completed=%d failed=%d requeued=%d skipped=%d reclaimed=%d in %.1fs", self._worker_id, summary.claimed, summary.completed, summary.failed, summary.requeued, summary.skipped, summary.reclaimed, summary.runtime_seconds)
    if errors:
      self._logger.error("Worker %s batch aborted after %d job(s) could not record an outcome", self._worker_id, len(errors))
      raise errors[0]
    return summary

  async def process_specific(self, job_id: str) -> Outcome:
    """Claim and process one job dispatched for immediate handling."""
    job = await self._queue.claim_specific(job_id, worker_id=self._worker_id)
    if job is None:
      return "skipped"
    return await self.process_job(job)

  async def process_job(self, job: JobRecord) -> Outcome:
    """Run one leased job end to end and record its outcome on the queue."""
    uploaded: str | None = None
    try:
      async with asyncio.timeout(self._settings.job_timeout_seconds):
        result = await self._produce(job)
        uploaded = result.audio_file_path
        await self._queue.complete(job.job_id, worker_id=self._worker_id, result=result)
      return "completed"
    except TimeoutError:
      # Leave the lease in place; reclaim requeues or fails the job once it expires.
      # A retry uploads to the same object name, so an artifact written before the timeout is overwritten.
      self._logger.error("Job %s exceeded %ss and was abandoned", job.job_id, self._settings.job_timeout_seconds)
      return "skipped"
    except LeaseConflictError:
      self._logger.warning("Job %s lost its lease during processing", job.job_id)
      if uploaded is not None:
        await self._discard_artifact(uploaded)
      return "skipped"
    except (PermanentJobError, JobValidationError, PermanentSourceError) as exc:
      self._logger.error("Job %s failed permanently: %s", job.job_id, exc)
      return await self._fail(job, exc.code, str(exc), permanent=True)
    except (TransientSourceError, StorageError) as exc:
      self._logger.warning("Job %s hit a transient error: %s", job.job_id, exc)
      return await self._fail(job, exc.code, str(exc), permanent=False)
    except httpx.HTTPError as exc:
      self._logger.warning("Job %s hit an upstream transport error: %s", job.job_id, exc)
      return await self._fail(job, "upstream_unavailable", str(exc), permanent=False)
    except Exception as exc:  # noqa: BLE001
      self._logger.error("Job %s hit an unexpected error", job.job_id, exc_info=True)
      return await self._fail(job, "internal_error", str(exc) or type(exc).__name__, permanent=False)

  async def _discard_artifact(self, object_name: str) -> None:
    try:
      await self._storage.delete(object_name)
    except StorageError:
      self._logger.warning("Failed to remove orphaned artifact %s", object_name)

  async def _fail(self, job: JobRecord, code: str, message: str, *, permanent: bool) -> Outcome:
    try:
      updated = await self._queue.fail(job.job_id, worker_id=self._worker_id, error_code=code, error_message=message, permanent=permanent)
    except LeaseConflictError:
      self._logger.warning("Job %s lease lost before failure could be recorded", job.job_id)
      return "skipped"
    return "failed" if updated.status == "failed" else "requeued"

  async def _produce(self, job: JobRecord) -> JobResult:
    content = await self.resolve_content(job)
    preferences = ScriptPreferences.from_job(job)
    script = await self._composer.compose(preferences, content)
    self._logger.info("Job %s script words=%d target=%d est_seconds=%d sections=%s polished=%s", job.job_id, script.word_count, script.target_words, script.estimated_seconds, ",".join(script.sections), script.polished)
    audio = await self._synthesizer.synthesize(script.text, job.voice_option)
    object_name = audio_object_name(job.user_id, job.local_date, job.job_id, audio.extension)
    await self._storage.upload_audio(object_name, audio.audio, audio.content_type)
    return _build_result(object_name, script, audio)

  async def resolve_content(self, job: JobRecord) -> dict[str, NormalizedContent | None]:
    """Gather content for every enabled section; a missing source leaves the section empty."""
    now = datetime.now(UTC)
    resolved: dict[str, NormalizedContent | None] = {}
    for content_type in job.enabled_content_types():
      if content_type == "weather":
        resolved[content_type] = await self._resolve_weather(job, now)
      elif content_type == "news":
        resolved[content_type] = await self._lookup("news", self._settings.news_scope)
      elif content_type == "sports":
        resolved[content_type] = await self._resolve_sports(job, now)
      elif content_type == "stocks":
        resolved[content_type] = await self._lookup("stocks", stocks_scope(job.stock_symbols))
      elif content_type == "calendar":
        resolved[content_type] = _calendar_content(job, now)
      elif content_type == "quotes":
        resolved[content_type] = NormalizedContent(content_type="quotes", scope=job.local_date, source="library", fetched_at=now, items=daily_quotes(job.quote_preference, job.local_date))
    missing = [content_type for content_type, value in resolved.items() if value is None]
    if missing:
      self._logger.info("Job %s proceeding without %s", job.job_id, ", ".join(missing))
    return resolved

  async def _lookup(self, content_type: str, scope: str) -> NormalizedContent | None:
    lookup = await self._cache.get(content_type, scope)
    content = usable_content(lookup)
    if content is None:
      self._logger.info("No %s content for %s: %s", content_type, scope, getattr(lookup, "reason", "unknown"))
    return content

  async def _resolve_weather(self, job: JobRecord, now: datetime) -> NormalizedContent | None:
    location = job.location_data or {}
    if job.weather_data:
      client_content = content_from_client_weather(job.weather_data, location=location.get("city"), fetched_at=now)
      if client_content is not None:
        return client_content
    scope = weather_scope(location)
    if scope is None:
      return None
    return await self._lookup("weather", scope)

  async def _resolve_sports(self, job: JobRecord, now: datetime) -> NormalizedContent | None:
    items: list[ContentItem] = []
    sources: list[str] = []
    leagues = [league.lower() for league in job.selected_sports or self._settings.default_sports]
    for league in leagues:
      content = await self._lookup("sports", league)
      if content is None:
        continue
      items.extend(content.items)
      sources.append(content.source)
    if not items:
      return None
    return NormalizedContent(content_type="sports", scope=",".join(leagues), source=",".join(dict.fromkeys(sources)), fetched_at=now, items=items)


def _calendar_content(job: JobRecord, now: datetime) -> NormalizedContent | None:
  events = [event.strip() for event in job.calendar_events or [] if event and event.strip()]
  if not events:
    return None
  return NormalizedContent(content_type="calendar", scope=job.job_id, source="client", fetched_at=now, items=[ContentItem(headline=event) for event in events])


def _build_result(object_name: str, script: Script, audio: SynthesizedAudio) -> JobResult:
  return JobResult(audio_file_path=object_name, audio_duration=audio.duration_seconds, script_content=script.text, tts_provider=audio.provider, script_cost=script.cost, tts_cost=audio.cost, size_bytes=audio.size_bytes, content_type=audio.content_type)
