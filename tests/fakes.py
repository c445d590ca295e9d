"""In-memory stand-ins for the Postgres repositories, object storage and upstream sources."""

from __future__ import annotations

import asyncio
from dataclasses import replace
from datetime import UTC, datetime, timedelta
from typing import Any

from app.config import Settings, get_settings
from app.content.adapters.base import SourceAdapter
from app.content.models import CachedContent, ContentItem, FetchStatus, NormalizedContent
from app.core.errors import DuplicateActiveJobError, StorageError
from app.jobs.models import ACTIVE_STATUSES, TERMINAL_STATUSES, JobRecord, JobResult, JobStatus, ReclaimResult
from app.storage.cleanup_repo import ArtifactRef, CleanupRun

START = datetime(2026, 10, 17, 11, 0, tzinfo=UTC)


def make_settings(**overrides: Any) -> Settings:
  """Return environment-derived settings with test-friendly defaults."""
  defaults: dict[str, Any] = {"pg_dsn": None, "retry_base_seconds": 60, "job_max_attempts": 3, "worker_batch_size": 5, "worker_concurrency": 2}
  defaults.update(overrides)
  return replace(get_settings(), **defaults)


class FakeClock:
  """Manually advanced UTC clock."""

  def __init__(self, start: datetime = START) -> None:
    self.now = start

  def __call__(self) -> datetime:
    return self.now

  def advance(self, **delta: float) -> None:
    self.now = self.now + timedelta(**delta)


class InMemoryJobsRepository:
  """Mirrors the row-level guarantees of the Postgres repository under a single lock."""

  def __init__(self) -> None:
    self.jobs: dict[str, JobRecord] = {}
    self.artifacts: list[dict[str, Any]] = []
    self._lock = asyncio.Lock()

  async def insert_job(self, record: JobRecord, *, supersede_job_id: str | None = None) -> JobRecord:
    async with self._lock:
      for job in self.jobs.values():
        if job.user_id == record.user_id and job.local_date == record.local_date and job.status in ACTIVE_STATUSES:
          raise DuplicateActiveJobError("An active job already exists.", existing_job_id=job.job_id, existing_status=job.status)
      if supersede_job_id is not None:
        old = self.jobs.get(supersede_job_id)
        if old is None or old.status != "completed":
          raise DuplicateActiveJobError("Job can no longer be replaced.", existing_job_id=supersede_job_id)
        old.status = "cancelled"
        old.superseded_by_job_id = record.job_id
      self.jobs[record.job_id] = replace(record)
      return replace(record)

  async def get_job(self, job_id: str) -> JobRecord | None:
    job = self.jobs.get(job_id)
    return replace(job) if job else None

  async def find_latest_for_date(self, user_id: str, local_date: str) -> JobRecord | None:
    matches = [job for job in self.jobs.values() if job.user_id == user_id and job.local_date == local_date]
    return replace(matches[-1]) if matches else None

  def _claimable(self, job: JobRecord, now: datetime) -> bool:
    if job.attempt_count >= job.max_attempts:
      return False
    if job.status == "queued":
      return job.process_not_before is None or job.process_not_before <= now
    return job.status == "processing" and job.lease_until is not None and job.lease_until < now

  def _lease(self, job: JobRecord, *, worker_id: str, now: datetime, lease_until: datetime) -> JobRecord:
    job.status = "processing"
    job.worker_id = worker_id
    job.lease_until = lease_until
    job.attempt_count += 1
    job.started_at = now
    job.updated_at = now
    return replace(job)

  async def claim_jobs(self, *, worker_id: str, limit: int, now: datetime, lease_until: datetime) -> list[JobRecord]:
    async with self._lock:
      candidates = [job for job in self.jobs.values() if self._claimable(job, now)]
      candidates.sort(key=lambda job: (-job.priority, job.scheduled_at, job.created_at or now))
      return [self._lease(job, worker_id=worker_id, now=now, lease_until=lease_until) for job in candidates[:limit]]

  async def claim_job(self, job_id: str, *, worker_id: str, now: datetime, lease_until: datetime) -> JobRecord | None:
    async with self._lock:
      job = self.jobs.get(job_id)
      if job is None or not self._claimable(job, now):
        return None
      return self._lease(job, worker_id=worker_id, now=now, lease_until=lease_until)

  def _held(self, job_id: str, worker_id: str) -> JobRecord | None:
    job = self.jobs.get(job_id)
    if job is None or job.status != "processing" or job.worker_id != worker_id:
      return None
    return job

  async def complete_job(self, job_id: str, *, worker_id: str, result: JobResult, now: datetime) -> JobRecord | None:
    async with self._lock:
      job = self._held(job_id, worker_id)
      if job is None:
        return None
      job.status = "completed"
      job.worker_id = None
      job.lease_until = None
      job.audio_file_path = result.audio_file_path
      job.audio_duration = result.audio_duration
      job.script_content = result.script_content
      job.tts_provider = result.tts_provider
      job.script_cost = result.script_cost
      job.tts_cost = result.tts_cost
      job.total_cost = result.total_cost
      job.error_code = None
      job.error_message = None
      job.completed_at = now
      job.updated_at = now
      self.artifacts.append({"id": len(self.artifacts) + 1, "job_id": job_id, "storage_path": result.audio_file_path, "created_at": now, "deleted_at": None})
      return replace(job)

  async def release_job(self, job_id: str, *, worker_id: str, status: JobStatus, error_code: str, error_message: str, process_not_before: datetime | None, now: datetime) -> JobRecord | None:
    async with self._lock:
      job = self._held(job_id, worker_id)
      if job is None:
        return None
      job.status = status
      job.worker_id = None
      job.lease_until = None
      job.error_code = error_code
      job.error_message = error_message
      job.updated_at = now
      if status == "queued":
        job.process_not_before = process_not_before
      else:
        job.completed_at = now
      return replace(job)

  async def reclaim_expired(self, *, now: datetime) -> ReclaimResult:
    async with self._lock:
      requeued: list[str] = []
      failed: list[str] = []
      for job in self.jobs.values():
        if job.status != "processing" or job.lease_until is None or job.lease_until >= now:
          continue
        job.worker_id = None
        job.lease_until = None
        job.error_code = "LEASE_EXPIRED"
        job.updated_at = now
        if job.attempt_count < job.max_attempts:
          job.status = "queued"
          requeued.append(job.job_id)
        else:
          job.status = "failed"
          job.completed_at = now
          failed.append(job.job_id)
      return ReclaimResult(requeued=requeued, failed=failed)

  async def mark_user_completed(self, job_id: str, *, now: datetime) -> None:
    job = self.jobs.get(job_id)
    if job is not None and not job.user_completed:
      job.user_completed = True
      job.user_completed_at = now


class InMemoryContentRepository:
  def __init__(self) -> None:
    self.entries: dict[tuple[str, str], CachedContent] = {}
    self.leases: dict[tuple[str, str], tuple[str, datetime]] = {}
    self.fetch_log: list[dict[str, Any]] = []

  async def get_entry(self, content_type: str, scope: str) -> CachedContent | None:
    return self.entries.get((content_type, scope))

  async def upsert_entry(self, content: NormalizedContent, *, expires_at: datetime) -> None:
    self.entries[(content.content_type, content.scope)] = CachedContent(content=content, fetched_at=content.fetched_at, expires_at=expires_at)

  async def acquire_refresh_lease(self, content_type: str, scope: str, *, holder: str, now: datetime, lease_until: datetime) -> bool:
    current = self.leases.get((content_type, scope))
    if current is not None and current[1] >= now:
      return False
    self.leases[(content_type, scope)] = (holder, lease_until)
    return True

  async def release_refresh_lease(self, content_type: str, scope: str, *, holder: str) -> None:
    current = self.leases.get((content_type, scope))
    if current is not None and current[0] == holder:
      del self.leases[(content_type, scope)]

  async def list_scopes(self, content_type: str) -> list[str]:
    return [scope for kind, scope in self.entries if kind == content_type]

  async def record_fetch(self, content_type: str, scope: str, *, fetch_status: FetchStatus, source: str | None, cached_age_hours: float | None, error_message: str | None, payload_summary: dict[str, Any] | None, now: datetime) -> None:
    self.fetch_log.append({"content_type": content_type, "scope": scope, "fetch_status": fetch_status, "source": source, "cached_age_hours": cached_age_hours, "error_message": error_message, "created_at": now})

  async def newest_fetches(self) -> dict[str, datetime]:
    newest: dict[str, datetime] = {}
    for (content_type, _), entry in self.entries.items():
      if content_type not in newest or entry.fetched_at > newest[content_type]:
        newest[content_type] = entry.fetched_at
    return newest

  async def fetch_status_counts(self, *, since: datetime) -> dict[str, dict[str, int]]:
    counts: dict[str, dict[str, int]] = {}
    for row in self.fetch_log:
      if row["created_at"] < since:
        continue
      per_type = counts.setdefault(row["content_type"], {})
      per_type[row["fetch_status"]] = per_type.get(row["fetch_status"], 0) + 1
    return counts


class InMemoryCleanupRepository:
  """Shares the artifact list with an InMemoryJobsRepository so sweeps see completed jobs."""

  def __init__(self, jobs_repo: InMemoryJobsRepository, content_repo: InMemoryContentRepository | None = None) -> None:
    self.jobs_repo = jobs_repo
    self.content_repo = content_repo or InMemoryContentRepository()
    self.runs: list[CleanupRun] = []
    self.rate_counters: dict[tuple[str, int], int] = {}

  async def begin_run(self, *, now: datetime, min_interval_hours: int) -> CleanupRun:
    window_start = now - timedelta(hours=min_interval_hours)
    recent = any(run.status not in ("skipped", "failed") and run.started_at >= window_start for run in self.runs)
    run = CleanupRun(started_at=now, status="skipped" if recent else "running", id=len(self.runs) + 1, errors=[])
    if recent:
      run.completed_at = now
      run.runtime_seconds = 0.0
    self.runs.append(run)
    return run

  async def finish_run(self, run: CleanupRun) -> None:
    self.runs[run.id - 1] = replace(run)

  async def list_expired_artifacts(self, *, cutoff: datetime, after_id: int, limit: int) -> list[ArtifactRef]:
    rows = [row for row in self.jobs_repo.artifacts if row["deleted_at"] is None and row["created_at"] < cutoff and row["id"] > after_id]
    return [ArtifactRef(id=row["id"], job_id=row["job_id"], storage_path=row["storage_path"]) for row in rows[:limit]]

  async def mark_artifacts_deleted(self, artifacts: list[ArtifactRef], *, now: datetime) -> None:
    ids = {artifact.id for artifact in artifacts}
    for row in self.jobs_repo.artifacts:
      if row["id"] in ids:
        row["deleted_at"] = now
        job = self.jobs_repo.jobs.get(row["job_id"])
        if job is not None:
          job.audio_file_path = None

  async def purge_expired_cache(self, *, cutoff: datetime) -> int:
    expired = [key for key, entry in self.content_repo.entries.items() if entry.expires_at < cutoff]
    for key in expired:
      del self.content_repo.entries[key]
    return len(expired)

  async def purge_fetch_logs(self, *, cutoff: datetime) -> int:
    before = len(self.content_repo.fetch_log)
    self.content_repo.fetch_log = [row for row in self.content_repo.fetch_log if row["created_at"] >= cutoff]
    return before - len(self.content_repo.fetch_log)

  async def purge_terminal_jobs(self, *, cutoff: datetime) -> int:
    doomed = [job_id for job_id, job in self.jobs_repo.jobs.items() if job.status in TERMINAL_STATUSES and job.updated_at is not None and job.updated_at < cutoff]
    for job_id in doomed:
      del self.jobs_repo.jobs[job_id]
    return len(doomed)

  async def purge_rate_counters(self, *, cutoff: datetime) -> int:
    threshold = int(cutoff.timestamp())
    stale = [key for key in self.rate_counters if key[1] < threshold]
    for key in stale:
      del self.rate_counters[key]
    return len(stale)


class FakeStorage:
  """Dict-backed artifact store; paths in fail_deletes raise StorageError on delete."""

  def __init__(self) -> None:
    self.objects: dict[str, tuple[bytes, str]] = {}
    self.fail_deletes: set[str] = set()
    self.deleted: list[str] = []

  async def upload_audio(self, object_name: str, audio: bytes, content_type: str) -> None:
    self.objects[object_name] = (audio, content_type)

  async def generate_signed_url(self, object_name: str, *, ttl_seconds: int) -> str:
    return f"https://storage.test/{object_name}?expires={ttl_seconds}"

  async def delete(self, object_name: str) -> bool:
    if object_name in self.fail_deletes:
      raise StorageError(f"Delete of {object_name} failed", object_name=object_name)
    self.deleted.append(object_name)
    return self.objects.pop(object_name, None) is not None


class NullRateLimiter:
  def __init__(self) -> None:
    self.calls: list[str] = []

  async def acquire(self, provider: str) -> None:
    self.calls.append(provider)


class StaticAdapter(SourceAdapter):
  """Adapter returning canned items, or raising a canned error, while counting fetches."""

  def __init__(self, content_type: str, items: list[ContentItem], *, error: Exception | None = None, delay: float = 0.0, clock: FakeClock | None = None) -> None:
    super().__init__(rate_limiter=NullRateLimiter(), clock=clock)
    self.content_type = content_type
    self.provider = f"static-{content_type}"
    self.items = items
    self.error = error
    self.delay = delay
    self.fetches = 0

  async def _fetch_items(self, scope: str) -> tuple[list[ContentItem], str]:
    self.fetches += 1
    if self.delay:
      await asyncio.sleep(self.delay)
    if self.error is not None:
      raise self.error
    return list(self.items), self.provider


class FakeEnqueuer:
  def __init__(self) -> None:
    self.job_ids: list[str] = []

  async def enqueue(self, job_id: str) -> None:
    self.job_ids.append(job_id)


def job_request(**overrides: Any):
  """Build a valid create-job payload; overrides replace individual fields."""
  from app.api.models import CreateJobRequest

  payload: dict[str, Any] = {
    "local_date": "2026-10-18",
    "scheduled_at": "2026-10-18T06:30:00-07:00",
    "timezone": "America/Los_Angeles",
    "preferred_name": "Sam",
    "include_weather": False,
    "include_news": True,
    "include_sports": False,
    "include_stocks": False,
    "include_calendar": False,
    "include_quotes": False,
    "daystart_length": 3,
  }
  payload.update(overrides)
  return CreateJobRequest(**payload)
