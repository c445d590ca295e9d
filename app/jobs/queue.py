"""Durable briefing queue with lease-based, exactly-one-holder claims."""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import UTC, datetime, timedelta

from app.api.models import CreateJobRequest
from app.config import Settings
from app.core.errors import DuplicateActiveJobError, LeaseConflictError
from app.jobs.models import ACTIVE_STATUSES, AccessTier, JobRecord, JobResult, ReclaimResult
from app.jobs.validation import build_job_record
from app.storage.jobs_repo import JobsRepository
from app.utils.db_retry import execute_with_retry
from app.utils.ids import generate_job_id

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def utc_now() -> datetime:
  return datetime.now(UTC)


class JobQueue:
  """State machine over the jobs table.

  queued -(claim)-> processing -(complete)-> completed
  processing -(fail, retryable)-> queued
  processing -(fail, permanent or exhausted)-> failed
  processing -(lease expiry)-> queued, or failed once attempts are spent
  """

  def __init__(self, repo: JobsRepository, settings: Settings, *, clock: Clock = utc_now) -> None:
    self._repo = repo
    self._settings = settings
    self._clock = clock

  @property
  def lease_duration(self) -> timedelta:
    return timedelta(minutes=self._settings.job_lease_minutes)

  async def enqueue(self, request: CreateJobRequest, *, identity: str, access_tier: AccessTier = "anonymous") -> JobRecord:
    """Validate and persist a briefing request.

    Duplicate scope (identity + local date) is rejected, never coalesced: an
    active job always wins, and a completed one is only replaced with force_update.
    """
    now = self._clock()
    record = build_job_record(request, job_id=generate_job_id(), identity=identity, access_tier=access_tier, settings=self._settings, now=now)

    existing = await self._repo.find_latest_for_date(identity, record.local_date)
    supersede_job_id: str | None = None
    if existing is not None:
      if existing.status in ACTIVE_STATUSES:
        raise DuplicateActiveJobError(f"A briefing for {record.local_date} is already {existing.status}.", existing_job_id=existing.job_id, existing_status=existing.status)
      if existing.status == "completed":
        if not request.force_update:
          raise DuplicateActiveJobError(f"A briefing for {record.local_date} is already completed.", existing_job_id=existing.job_id, existing_status=existing.status, code="already_completed")
        supersede_job_id = existing.job_id

    created = await self._repo.insert_job(record, supersede_job_id=supersede_job_id)
    logger.info("Enqueued job %s user=%s date=%s priority=%s not_before=%s", created.job_id, identity, created.local_date, created.priority, created.process_not_before)
    if supersede_job_id:
      logger.info("Job %s supersedes completed job %s", created.job_id, supersede_job_id)
    return created

  async def claim(self, max_count: int, *, worker_id: str) -> list[JobRecord]:
    """Lease up to max_count jobs in priority order; concurrent callers never share a row."""
    if max_count <= 0:
      return []
    now = self._clock()
    claimed = await execute_with_retry(operation_name="claim_jobs", func=lambda: self._repo.claim_jobs(worker_id=worker_id, limit=max_count, now=now, lease_until=now + self.lease_duration))
    if claimed:
      logger.info("Worker %s claimed %d job(s): %s", worker_id, len(claimed), ", ".join(job.job_id for job in claimed))
    return claimed

  async def claim_specific(self, job_id: str, *, worker_id: str) -> JobRecord | None:
    """Lease one job for immediate processing; None when it is locked, leased or not due."""
    now = self._clock()
    claimed = await self._repo.claim_job(job_id, worker_id=worker_id, now=now, lease_until=now + self.lease_duration)
    if claimed is None:
      logger.info("Job %s not claimable by %s", job_id, worker_id)
    return claimed

  async def complete(self, job_id: str, *, worker_id: str, result: JobResult) -> JobRecord:
    updated = await self._repo.complete_job(job_id, worker_id=worker_id, result=result, now=self._clock())
    if updated is None:
      raise LeaseConflictError(job_id, worker_id)
    logger.info("Job %s completed by %s audio=%s duration=%ss", job_id, worker_id, result.audio_file_path, result.audio_duration)
    return updated

  async def fail(self, job_id: str, *, worker_id: str, error_code: str, error_message: str, permanent: bool = False) -> JobRecord:
    """Requeue with backoff while attempts remain, otherwise fail terminally."""
    job = await self._repo.get_job(job_id)
    # attempt_count only moves at claim time, so it is stable while the caller holds the lease.
    if job is None or job.status != "processing" or job.worker_id != worker_id:
      raise LeaseConflictError(job_id, worker_id)
    now = self._clock()
    if permanent or job.attempts_remaining == 0:
      updated = await self._repo.release_job(job_id, worker_id=worker_id, status="failed", error_code=error_code, error_message=error_message, process_not_before=None, now=now)
    else:
      retry_at = now + self.retry_delay(job.attempt_count)
      updated = await self._repo.release_job(job_id, worker_id=worker_id, status="queued", error_code=error_code, error_message=error_message, process_not_before=retry_at, now=now)
    if updated is None:
      raise LeaseConflictError(job_id, worker_id)
    logger.warning("Job %s -> %s code=%s attempt=%d/%d: %s", job_id, updated.status, error_code, job.attempt_count, job.max_attempts, error_message)
    return updated

  def retry_delay(self, attempt_count: int) -> timedelta:
    exponent = max(attempt_count - 1, 0)
    return timedelta(seconds=self._settings.retry_base_seconds * (2**exponent))

  async def reclaim_stale(self) -> ReclaimResult:
    """Reset processing jobs whose lease expired (crashed or timed-out workers)."""
    result = await execute_with_retry(operation_name="reclaim_stale", func=lambda: self._repo.reclaim_expired(now=self._clock()))
    if result.total:
      logger.warning("Reclaimed expired leases requeued=%s failed=%s", result.requeued, result.failed)
    return result

  async def get(self, job_id: str) -> JobRecord | None:
    return await self._repo.get_job(job_id)

  async def latest_for_date(self, identity: str, local_date: str) -> JobRecord | None:
    return await self._repo.find_latest_for_date(identity, local_date)

  async def mark_user_completed(self, job_id: str) -> None:
    await self._repo.mark_user_completed(job_id, now=self._clock())
