"""Storage interfaces for briefing jobs."""

from __future__ import annotations

from datetime import datetime
from typing import Protocol

from app.jobs.models import JobRecord, JobResult, JobStatus, ReclaimResult


class JobsRepository(Protocol):
  """Repository contract for job persistence and lease transitions.

  Every transition out of ``processing`` is guarded by ``worker_id`` so a worker
  whose lease was reclaimed cannot overwrite the new holder's state.
  """

  async def insert_job(self, record: JobRecord, *, supersede_job_id: str | None = None) -> JobRecord:
    """Persist a new job; raise DuplicateActiveJobError when an active job exists for the same scope."""

  async def get_job(self, job_id: str) -> JobRecord | None:
    """Fetch a job by identifier."""

  async def find_latest_for_date(self, user_id: str, local_date: str) -> JobRecord | None:
    """Return the most recently created job for an identity and local date."""

  async def claim_jobs(self, *, worker_id: str, limit: int, now: datetime, lease_until: datetime) -> list[JobRecord]:
    """Atomically lease up to ``limit`` claimable jobs in priority order."""

  async def claim_job(self, job_id: str, *, worker_id: str, now: datetime, lease_until: datetime) -> JobRecord | None:
    """Lease one specific job if it is claimable and not locked by another caller."""

  async def complete_job(self, job_id: str, *, worker_id: str, result: JobResult, now: datetime) -> JobRecord | None:
    """Mark a leased job completed; return None when the caller does not hold the lease."""

  async def release_job(self, job_id: str, *, worker_id: str, status: JobStatus, error_code: str, error_message: str, process_not_before: datetime | None, now: datetime) -> JobRecord | None:
    """Requeue or fail a leased job; return None when the caller does not hold the lease."""

  async def reclaim_expired(self, *, now: datetime) -> ReclaimResult:
    """Reset processing jobs with expired leases."""

  async def mark_user_completed(self, job_id: str, *, now: datetime) -> None:
    """Record that the listener finished playback."""
