"""Storage interfaces for the retention sweep."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Protocol


@dataclass(frozen=True)
class ArtifactRef:
  """A live audio artifact eligible for deletion."""

  id: int
  job_id: str | None
  storage_path: str


@dataclass
class CleanupRun:
  """Outcome of one sweep, persisted as a cleanup_log row."""

  started_at: datetime
  status: str = "running"
  id: int | None = None
  completed_at: datetime | None = None
  files_scanned: int = 0
  files_deleted: int = 0
  files_failed: int = 0
  cache_rows_deleted: int = 0
  jobs_purged: int = 0
  fetch_logs_deleted: int = 0
  rate_counters_deleted: int = 0
  errors: list[str] | None = None
  runtime_seconds: float | None = None


class CleanupRepository(Protocol):
  """Repository contract for retention bookkeeping."""

  async def begin_run(self, *, now: datetime, min_interval_hours: int) -> CleanupRun:
    """Atomically start a run, or record and return a skipped run when a non-failed run started within the interval."""

  async def finish_run(self, run: CleanupRun) -> None:
    """Persist the final counters and status of a run."""

  async def list_expired_artifacts(self, *, cutoff: datetime, after_id: int, limit: int) -> list[ArtifactRef]:
    """Return undeleted artifacts created before cutoff, ordered by id."""

  async def mark_artifacts_deleted(self, artifacts: list[ArtifactRef], *, now: datetime) -> None:
    """Stamp deleted_at and clear the owning jobs' audio_file_path."""

  async def purge_expired_cache(self, *, cutoff: datetime) -> int:
    """Delete cache rows that expired before cutoff."""

  async def purge_fetch_logs(self, *, cutoff: datetime) -> int:
    """Delete fetch-log rows older than cutoff."""

  async def purge_terminal_jobs(self, *, cutoff: datetime) -> int:
    """Delete completed, failed and cancelled jobs last touched before cutoff."""

  async def purge_rate_counters(self, *, cutoff: datetime) -> int:
    """Delete provider budget counters whose window started before cutoff."""
