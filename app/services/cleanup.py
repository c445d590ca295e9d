"""Retention sweep for audio artifacts, cache rows, fetch logs and finished jobs."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from datetime import UTC, datetime, timedelta

from app.config import Settings
from app.content.rate_limit import parse_budgets
from app.core.errors import StorageError
from app.services.storage_client import AudioStorage
from app.storage.cleanup_repo import CleanupRepository, CleanupRun

logger = logging.getLogger(__name__)

DELETE_BATCH_SIZE = 50
MAX_RECORDED_ERRORS = 50


class CleanupSweeper:
  """Deletes expired artifacts and purges bookkeeping rows, at most once per interval."""

  def __init__(self, repo: CleanupRepository, storage: AudioStorage, settings: Settings, *, clock: Callable[[], datetime] | None = None) -> None:
    self._repo = repo
    self._storage = storage
    self._settings = settings
    self._clock = clock or (lambda: datetime.now(UTC))

  async def sweep(self, older_than_days: int | None = None) -> CleanupRun:
    """Run one sweep, or record a skipped run when another ran within the interval.

    Object deletions that fail are counted and reported; the sweep carries on
    and the run is marked ``partial``. A missing object counts as deleted. Any
    other error closes the run as ``failed`` before propagating, so the next
    trigger is not skipped.
    """
    started = time.monotonic()
    now = self._clock()
    run = await self._repo.begin_run(now=now, min_interval_hours=self._settings.cleanup_interval_hours)
    if run.status == "skipped":
      logger.info("Cleanup skipped; a run started within the last %sh", self._settings.cleanup_interval_hours)
      return run

    retention_days = older_than_days if older_than_days is not None else self._settings.audio_retention_days
    errors: list[str] = []
    try:
      await self._delete_artifacts(run, cutoff=now - timedelta(days=retention_days), errors=errors)
      run.cache_rows_deleted = await self._repo.purge_expired_cache(cutoff=now - timedelta(hours=self._settings.cache_grace_hours))
      run.fetch_logs_deleted = await self._repo.purge_fetch_logs(cutoff=now - timedelta(days=self._settings.fetch_log_retention_days))
      run.jobs_purged = await self._repo.purge_terminal_jobs(cutoff=now - timedelta(days=self._settings.job_retention_days))
      run.rate_counters_deleted = await self._repo.purge_rate_counters(cutoff=now - timedelta(seconds=self._longest_budget_window()))
    except Exception as exc:
      errors.append(f"sweep aborted: {exc}")
      run.errors = errors[:MAX_RECORDED_ERRORS]
      run.status = "failed"
      run.completed_at = self._clock()
      run.runtime_seconds = round(time.monotonic() - started, 3)
      logger.error("Cleanup failed after deleting %d artifacts", run.files_deleted, exc_info=True)
      await self._repo.finish_run(run)
      raise

    run.errors = errors[:MAX_RECORDED_ERRORS]
    run.status = "partial" if run.files_failed else "completed"
    run.completed_at = self._clock()
    run.runtime_seconds = round(time.monotonic() - started, 3)
    await self._repo.finish_run(run)
    logger.info(
      "Cleanup %s scanned=%d deleted=%d failed=%d cache=%d fetch_logs=%d jobs=%d rate_counters=%d in %.1fs",
      run.status,
      run.files_scanned,
      run.files_deleted,
      run.files_failed,
      run.cache_rows_deleted,
      run.fetch_logs_deleted,
      run.jobs_purged,
      run.rate_counters_deleted,
      run.runtime_seconds,
    )
    return run

  def _longest_budget_window(self) -> int:
    budgets = parse_budgets(self._settings.provider_budgets)
    return max((budget.window_seconds for budget in budgets.values()), default=86400)

  async def _delete_artifacts(self, run: CleanupRun, *, cutoff: datetime, errors: list[str]) -> None:
    after_id = 0
    while True:
      batch = await self._repo.list_expired_artifacts(cutoff=cutoff, after_id=after_id, limit=DELETE_BATCH_SIZE)
      if not batch:
        return
      after_id = batch[-1].id
      run.files_scanned += len(batch)
      deleted = []
      for artifact in batch:
        try:
          await self._storage.delete(artifact.storage_path)
        except StorageError as exc:
          run.files_failed += 1
          errors.append(f"{artifact.storage_path}: {exc}")
          logger.warning("Failed to delete artifact %s: %s", artifact.storage_path, exc)
          continue
        deleted.append(artifact)
      await self._repo.mark_artifacts_deleted(deleted, now=self._clock())
      run.files_deleted += len(deleted)
      if len(batch) < DELETE_BATCH_SIZE:
        return
