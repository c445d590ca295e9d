"""Postgres-backed repository for the retention sweep."""

from __future__ import annotations

from datetime import datetime, timedelta

from sqlalchemy import delete, func, insert, select, text, update

from app.core.database import get_session_factory
from app.jobs.models import TERMINAL_STATUSES
from app.schema.cleanup import CleanupLog
from app.schema.content import ContentCacheEntry, ContentFetchLog, ProviderRateCounter
from app.schema.jobs import AudioArtifact, Job
from app.storage.cleanup_repo import ArtifactRef, CleanupRepository, CleanupRun

# Arbitrary constant shared by every process running the sweep.
CLEANUP_LOCK_KEY = 0x44535759


class PostgresCleanupRepository(CleanupRepository):
  """Persist retention bookkeeping to Postgres using SQLAlchemy."""

  def __init__(self) -> None:
    self._session_factory = get_session_factory()
    if self._session_factory is None:
      raise RuntimeError("Database not initialized")

  async def begin_run(self, *, now: datetime, min_interval_hours: int) -> CleanupRun:
    async with self._session_factory() as session:
      async with session.begin():
        # Serialize concurrent triggers; the lock is released when the transaction ends.
        await session.execute(text("SELECT pg_advisory_xact_lock(:key)"), {"key": CLEANUP_LOCK_KEY})
        window_start = now - timedelta(hours=min_interval_hours)
        recent_stmt = select(func.count()).select_from(CleanupLog).where(CleanupLog.status.not_in(("skipped", "failed")), CleanupLog.started_at >= window_start)
        recent = int((await session.execute(recent_stmt)).scalar_one())
        run = CleanupRun(started_at=now, status="skipped" if recent else "running", errors=[])
        if run.status == "skipped":
          run.completed_at = now
          run.runtime_seconds = 0.0
        stmt = insert(CleanupLog).values(started_at=run.started_at, completed_at=run.completed_at, status=run.status, errors=[], runtime_seconds=run.runtime_seconds).returning(CleanupLog.id)
        run.id = int((await session.execute(stmt)).scalar_one())
      return run

  async def finish_run(self, run: CleanupRun) -> None:
    async with self._session_factory() as session:
      async with session.begin():
        values = {
          "status": run.status,
          "completed_at": run.completed_at,
          "files_scanned": run.files_scanned,
          "files_deleted": run.files_deleted,
          "files_failed": run.files_failed,
          "cache_rows_deleted": run.cache_rows_deleted,
          "jobs_purged": run.jobs_purged,
          "fetch_logs_deleted": run.fetch_logs_deleted,
          "errors": list(run.errors or []),
          "runtime_seconds": run.runtime_seconds,
        }
        await session.execute(update(CleanupLog).where(CleanupLog.id == run.id).values(**values))

  async def list_expired_artifacts(self, *, cutoff: datetime, after_id: int, limit: int) -> list[ArtifactRef]:
    async with self._session_factory() as session:
      stmt = select(AudioArtifact.id, AudioArtifact.job_id, AudioArtifact.storage_path).where(AudioArtifact.deleted_at.is_(None), AudioArtifact.created_at < cutoff, AudioArtifact.id > after_id).order_by(AudioArtifact.id.asc()).limit(limit)
      rows = (await session.execute(stmt)).all()
      return [ArtifactRef(id=int(row.id), job_id=row.job_id, storage_path=row.storage_path) for row in rows]

  async def mark_artifacts_deleted(self, artifacts: list[ArtifactRef], *, now: datetime) -> None:
    if not artifacts:
      return
    async with self._session_factory() as session:
      async with session.begin():
        await session.execute(update(AudioArtifact).where(AudioArtifact.id.in_([artifact.id for artifact in artifacts])).values(deleted_at=now))
        job_ids = [artifact.job_id for artifact in artifacts if artifact.job_id]
        if job_ids:
          await session.execute(update(Job).where(Job.job_id.in_(job_ids)).values(audio_file_path=None, updated_at=now))

  async def purge_expired_cache(self, *, cutoff: datetime) -> int:
    return await self._delete(delete(ContentCacheEntry).where(ContentCacheEntry.expires_at < cutoff))

  async def purge_fetch_logs(self, *, cutoff: datetime) -> int:
    return await self._delete(delete(ContentFetchLog).where(ContentFetchLog.created_at < cutoff))

  async def purge_terminal_jobs(self, *, cutoff: datetime) -> int:
    return await self._delete(delete(Job).where(Job.status.in_(TERMINAL_STATUSES), Job.updated_at < cutoff))

  async def purge_rate_counters(self, *, cutoff: datetime) -> int:
    return await self._delete(delete(ProviderRateCounter).where(ProviderRateCounter.window_start < int(cutoff.timestamp())))

  async def _delete(self, stmt) -> int:  # type: ignore[no-untyped-def]
    async with self._session_factory() as session:
      async with session.begin():
        result = await session.execute(stmt)
      return int(result.rowcount or 0)
