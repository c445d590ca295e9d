"""Postgres-backed repository for briefing jobs using SQLAlchemy."""

from __future__ import annotations

from dataclasses import fields
from datetime import datetime
from typing import Any

from sqlalchemy import Select, and_, or_, select, update
from sqlalchemy.exc import IntegrityError

from app.core.database import get_session_factory
from app.core.errors import DuplicateActiveJobError
from app.jobs.models import JobRecord, JobResult, JobStatus, ReclaimResult
from app.schema.jobs import AudioArtifact, Job
from app.storage.jobs_repo import JobsRepository
from app.utils.db_retry import is_unique_violation

ACTIVE_JOB_INDEX = "ux_daystart_jobs_active_user_date"
LEASE_EXPIRED = "LEASE_EXPIRED"

_RECORD_FIELDS = tuple(item.name for item in fields(JobRecord))


def claimable_jobs_query(*, now: datetime, limit: int, job_id: str | None = None) -> Select[tuple[Job]]:
  """Select claimable jobs in claim order, skipping rows locked by concurrent claimers."""
  # Queued work that is due, or processing work whose holder's lease has lapsed.
  claimable = or_(and_(Job.status == "queued", or_(Job.process_not_before.is_(None), Job.process_not_before <= now)), and_(Job.status == "processing", Job.lease_until < now))
  stmt = select(Job).where(claimable, Job.attempt_count < Job.max_attempts)
  if job_id is not None:
    stmt = stmt.where(Job.job_id == job_id)
  return stmt.order_by(Job.priority.desc(), Job.scheduled_at.asc(), Job.created_at.asc()).limit(limit).with_for_update(skip_locked=True)


def _lease_guard(job_id: str, worker_id: str) -> tuple[Any, ...]:
  return (Job.job_id == job_id, Job.status == "processing", Job.worker_id == worker_id)


class PostgresJobsRepository(JobsRepository):
  """Persist jobs and lease transitions to Postgres using SQLAlchemy."""

  def __init__(self) -> None:
    self._session_factory = get_session_factory()
    if self._session_factory is None:
      raise RuntimeError("Database not initialized")

  async def insert_job(self, record: JobRecord, *, supersede_job_id: str | None = None) -> JobRecord:
    async with self._session_factory() as session:
      try:
        async with session.begin():
          if supersede_job_id is not None:
            # Only a completed job may be superseded; anything else is still owned by a worker or already replaced.
            superseded = await session.execute(update(Job).where(Job.job_id == supersede_job_id, Job.status == "completed").values(status="cancelled", superseded_by_job_id=record.job_id, updated_at=record.created_at).returning(Job.job_id))
            if superseded.scalar_one_or_none() is None:
              raise DuplicateActiveJobError(f"Job {supersede_job_id} can no longer be replaced.", existing_job_id=supersede_job_id)
          row = self._record_to_model(record)
          session.add(row)
      except IntegrityError as exc:
        if is_unique_violation(exc, ACTIVE_JOB_INDEX):
          raise DuplicateActiveJobError(f"An active job already exists for {record.local_date}.", existing_status="queued") from exc
        raise
      return self._model_to_record(row)

  async def get_job(self, job_id: str) -> JobRecord | None:
    async with self._session_factory() as session:
      row = await session.get(Job, job_id)
      if row is None:
        return None
      return self._model_to_record(row)

  async def find_latest_for_date(self, user_id: str, local_date: str) -> JobRecord | None:
    async with self._session_factory() as session:
      stmt = select(Job).where(Job.user_id == user_id, Job.local_date == local_date).order_by(Job.created_at.desc()).limit(1)
      row = (await session.execute(stmt)).scalar_one_or_none()
      if row is None:
        return None
      return self._model_to_record(row)

  async def claim_jobs(self, *, worker_id: str, limit: int, now: datetime, lease_until: datetime) -> list[JobRecord]:
    async with self._session_factory() as session:
      async with session.begin():
        rows = (await session.execute(claimable_jobs_query(now=now, limit=limit))).scalars().all()
        # Rows are locked until commit, so the lease write below cannot race another claimer.
        for row in rows:
          self._apply_lease(row, worker_id=worker_id, now=now, lease_until=lease_until)
      return [self._model_to_record(row) for row in rows]

  async def claim_job(self, job_id: str, *, worker_id: str, now: datetime, lease_until: datetime) -> JobRecord | None:
    async with self._session_factory() as session:
      async with session.begin():
        row = (await session.execute(claimable_jobs_query(now=now, limit=1, job_id=job_id))).scalar_one_or_none()
        if row is None:
          return None
        self._apply_lease(row, worker_id=worker_id, now=now, lease_until=lease_until)
      return self._model_to_record(row)

  async def complete_job(self, job_id: str, *, worker_id: str, result: JobResult, now: datetime) -> JobRecord | None:
    async with self._session_factory() as session:
      async with session.begin():
        values = {
          "status": "completed",
          "worker_id": None,
          "lease_until": None,
          "audio_file_path": result.audio_file_path,
          "audio_duration": result.audio_duration,
          "script_content": result.script_content,
          "tts_provider": result.tts_provider,
          "script_cost": result.script_cost,
          "tts_cost": result.tts_cost,
          "total_cost": result.total_cost,
          "error_code": None,
          "error_message": None,
          "completed_at": now,
          "updated_at": now,
        }
        stmt = update(Job).where(*_lease_guard(job_id, worker_id)).values(**values).returning(Job)
        row = (await session.execute(stmt)).scalar_one_or_none()
        if row is None:
          return None
        session.add(AudioArtifact(job_id=job_id, storage_path=result.audio_file_path, duration_seconds=result.audio_duration, size_bytes=result.size_bytes, content_type=result.content_type, tts_provider=result.tts_provider, created_at=now))
      return self._model_to_record(row)

  async def release_job(self, job_id: str, *, worker_id: str, status: JobStatus, error_code: str, error_message: str, process_not_before: datetime | None, now: datetime) -> JobRecord | None:
    if status not in ("queued", "failed"):
      raise ValueError(f"Cannot release a job into status '{status}'.")
    async with self._session_factory() as session:
      async with session.begin():
        values: dict[str, Any] = {"status": status, "worker_id": None, "lease_until": None, "error_code": error_code, "error_message": error_message, "updated_at": now}
        if status == "queued":
          values["process_not_before"] = process_not_before
        else:
          values["completed_at"] = now
        stmt = update(Job).where(*_lease_guard(job_id, worker_id)).values(**values).returning(Job)
        row = (await session.execute(stmt)).scalar_one_or_none()
      if row is None:
        return None
      return self._model_to_record(row)

  async def reclaim_expired(self, *, now: datetime) -> ReclaimResult:
    async with self._session_factory() as session:
      async with session.begin():
        expired = (Job.status == "processing", Job.lease_until < now)
        # Attempts were charged at claim time, so reclaim only decides between another try and a terminal failure.
        requeue_stmt = update(Job).where(*expired, Job.attempt_count < Job.max_attempts).values(status="queued", worker_id=None, lease_until=None, error_code=LEASE_EXPIRED, error_message="Worker lease expired before completion.", updated_at=now).returning(Job.job_id)
        requeued = [str(job_id) for job_id in (await session.execute(requeue_stmt)).scalars().all()]
        fail_stmt = update(Job).where(*expired, Job.attempt_count >= Job.max_attempts).values(status="failed", worker_id=None, lease_until=None, error_code=LEASE_EXPIRED, error_message="Worker lease expired and no attempts remain.", completed_at=now, updated_at=now).returning(Job.job_id)
        failed = [str(job_id) for job_id in (await session.execute(fail_stmt)).scalars().all()]
      return ReclaimResult(requeued=requeued, failed=failed)

  async def mark_user_completed(self, job_id: str, *, now: datetime) -> None:
    async with self._session_factory() as session:
      async with session.begin():
        await session.execute(update(Job).where(Job.job_id == job_id, Job.user_completed.is_(False)).values(user_completed=True, user_completed_at=now, updated_at=now))

  def _apply_lease(self, row: Job, *, worker_id: str, now: datetime, lease_until: datetime) -> None:
    row.status = "processing"
    row.worker_id = worker_id
    row.lease_until = lease_until
    row.attempt_count = int(row.attempt_count or 0) + 1
    row.started_at = now
    row.updated_at = now

  def _record_to_model(self, record: JobRecord) -> Job:
    return Job(**{name: getattr(record, name) for name in _RECORD_FIELDS})

  def _model_to_record(self, row: Job) -> JobRecord:
    return JobRecord(**{name: getattr(row, name) for name in _RECORD_FIELDS})
