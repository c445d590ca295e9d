import logging
import re

from fastapi import BackgroundTasks

from app.api.models import AudioStatusResponse, CreateJobRequest, CreateJobResponse
from app.config import Settings
from app.core.errors import JobValidationError
from app.jobs.models import PRIORITY_IMMEDIATE, AccessTier, JobRecord
from app.jobs.queue import JobQueue
from app.jobs.worker import JobWorker
from app.services.storage_client import AudioStorage
from app.services.tasks.interface import TaskEnqueuer

logger = logging.getLogger(__name__)

_DATE_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}$")


async def create_job(request: CreateJobRequest, queue: JobQueue, background_tasks: BackgroundTasks, enqueuer: TaskEnqueuer, *, identity: str, access_tier: AccessTier) -> CreateJobResponse:
  """Enqueue a briefing and dispatch immediate processing for welcome and NOW requests."""
  record = await queue.enqueue(request, identity=identity, access_tier=access_tier)
  if record.priority >= PRIORITY_IMMEDIATE:
    trigger_job_processing(background_tasks, record.job_id, enqueuer)
  return CreateJobResponse(job_id=record.job_id, status=record.status, local_date=record.local_date, priority=record.priority, estimated_ready_time=record.estimated_ready_time)


def trigger_job_processing(background_tasks: BackgroundTasks, job_id: str, enqueuer: TaskEnqueuer) -> None:
  """Schedule immediate processing via the configured task enqueuer."""

  async def _dispatch() -> None:
    try:
      await enqueuer.enqueue(job_id)
    except Exception as exc:  # noqa: BLE001
      # The job stays queued, so the next polling trigger still picks it up.
      logger.error("Failed to dispatch job %s: %s", job_id, exc, exc_info=True)

  background_tasks.add_task(_dispatch)


async def get_audio_status(queue: JobQueue, storage: AudioStorage, settings: Settings, *, identity: str, job_id: str | None = None, local_date: str | None = None, mark_completed: bool = False) -> AudioStatusResponse:
  """Resolve a job by id or by the caller's local date and describe its artifact."""
  if job_id:
    record = await queue.get(job_id)
  elif local_date:
    if not _DATE_PATTERN.match(local_date):
      raise JobValidationError("date", "date must be formatted YYYY-MM-DD.")
    record = await queue.latest_for_date(identity, local_date)
  else:
    raise JobValidationError("job_id", "Provide job_id or date.")

  # Another identity's job is indistinguishable from a missing one.
  if record is None or record.user_id != identity:
    return AudioStatusResponse(status="not_found", job_id=job_id, local_date=local_date)

  response = await _status_from_record(record, storage, settings)
  if response.status == "ready" and mark_completed:
    await queue.mark_user_completed(record.job_id)
  return response


async def _status_from_record(record: JobRecord, storage: AudioStorage, settings: Settings) -> AudioStatusResponse:
  base = {"job_id": record.job_id, "local_date": record.local_date}
  if record.status in ("queued", "processing"):
    return AudioStatusResponse(status="processing", estimated_ready_time=record.estimated_ready_time, **base)
  if record.status == "failed":
    return AudioStatusResponse(status="failed", error_code=record.error_code, error_message=_failure_summary(record), **base)
  if record.status == "cancelled":
    return AudioStatusResponse(status="not_found", error_code="superseded", error_message="This briefing was replaced by a newer request.", **base)
  if not record.audio_file_path:
    return AudioStatusResponse(status="not_found", error_code="audio_expired", error_message="The audio for this briefing is no longer available.", **base)
  audio_url = await storage.generate_signed_url(record.audio_file_path, ttl_seconds=settings.signed_url_ttl_seconds)
  return AudioStatusResponse(status="ready", audio_url=audio_url, duration=record.audio_duration, transcript=record.script_content, **base)


def _failure_summary(record: JobRecord) -> str:
  if record.error_code == "LEASE_EXPIRED":
    return "Your briefing took too long to generate. Please try again."
  if record.error_code in ("tts_rejected", "tts_unavailable", "tts_quota"):
    return "We couldn't narrate your briefing. Please try again later."
  return "We couldn't generate your briefing. Please try again later."


async def process_job_now(worker: JobWorker, job_id: str) -> None:
  """Background entry point for a dispatched task."""
  try:
    outcome = await worker.process_specific(job_id)
  except Exception:  # noqa: BLE001
    logger.error("Immediate processing of job %s failed", job_id, exc_info=True)
    return
  logger.info("Immediate processing of job %s finished: %s", job_id, outcome)


async def run_worker_batch(worker: JobWorker, max_jobs: int | None = None) -> None:
  """Background entry point for the polling trigger."""
  try:
    await worker.run_batch(max_jobs)
  except Exception:  # noqa: BLE001
    logger.error("Worker batch %s aborted", worker.worker_id, exc_info=True)
