from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import Annotated

from fastapi import APIRouter, BackgroundTasks, Depends, Request, status

from app.api.deps import get_cleanup_sweeper, get_content_cache, get_job_worker
from app.api.models import CleanupResponse, ProcessJobsResponse, RefreshContentRequest, RefreshContentResponse, SourceRefreshResult
from app.content.cache import ContentCache
from app.core.security import require_cleanup_token, require_worker_token
from app.jobs.worker import JobWorker
from app.services.cleanup import CleanupSweeper
from app.services.jobs import run_worker_batch

router = APIRouter()
logger = logging.getLogger(__name__)


@router.post("/process_jobs", response_model=ProcessJobsResponse, status_code=status.HTTP_202_ACCEPTED, dependencies=[Depends(require_worker_token)])
async def process_jobs(request: Request, background_tasks: BackgroundTasks, worker: Annotated[JobWorker, Depends(get_job_worker)]) -> ProcessJobsResponse:
  """Acknowledge the trigger and process a batch once the response is sent."""
  started_at = datetime.now(UTC)
  logger.info("Processing trigger accepted worker=%s", worker.worker_id)
  background_tasks.add_task(run_worker_batch, worker)
  return ProcessJobsResponse(message="Job processing started.", worker_id=worker.worker_id, started_at=started_at, request_id=getattr(request.state, "request_id", None))


@router.post("/refresh_content", response_model=RefreshContentResponse, dependencies=[Depends(require_worker_token)])
async def refresh_content(request: Request, cache: Annotated[ContentCache, Depends(get_content_cache)], payload: RefreshContentRequest | None = None) -> RefreshContentResponse:
  """Refetch every configured and cached content scope."""
  content_types = list(payload.content_types) if payload and payload.content_types else None
  summary = await cache.refresh_all(content_types)
  results = [SourceRefreshResult(content_type=result.content_type, scope=result.scope, source=result.source, status=result.status, error=result.error) for result in summary.results]
  return RefreshContentResponse(success=summary.success, successful=summary.successful, failed=summary.failed, duration_ms=summary.duration_ms, results=results, request_id=getattr(request.state, "request_id", None))


@router.post("/cleanup-audio", response_model=CleanupResponse, dependencies=[Depends(require_cleanup_token)])
async def cleanup_audio(request: Request, sweeper: Annotated[CleanupSweeper, Depends(get_cleanup_sweeper)]) -> CleanupResponse:
  """Run the retention sweep; repeated calls within the interval are recorded as skipped."""
  run = await sweeper.sweep()
  return CleanupResponse(
    status=run.status,
    files_scanned=run.files_scanned,
    files_deleted=run.files_deleted,
    files_failed=run.files_failed,
    cache_rows_deleted=run.cache_rows_deleted,
    jobs_purged=run.jobs_purged,
    fetch_logs_deleted=run.fetch_logs_deleted,
    rate_counters_deleted=run.rate_counters_deleted,
    errors=list(run.errors or []),
    runtime_seconds=run.runtime_seconds,
    request_id=getattr(request.state, "request_id", None),
  )
