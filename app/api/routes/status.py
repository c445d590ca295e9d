import logging
from typing import Annotated

from fastapi import APIRouter, Depends, Query, Request

from app.api.deps import get_audio_storage, get_content_cache, get_job_queue
from app.api.models import AudioStatusResponse, ContentStatusResponse
from app.config import Settings, get_settings
from app.content.cache import ContentCache
from app.core.security import require_identity, require_worker_token
from app.jobs.queue import JobQueue
from app.services import jobs as job_service
from app.services.storage_client import AudioStorage

router = APIRouter()
logger = logging.getLogger("app.api.routes.status")


@router.get("/get_audio_status", response_model=AudioStatusResponse)
async def get_audio_status(
  request: Request,
  identity: Annotated[str, Depends(require_identity)],
  queue: Annotated[JobQueue, Depends(get_job_queue)],
  storage: Annotated[AudioStorage, Depends(get_audio_storage)],
  settings: Annotated[Settings, Depends(get_settings)],
  job_id: Annotated[str | None, Query(max_length=64)] = None,
  date: Annotated[str | None, Query(max_length=10)] = None,
  mark_completed: bool = False,
) -> AudioStatusResponse:
  """Poll a briefing by job id or by local date."""
  response = await job_service.get_audio_status(queue, storage, settings, identity=identity, job_id=job_id, local_date=date, mark_completed=mark_completed)
  response.request_id = getattr(request.state, "request_id", None)
  return response


@router.get("/content_status", response_model=ContentStatusResponse, dependencies=[Depends(require_worker_token)])
async def content_status(request: Request, cache: Annotated[ContentCache, Depends(get_content_cache)]) -> ContentStatusResponse:
  """Report how fresh each cached content type is."""
  summary = await cache.freshness_summary()
  return ContentStatusResponse(request_id=getattr(request.state, "request_id", None), **summary)
