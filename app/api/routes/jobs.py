import logging
from typing import Annotated

from fastapi import APIRouter, BackgroundTasks, Depends, Request, status

from app.api.deps import get_enqueuer, get_job_queue
from app.api.models import CreateJobRequest, CreateJobResponse
from app.core.security import require_identity, resolve_access_tier
from app.jobs.models import AccessTier
from app.jobs.queue import JobQueue
from app.services import jobs as job_service
from app.services.tasks.interface import TaskEnqueuer

router = APIRouter()
logger = logging.getLogger("app.api.routes.jobs")


@router.post("/create_job", response_model=CreateJobResponse, status_code=status.HTTP_201_CREATED)
async def create_job(
  payload: CreateJobRequest,
  request: Request,
  background_tasks: BackgroundTasks,
  identity: Annotated[str, Depends(require_identity)],
  access_tier: Annotated[AccessTier, Depends(resolve_access_tier)],
  queue: Annotated[JobQueue, Depends(get_job_queue)],
  enqueuer: Annotated[TaskEnqueuer, Depends(get_enqueuer)],
) -> CreateJobResponse:
  """Validate and enqueue a briefing for the caller's local date."""
  response = await job_service.create_job(payload, queue, background_tasks, enqueuer, identity=identity, access_tier=access_tier)
  response.request_id = getattr(request.state, "request_id", None)
  return response
