from __future__ import annotations

import logging
from typing import Annotated

from fastapi import APIRouter, BackgroundTasks, Depends, status

from app.api.deps import get_job_worker
from app.api.models import ProcessJobTask
from app.core.security import require_task_secret
from app.jobs.worker import JobWorker
from app.services.jobs import process_job_now

router = APIRouter(prefix="/tasks", tags=["tasks"])
logger = logging.getLogger(__name__)


@router.post("/process-job", status_code=status.HTTP_200_OK, dependencies=[Depends(require_task_secret)])
async def process_job_task(payload: ProcessJobTask, background_tasks: BackgroundTasks, worker: Annotated[JobWorker, Depends(get_job_worker)]) -> dict[str, str]:
  """
  Handler for Cloud Tasks (and local simulation).
  Accepts the task quickly and processes the job in the background so dispatchers get a fast 2xx.
  """
  logger.info("Received task for job %s", payload.job_id)
  background_tasks.add_task(process_job_now, worker, payload.job_id)
  return {"status": "accepted"}
