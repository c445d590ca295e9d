from __future__ import annotations

from typing import Protocol


class TaskEnqueuer(Protocol):
  """Interface for dispatching immediate job processing."""

  async def enqueue(self, job_id: str) -> None:
    """Ask a worker to process one job now."""
    ...
