"""Error taxonomy shared by the queue, worker, content pipeline and sweeper."""

from __future__ import annotations


class DayStartError(RuntimeError):
  """Base class for expected pipeline failures."""

  code = "internal_error"

  def __init__(self, message: str, *, code: str | None = None) -> None:
    super().__init__(message)
    if code is not None:
      self.code = code


class JobValidationError(DayStartError):
  """Raised when an enqueue request is malformed; the job is never created."""

  code = "invalid_field"

  def __init__(self, field: str, message: str) -> None:
    super().__init__(message)
    self.field = field


class DuplicateActiveJobError(DayStartError):
  """Raised when an identity already has a job for the requested date."""

  code = "duplicate_active_job"

  def __init__(self, message: str, *, existing_job_id: str | None = None, existing_status: str | None = None, code: str | None = None) -> None:
    super().__init__(message, code=code)
    self.existing_job_id = existing_job_id
    self.existing_status = existing_status


class TransientSourceError(DayStartError):
  """Upstream content, TTS or network failure that may succeed on retry."""

  code = "transient_source_error"

  def __init__(self, message: str, *, source: str | None = None, code: str | None = None) -> None:
    super().__init__(message, code=code)
    self.source = source


class RateLimitError(TransientSourceError):
  """A provider budget is exhausted for the current window."""

  code = "rate_limited"


class PermanentSourceError(DayStartError):
  """An upstream source rejected the request; retrying will not help."""

  code = "source_rejected"

  def __init__(self, message: str, *, source: str | None = None, code: str | None = None) -> None:
    super().__init__(message, code=code)
    self.source = source


class PermanentJobError(DayStartError):
  """The job cannot be produced (content policy rejection, invalid persisted state)."""

  code = "permanent_job_error"


class LeaseConflictError(DayStartError):
  """The caller no longer holds the lease on a job."""

  code = "lease_conflict"

  def __init__(self, job_id: str, worker_id: str) -> None:
    super().__init__(f"Worker {worker_id} does not hold the lease on job {job_id}.")
    self.job_id = job_id
    self.worker_id = worker_id


class StorageError(DayStartError):
  """Artifact write or delete failed."""

  code = "storage_error"

  def __init__(self, message: str, *, object_name: str | None = None) -> None:
    super().__init__(message)
    self.object_name = object_name
