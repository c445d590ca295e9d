"""Unit tests for API exception sanitization and error mapping."""

from __future__ import annotations

import pytest

from app.core.errors import DayStartError, DuplicateActiveJobError, JobValidationError, LeaseConflictError, PermanentJobError, RateLimitError, StorageError, TransientSourceError
from app.core.exceptions import _daystart_status, _sanitize_validation_errors


def test_sanitize_validation_errors_removes_input_and_serializes_exception_ctx() -> None:
  """Ensure validation errors stay JSON-serializable and redact raw request payloads."""
  errors = [{"type": "value_error", "loc": ("body", "preferred_name"), "msg": "Value error, name too long.", "input": {"preferred_name": "Sam"}, "ctx": {"error": ValueError("name too long."), "input": {"preferred_name": "Sam"}}}]
  sanitized = _sanitize_validation_errors(errors)
  assert "input" not in sanitized[0]
  assert sanitized[0]["ctx"]["error"] == "ValueError: name too long."
  assert "input" not in sanitized[0]["ctx"]
  assert sanitized[0]["loc"] == ["body", "preferred_name"]


@pytest.mark.parametrize(
  ("exc", "expected"),
  [
    (JobValidationError("daystart_length", "too long"), 400),
    (DuplicateActiveJobError("exists", existing_job_id="job-1"), 409),
    (LeaseConflictError("job-1", "w1"), 409),
    (RateLimitError("budget spent", source="newsapi"), 429),
    (TransientSourceError("upstream 503", source="espn"), 503),
    (StorageError("upload failed", object_name="a.mp3"), 503),
    (PermanentJobError("rejected"), 500),
    (DayStartError("unexpected"), 500),
  ],
)
def test_daystart_errors_map_to_http_status(exc: DayStartError, expected: int) -> None:
  assert _daystart_status(exc) == expected


def test_duplicate_error_keeps_specific_code() -> None:
  exc = DuplicateActiveJobError("done", existing_job_id="job-1", existing_status="completed", code="already_completed")
  assert exc.code == "already_completed"
  assert DuplicateActiveJobError("active").code == "duplicate_active_job"
