"""Database failure classification and retry behaviour."""

from __future__ import annotations

from unittest.mock import AsyncMock, patch

import pytest
from sqlalchemy.exc import DBAPIError, IntegrityError

from app.utils.db_retry import classify_db_failure, execute_with_retry, is_unique_violation


class _DriverError(Exception):
  def __init__(self, sqlstate: str) -> None:
    super().__init__(f"sqlstate {sqlstate}")
    self.sqlstate = sqlstate


def _db_error(sqlstate: str) -> DBAPIError:
  return DBAPIError("UPDATE daystart_jobs", {}, _DriverError(sqlstate))


def test_serialization_failure_is_retryable() -> None:
  classification = classify_db_failure(_db_error("40001"))
  assert classification.retryable
  assert classification.category == "serialization_conflict"


def test_lock_timeout_fails_fast() -> None:
  assert not classify_db_failure(_db_error("55P03")).retryable


def test_unique_violation_detected_by_constraint_name() -> None:
  exc = IntegrityError("INSERT", {}, Exception('duplicate key value violates unique constraint "ux_daystart_jobs_active_user_date"'))
  assert is_unique_violation(exc)
  assert is_unique_violation(exc, "ux_daystart_jobs_active_user_date")
  assert not is_unique_violation(exc, "audio_artifacts_job_id_key")
  assert not is_unique_violation(ValueError("nope"))


@pytest.mark.anyio
async def test_execute_with_retry_retries_transient_then_succeeds() -> None:
  calls = {"count": 0}

  async def flaky() -> str:
    calls["count"] += 1
    if calls["count"] < 3:
      raise _db_error("40P01")
    return "ok"

  with patch("app.utils.db_retry.asyncio.sleep", new_callable=AsyncMock):
    result = await execute_with_retry(operation_name="claim_jobs", func=flaky, jitter=False)

  assert result == "ok"
  assert calls["count"] == 3


@pytest.mark.anyio
async def test_execute_with_retry_raises_non_retryable_immediately() -> None:
  calls = {"count": 0}

  async def broken() -> None:
    calls["count"] += 1
    raise _db_error("42P01")

  with pytest.raises(DBAPIError):
    await execute_with_retry(operation_name="claim_jobs", func=broken)
  assert calls["count"] == 1
