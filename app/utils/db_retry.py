"""Database failure classification and retry for queue and cache statements."""

from __future__ import annotations

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TypeVar

from sqlalchemy.exc import DBAPIError, IntegrityError, InterfaceError, OperationalError

logger = logging.getLogger(__name__)

T = TypeVar("T")

# SQLSTATE -> (retryable, category, reason)
_SQLSTATE_RULES: dict[str, tuple[bool, str, str]] = {
  "40001": (True, "serialization_conflict", "Serialization failure - transaction conflict"),
  "40P01": (True, "deadlock", "Deadlock detected"),
  "55P03": (False, "lock_timeout", "Lock not available (NOWAIT)"),
  "57014": (False, "query_timeout", "Query canceled (timeout)"),
  "57P01": (True, "connectivity_error", "Server terminated the connection (admin shutdown)"),
  "08000": (True, "connectivity_error", "Connection exception"),
  "08003": (True, "connectivity_error", "Connection does not exist"),
  "08006": (True, "connectivity_error", "Connection failure"),
}

_SQLSTATE_CLASSES: dict[str, tuple[str, str]] = {"23": ("integrity_error", "Integrity violation"), "42": ("schema_error", "Schema/SQL error (undefined table/column, syntax error)"), "28": ("permission_error", "Authentication/permission error")}

_CONNECTIVITY_PATTERNS = ("connection", "timeout", "reset", "network", "broken pipe", "lost connection", "closed")


@dataclass(frozen=True)
class DBFailureClassification:
  """Classification result for a database failure."""

  retryable: bool
  reason: str
  sqlstate: str | None
  category: str


def _extract_sqlstate(exc: BaseException) -> str | None:
  """Extract the Postgres SQLSTATE from a wrapped driver exception."""
  if not isinstance(exc, DBAPIError):
    return None
  orig = getattr(exc, "orig", None)
  # asyncpg exposes sqlstate; psycopg exposes pgcode.
  for attribute in ("sqlstate", "pgcode"):
    value = getattr(orig, attribute, None)
    if value:
      return str(value)
  return None


def classify_db_failure(exc: BaseException) -> DBFailureClassification:
  """
  Classify a database failure as retryable or not.

  Serialization failures, deadlocks and connection drops are retried. Integrity,
  schema and permission errors fail fast; so does anything unrecognised.
  """
  sqlstate = _extract_sqlstate(exc)

  if sqlstate in _SQLSTATE_RULES:
    retryable, category, reason = _SQLSTATE_RULES[sqlstate]
    return DBFailureClassification(retryable=retryable, reason=reason, sqlstate=sqlstate, category=category)

  if sqlstate and sqlstate[:2] in _SQLSTATE_CLASSES:
    category, reason = _SQLSTATE_CLASSES[sqlstate[:2]]
    return DBFailureClassification(retryable=False, reason=reason, sqlstate=sqlstate, category=category)

  if isinstance(exc, IntegrityError):
    return DBFailureClassification(retryable=False, reason="Integrity constraint violation (detected by exception type)", sqlstate=sqlstate, category="integrity_error")

  if isinstance(exc, OperationalError | InterfaceError | ConnectionError | OSError):
    message = str(exc).lower()
    if isinstance(exc, ConnectionError | OSError) or any(pattern in message for pattern in _CONNECTIVITY_PATTERNS):
      return DBFailureClassification(retryable=True, reason="Transient connection/network error", sqlstate=sqlstate, category="connectivity_error")
    return DBFailureClassification(retryable=False, reason="Operational error (unknown cause)", sqlstate=sqlstate, category="operational_error_unknown")

  return DBFailureClassification(retryable=False, reason=f"Unknown error type: {type(exc).__name__}", sqlstate=sqlstate, category="unknown_error")


def is_unique_violation(exc: BaseException, constraint_name: str | None = None) -> bool:
  """Return True when exc is a unique violation, optionally on a named constraint."""
  if _extract_sqlstate(exc) != "23505" and not isinstance(exc, IntegrityError):
    return False
  if constraint_name is None:
    return True
  return constraint_name in str(exc)


async def execute_with_retry(*, operation_name: str, func: Callable[[], Awaitable[T]], max_attempts: int = 3, initial_backoff_ms: int = 100, max_backoff_ms: int = 2000, jitter: bool = True) -> T:
  """
  Execute an idempotent database operation, retrying transient failures.

  Args:
    operation_name: Human-readable name for logging (e.g., "claim_jobs")
    func: Async callable to execute
    max_attempts: Maximum number of attempts including the first
    initial_backoff_ms: Starting backoff delay in milliseconds
    max_backoff_ms: Maximum backoff delay in milliseconds
    jitter: Add +/-25% randomness to each delay

  Raises:
    The original exception if non-retryable or attempts are exhausted
  """
  attempt = 0
  while True:
    attempt += 1
    try:
      result = await func()
    except Exception as exc:
      classification = classify_db_failure(exc)
      logger.warning(
        "DB operation failed: operation=%s, attempt=%d/%d, category=%s, sqlstate=%s, retryable=%s, reason=%s",
        operation_name,
        attempt,
        max_attempts,
        classification.category,
        classification.sqlstate or "none",
        classification.retryable,
        classification.reason,
        exc_info=(not classification.retryable),
      )
      if not classification.retryable or attempt >= max_attempts:
        raise

      backoff_ms = min(initial_backoff_ms * (2 ** (attempt - 1)), max_backoff_ms)
      if jitter:
        jitter_range = backoff_ms * 0.25
        backoff_ms += random.uniform(-jitter_range, jitter_range)
      logger.info("Retrying DB operation after backoff: operation=%s, attempt=%d/%d, backoff_ms=%.1f", operation_name, attempt, max_attempts, backoff_ms)
      await asyncio.sleep(backoff_ms / 1000.0)
      continue

    if attempt > 1:
      logger.info("DB operation succeeded after retry: operation=%s, attempt=%d/%d", operation_name, attempt, max_attempts)
    return result
