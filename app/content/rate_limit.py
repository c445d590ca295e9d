"""Centrally persisted provider request budgets."""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any, Protocol

from sqlalchemy.dialects.postgresql import Insert, insert

from app.core.database import get_session_factory
from app.core.errors import RateLimitError
from app.schema.content import ProviderRateCounter

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProviderBudget:
  limit: int
  window_seconds: int


def parse_budgets(raw: dict[str, Any]) -> dict[str, ProviderBudget]:
  """Parse `{provider: {"limit": n, "window_seconds": s}}` into budgets."""
  budgets: dict[str, ProviderBudget] = {}
  for provider, entry in raw.items():
    if not isinstance(entry, dict):
      raise ValueError(f"Budget for provider '{provider}' must be an object.")
    limit = int(entry.get("limit", 0))
    window_seconds = int(entry.get("window_seconds", 86400))
    if limit < 0 or window_seconds <= 0:
      raise ValueError(f"Budget for provider '{provider}' must have limit >= 0 and window_seconds > 0.")
    budgets[provider] = ProviderBudget(limit=limit, window_seconds=window_seconds)
  return budgets


def window_start(now: datetime, window_seconds: int) -> int:
  """Return the epoch second the fixed window containing `now` started."""
  epoch = int(now.timestamp())
  return (epoch // window_seconds) * window_seconds


def budget_increment_statement(provider: str, *, window: int, limit: int, now: datetime) -> Insert:
  """Build the increment-and-check upsert; a row is returned only while budget remains."""
  stmt = insert(ProviderRateCounter).values(provider=provider, window_start=window, request_count=1, request_limit=limit, updated_at=now)
  # The WHERE on the conflict branch turns an exhausted window into "no row returned".
  return stmt.on_conflict_do_update(
    index_elements=[ProviderRateCounter.provider, ProviderRateCounter.window_start],
    set_={"request_count": ProviderRateCounter.request_count + 1, "request_limit": limit, "updated_at": now},
    where=ProviderRateCounter.request_count < limit,
  ).returning(ProviderRateCounter.request_count)


class RateLimiter(Protocol):
  """Shared request budget checked before every upstream call."""

  async def acquire(self, provider: str) -> None:
    """Consume one request from the provider budget or raise RateLimitError."""


class PostgresRateLimiter:
  """Budget counters stored in `provider_rate_counters` and updated atomically."""

  def __init__(self, budgets: dict[str, ProviderBudget], *, clock: Callable[[], datetime] | None = None) -> None:
    self._budgets = budgets
    self._clock = clock or (lambda: datetime.now(UTC))
    self._session_factory = get_session_factory()
    if self._session_factory is None:
      raise RuntimeError("Database not initialized")

  async def acquire(self, provider: str) -> None:
    budget = self._budgets.get(provider)
    # Unconfigured providers are unlimited.
    if budget is None:
      return
    if budget.limit == 0:
      raise RateLimitError(f"Provider {provider} has no request budget.", source=provider)
    now = self._clock()
    window = window_start(now, budget.window_seconds)
    stmt = budget_increment_statement(provider, window=window, limit=budget.limit, now=now)
    async with self._session_factory() as session:
      async with session.begin():
        count = (await session.execute(stmt)).scalar_one_or_none()
    if count is None:
      logger.warning("Provider %s exhausted budget %d for window %d", provider, budget.limit, window)
      raise RateLimitError(f"Provider {provider} exceeded {budget.limit} requests per {budget.window_seconds}s.", source=provider)
    logger.debug("Provider %s request %d/%d window=%d", provider, count, budget.limit, window)
