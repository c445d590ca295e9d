"""Time-windowed content cache with single-flight refresh."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import Any, Literal

from app.config import Settings
from app.content.adapters.base import SourceAdapter
from app.content.models import Absent, CachedContent, ContentLookup, FetchStatus, FreshnessBucket, Present, Stale, freshness_bucket
from app.core.errors import DayStartError, RateLimitError
from app.storage.content_repo import ContentRepository

logger = logging.getLogger(__name__)

REFRESH_IN_PROGRESS = "refresh_in_progress"
_BUCKET_ORDER: tuple[FreshnessBucket, ...] = ("fresh", "recent", "stale", "cache_only", "critical")
_REFRESH_CONCURRENCY = 4


@dataclass(frozen=True)
class RefreshResult:
  content_type: str
  scope: str
  status: Literal["success", "failed", "skipped"]
  source: str | None = None
  error: str | None = None


@dataclass
class _KeyLock:
  lock: asyncio.Lock = field(default_factory=asyncio.Lock)
  users: int = 0


@dataclass
class RefreshSummary:
  successful: int = 0
  failed: int = 0
  duration_ms: int = 0
  results: list[RefreshResult] = field(default_factory=list)

  @property
  def success(self) -> bool:
    return self.failed == 0


class ContentCache:
  """Serve upstream content from the cache, refreshing expired keys through adapters.

  Lookups never raise for source failures: the result is Present, Stale or Absent.
  One refresh per key runs at a time, in-process via a per-key lock and across
  processes via a lease row.
  """

  def __init__(self, repo: ContentRepository, adapters: dict[str, SourceAdapter], settings: Settings, *, holder: str, clock: Callable[[], datetime] | None = None) -> None:
    self._repo = repo
    self._adapters = adapters
    self._settings = settings
    self._holder = holder
    self._clock = clock or (lambda: datetime.now(UTC))
    self._locks: dict[tuple[str, str], _KeyLock] = {}

  @property
  def ttl(self) -> timedelta:
    return timedelta(hours=self._settings.content_ttl_hours)

  @asynccontextmanager
  async def _locked(self, content_type: str, scope: str) -> AsyncIterator[None]:
    """Hold the per-key lock; the entry is dropped once nobody holds or awaits it."""
    key = (content_type, scope)
    entry = self._locks.setdefault(key, _KeyLock())
    entry.users += 1
    try:
      async with entry.lock:
        yield
    finally:
      entry.users -= 1
      if entry.users == 0:
        del self._locks[key]

  async def get(self, content_type: str, scope: str) -> ContentLookup:
    """Return cached content for a key, refreshing it when expired or missing."""
    adapter = self._adapters.get(content_type)
    if adapter is None:
      return Absent("unsupported_content_type")

    cached = await self._repo.get_entry(content_type, scope)
    if cached is not None and cached.is_fresh(self._clock()):
      return Present(cached.content)

    async with self._locked(content_type, scope):
      # A coroutine that held the lock before us may already have refreshed the key.
      cached = await self._repo.get_entry(content_type, scope)
      if cached is not None and cached.is_fresh(self._clock()):
        return Present(cached.content)
      return await self._refresh(adapter, content_type, scope, cached)

  async def refresh_all(self, content_types: list[str] | None = None) -> RefreshSummary:
    """Refetch every configured and already-cached scope, overwriting entries."""
    started = time.monotonic()
    targets: list[tuple[SourceAdapter, str, str]] = []
    for content_type in content_types or list(self._adapters):
      adapter = self._adapters.get(content_type)
      if adapter is None:
        continue
      scopes = dict.fromkeys(adapter.configured_scopes(self._settings) + await self._repo.list_scopes(content_type))
      targets.extend((adapter, content_type, scope) for scope in scopes)

    semaphore = asyncio.Semaphore(_REFRESH_CONCURRENCY)

    async def _run(adapter: SourceAdapter, content_type: str, scope: str) -> RefreshResult:
      async with semaphore, self._locked(content_type, scope):
        cached = await self._repo.get_entry(content_type, scope)
        lookup = await self._refresh(adapter, content_type, scope, cached)
      if isinstance(lookup, Present):
        return RefreshResult(content_type=content_type, scope=scope, status="success", source=lookup.content.source)
      reason = lookup.reason
      if reason == REFRESH_IN_PROGRESS:
        return RefreshResult(content_type=content_type, scope=scope, status="skipped", error=reason)
      return RefreshResult(content_type=content_type, scope=scope, status="failed", error=reason)

    results = list(await asyncio.gather(*(_run(*target) for target in targets)))
    summary = RefreshSummary(results=results, duration_ms=int((time.monotonic() - started) * 1000))
    summary.successful = sum(1 for result in results if result.status == "success")
    summary.failed = sum(1 for result in results if result.status == "failed")
    logger.info("Content refresh finished successful=%d failed=%d skipped=%d in %dms", summary.successful, summary.failed, len(results) - summary.successful - summary.failed, summary.duration_ms)
    return summary

  async def freshness_summary(self) -> dict[str, Any]:
    """Report the newest payload age per content type with a freshness bucket."""
    now = self._clock()
    newest = await self._repo.newest_fetches()
    counts = await self._repo.fetch_status_counts(since=now - timedelta(hours=24))
    report: list[dict[str, Any]] = []
    for content_type in self._adapters:
      fetched_at = newest.get(content_type)
      age_hours = round((now - fetched_at).total_seconds() / 3600, 2) if fetched_at else None
      report.append({"content_type": content_type, "last_fetched_at": fetched_at, "age_hours": age_hours, "bucket": freshness_bucket(age_hours), "fetches_24h": counts.get(content_type, {})})
    overall = max((entry["bucket"] for entry in report), key=_BUCKET_ORDER.index, default="critical")
    return {"checked_at": now, "overall": overall, "content": report}

  async def _refresh(self, adapter: SourceAdapter, content_type: str, scope: str, cached: CachedContent | None) -> ContentLookup:
    now = self._clock()
    lease_until = now + timedelta(seconds=self._settings.content_refresh_lease_seconds)
    if not await self._repo.acquire_refresh_lease(content_type, scope, holder=self._holder, now=now, lease_until=lease_until):
      logger.info("Refresh of %s/%s owned by another process", content_type, scope)
      if cached is not None:
        return Stale(cached.content, REFRESH_IN_PROGRESS)
      return Absent(REFRESH_IN_PROGRESS)

    try:
      try:
        content = await adapter.fetch(scope)
      except DayStartError as exc:
        return await self._record_failure(content_type, scope, cached, exc.code, str(exc), rate_limited=isinstance(exc, RateLimitError))
      except (KeyError, TypeError, ValueError, AttributeError) as exc:
        logger.exception("Malformed %s payload for %s", content_type, scope)
        return await self._record_failure(content_type, scope, cached, "invalid_payload", str(exc), rate_limited=False)

      await self._repo.upsert_entry(content, expires_at=content.fetched_at + self.ttl)
      await self._repo.record_fetch(content_type, scope, fetch_status="success", source=content.source, cached_age_hours=None, error_message=None, payload_summary=content.summary(), now=self._clock())
      return Present(content)
    finally:
      await self._repo.release_refresh_lease(content_type, scope, holder=self._holder)

  async def _record_failure(self, content_type: str, scope: str, cached: CachedContent | None, code: str, message: str, *, rate_limited: bool) -> ContentLookup:
    now = self._clock()
    status: FetchStatus
    if rate_limited:
      status = "rate_limited"
    else:
      status = "failed_used_cache" if cached is not None else "failed_no_cache"
    age = cached.age_hours(now) if cached is not None else None
    await self._repo.record_fetch(content_type, scope, fetch_status=status, source=cached.content.source if cached else None, cached_age_hours=age, error_message=message[:500], payload_summary=None, now=now)
    logger.warning("Refresh of %s/%s failed code=%s cached_age_hours=%s: %s", content_type, scope, code, age, message)
    if cached is not None:
      return Stale(cached.content, code)
    return Absent(code)
