"""Postgres-backed repository for the content cache using SQLAlchemy."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import delete, func, select
from sqlalchemy.dialects.postgresql import Insert, insert

from app.content.models import CachedContent, FetchStatus, NormalizedContent
from app.core.database import get_session_factory
from app.schema.content import ContentCacheEntry, ContentFetchLog, ContentRefreshLease
from app.storage.content_repo import ContentRepository


def refresh_lease_statement(content_type: str, scope: str, *, holder: str, now: datetime, lease_until: datetime) -> Insert:
  """Claim a refresh lease; the conflict branch only fires when the current lease has lapsed."""
  stmt = insert(ContentRefreshLease).values(content_type=content_type, scope=scope, holder=holder, lease_until=lease_until)
  return stmt.on_conflict_do_update(
    index_elements=[ContentRefreshLease.content_type, ContentRefreshLease.scope],
    set_={"holder": holder, "lease_until": lease_until},
    where=ContentRefreshLease.lease_until < now,
  ).returning(ContentRefreshLease.holder)


class PostgresContentRepository(ContentRepository):
  """Persist cached content to Postgres using SQLAlchemy."""

  def __init__(self) -> None:
    self._session_factory = get_session_factory()
    if self._session_factory is None:
      raise RuntimeError("Database not initialized")

  async def get_entry(self, content_type: str, scope: str) -> CachedContent | None:
    async with self._session_factory() as session:
      row = await session.get(ContentCacheEntry, (content_type, scope))
      if row is None:
        return None
      return CachedContent(content=NormalizedContent.from_payload(row.payload), fetched_at=row.fetched_at, expires_at=row.expires_at)

  async def upsert_entry(self, content: NormalizedContent, *, expires_at: datetime) -> None:
    async with self._session_factory() as session:
      async with session.begin():
        values = {"payload": content.to_payload(), "source": content.source, "fetched_at": content.fetched_at, "expires_at": expires_at}
        stmt = insert(ContentCacheEntry).values(content_type=content.content_type, scope=content.scope, **values)
        await session.execute(stmt.on_conflict_do_update(index_elements=[ContentCacheEntry.content_type, ContentCacheEntry.scope], set_=values))

  async def acquire_refresh_lease(self, content_type: str, scope: str, *, holder: str, now: datetime, lease_until: datetime) -> bool:
    async with self._session_factory() as session:
      async with session.begin():
        result = await session.execute(refresh_lease_statement(content_type, scope, holder=holder, now=now, lease_until=lease_until))
        return result.scalar_one_or_none() is not None

  async def release_refresh_lease(self, content_type: str, scope: str, *, holder: str) -> None:
    async with self._session_factory() as session:
      async with session.begin():
        await session.execute(delete(ContentRefreshLease).where(ContentRefreshLease.content_type == content_type, ContentRefreshLease.scope == scope, ContentRefreshLease.holder == holder))

  async def list_scopes(self, content_type: str) -> list[str]:
    async with self._session_factory() as session:
      stmt = select(ContentCacheEntry.scope).where(ContentCacheEntry.content_type == content_type).order_by(ContentCacheEntry.scope)
      return [str(scope) for scope in (await session.execute(stmt)).scalars().all()]

  async def record_fetch(self, content_type: str, scope: str, *, fetch_status: FetchStatus, source: str | None, cached_age_hours: float | None, error_message: str | None, payload_summary: dict[str, Any] | None, now: datetime) -> None:
    async with self._session_factory() as session:
      async with session.begin():
        session.add(ContentFetchLog(content_type=content_type, scope=scope, source=source, fetch_status=fetch_status, cached_age_hours=cached_age_hours, error_message=error_message, payload_summary=payload_summary, created_at=now))

  async def newest_fetches(self) -> dict[str, datetime]:
    async with self._session_factory() as session:
      stmt = select(ContentCacheEntry.content_type, func.max(ContentCacheEntry.fetched_at)).group_by(ContentCacheEntry.content_type)
      return {str(content_type): fetched_at for content_type, fetched_at in (await session.execute(stmt)).all()}

  async def fetch_status_counts(self, *, since: datetime) -> dict[str, dict[str, int]]:
    async with self._session_factory() as session:
      stmt = select(ContentFetchLog.content_type, ContentFetchLog.fetch_status, func.count()).where(ContentFetchLog.created_at >= since).group_by(ContentFetchLog.content_type, ContentFetchLog.fetch_status)
      counts: dict[str, dict[str, int]] = {}
      for content_type, fetch_status, total in (await session.execute(stmt)).all():
        counts.setdefault(str(content_type), {})[str(fetch_status)] = int(total)
      return counts
