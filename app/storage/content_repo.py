"""Storage interfaces for cached upstream content."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Protocol

from app.content.models import CachedContent, FetchStatus, NormalizedContent


class ContentRepository(Protocol):
  """Repository contract for the content cache, refresh leases and fetch log."""

  async def get_entry(self, content_type: str, scope: str) -> CachedContent | None:
    """Return the cached payload for a key, expired or not."""

  async def upsert_entry(self, content: NormalizedContent, *, expires_at: datetime) -> None:
    """Insert or overwrite the payload for the content's key."""

  async def acquire_refresh_lease(self, content_type: str, scope: str, *, holder: str, now: datetime, lease_until: datetime) -> bool:
    """Take the refresh lease for a key unless another holder's lease is still live."""

  async def release_refresh_lease(self, content_type: str, scope: str, *, holder: str) -> None:
    """Drop the refresh lease if the caller still holds it."""

  async def list_scopes(self, content_type: str) -> list[str]:
    """Return every cached scope for a content type."""

  async def record_fetch(self, content_type: str, scope: str, *, fetch_status: FetchStatus, source: str | None, cached_age_hours: float | None, error_message: str | None, payload_summary: dict[str, Any] | None, now: datetime) -> None:
    """Append one fetch outcome to the fetch log."""

  async def newest_fetches(self) -> dict[str, datetime]:
    """Return the newest fetched_at per content type across all scopes."""

  async def fetch_status_counts(self, *, since: datetime) -> dict[str, dict[str, int]]:
    """Return fetch-log outcome counts per content type since a timestamp."""
