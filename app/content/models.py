"""Normalized content records and tagged cache lookup results."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Literal

import msgspec

FetchStatus = Literal["success", "failed_used_cache", "failed_no_cache", "rate_limited"]
FreshnessBucket = Literal["fresh", "recent", "stale", "cache_only", "critical"]

# Content types backed by upstream sources; calendar and quotes resolve locally.
SOURCE_CONTENT_TYPES = ("weather", "news", "sports", "stocks")


class ContentItem(msgspec.Struct, frozen=True, omit_defaults=True):
  """One headline, game, quote or forecast in provider-neutral form."""

  headline: str
  detail: str = ""
  source: str | None = None
  url: str | None = None
  published_at: str | None = None
  score: float = 0.0
  data: dict[str, Any] = msgspec.field(default_factory=dict)


class NormalizedContent(msgspec.Struct, frozen=True):
  """Adapter output persisted as the cache payload."""

  content_type: str
  scope: str
  source: str
  fetched_at: datetime
  items: list[ContentItem] = msgspec.field(default_factory=list)

  def to_payload(self) -> dict[str, Any]:
    """Convert to JSON-compatible builtins for JSONB storage."""
    return msgspec.to_builtins(self)

  @classmethod
  def from_payload(cls, payload: dict[str, Any]) -> NormalizedContent:
    return msgspec.convert(payload, type=cls)

  def summary(self) -> dict[str, Any]:
    return {"items": len(self.items), "source": self.source, "first": self.items[0].headline if self.items else None}


@dataclass(frozen=True)
class Present:
  """A fresh cache hit, or a payload refreshed during this lookup."""

  content: NormalizedContent


@dataclass(frozen=True)
class Stale:
  """An expired payload served because a refresh failed or is owned elsewhere."""

  content: NormalizedContent
  reason: str


@dataclass(frozen=True)
class Absent:
  """No usable payload exists for the key."""

  reason: str


ContentLookup = Present | Stale | Absent


def usable_content(lookup: ContentLookup) -> NormalizedContent | None:
  """Return the payload from a Present or Stale lookup when it carries items."""
  if isinstance(lookup, Present | Stale) and lookup.content.items:
    return lookup.content
  return None


@dataclass(frozen=True)
class CachedContent:
  """A cache row as read from storage."""

  content: NormalizedContent
  fetched_at: datetime
  expires_at: datetime

  def is_fresh(self, now: datetime) -> bool:
    return self.expires_at > now

  def age_hours(self, now: datetime) -> float:
    return round((now - self.fetched_at).total_seconds() / 3600, 2)


def freshness_bucket(age_hours: float | None) -> FreshnessBucket:
  """Classify cache age for the content status report."""
  if age_hours is None:
    return "critical"
  if age_hours < 1:
    return "fresh"
  if age_hours < 6:
    return "recent"
  if age_hours < 12:
    return "stale"
  if age_hours < 24:
    return "cache_only"
  return "critical"
