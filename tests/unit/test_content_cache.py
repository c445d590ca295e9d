"""Content cache lookups, single-flight refresh and freshness reporting."""

from __future__ import annotations

import asyncio
from datetime import timedelta

import pytest

from app.content.cache import REFRESH_IN_PROGRESS, ContentCache
from app.content.models import Absent, ContentItem, NormalizedContent, Present, Stale, usable_content
from app.core.errors import PermanentSourceError, RateLimitError, TransientSourceError
from tests.fakes import StaticAdapter

HEADLINES = [ContentItem(headline="Bay Area transit expands late service", detail="Trains run until 2am."), ContentItem(headline="Storm expected Friday")]


def _cache(content_repo, settings, clock, *adapters: StaticAdapter) -> ContentCache:
  return ContentCache(content_repo, {adapter.content_type: adapter for adapter in adapters}, settings, holder="test-worker", clock=clock)


async def _seed(content_repo, clock, *, content_type: str = "news", scope: str = "us:general", age_hours: float = 0, ttl_hours: float = 12) -> NormalizedContent:
  fetched_at = clock.now - timedelta(hours=age_hours)
  content = NormalizedContent(content_type=content_type, scope=scope, source="newsapi", fetched_at=fetched_at, items=[ContentItem(headline="Yesterday's news")])
  await content_repo.upsert_entry(content, expires_at=fetched_at + timedelta(hours=ttl_hours))
  return content


@pytest.mark.anyio
async def test_fresh_entry_is_served_without_fetching(content_repo, settings, clock) -> None:
  adapter = StaticAdapter("news", HEADLINES, clock=clock)
  seeded = await _seed(content_repo, clock, age_hours=1)

  lookup = await _cache(content_repo, settings, clock, adapter).get("news", "us:general")

  assert lookup == Present(seeded)
  assert adapter.fetches == 0


@pytest.mark.anyio
async def test_missing_entry_is_fetched_and_stored(content_repo, settings, clock) -> None:
  adapter = StaticAdapter("news", HEADLINES, clock=clock)

  lookup = await _cache(content_repo, settings, clock, adapter).get("news", "us:general")

  assert isinstance(lookup, Present)
  assert [item.headline for item in lookup.content.items] == [item.headline for item in HEADLINES]
  stored = content_repo.entries[("news", "us:general")]
  assert stored.expires_at == clock.now + timedelta(hours=settings.content_ttl_hours)
  assert content_repo.fetch_log[-1]["fetch_status"] == "success"
  assert content_repo.leases == {}


@pytest.mark.anyio
async def test_concurrent_misses_trigger_a_single_fetch(content_repo, settings, clock) -> None:
  adapter = StaticAdapter("news", HEADLINES, delay=0.05, clock=clock)
  cache = _cache(content_repo, settings, clock, adapter)

  lookups = await asyncio.gather(*(cache.get("news", "us:general") for _ in range(8)))

  assert adapter.fetches == 1
  assert all(isinstance(lookup, Present) for lookup in lookups)


@pytest.mark.anyio
async def test_failed_refresh_serves_stale_entry(content_repo, settings, clock) -> None:
  adapter = StaticAdapter("news", HEADLINES, error=TransientSourceError("newsapi responded 503.", source="newsapi", code="upstream_unavailable"), clock=clock)
  seeded = await _seed(content_repo, clock, age_hours=14)

  lookup = await _cache(content_repo, settings, clock, adapter).get("news", "us:general")

  assert lookup == Stale(seeded, "upstream_unavailable")
  assert usable_content(lookup) == seeded
  entry = content_repo.fetch_log[-1]
  assert entry["fetch_status"] == "failed_used_cache"
  assert entry["cached_age_hours"] == 14.0


@pytest.mark.anyio
async def test_failed_refresh_without_cache_is_absent(content_repo, settings, clock) -> None:
  adapter = StaticAdapter("news", HEADLINES, error=PermanentSourceError("bad key", source="newsapi"), clock=clock)

  lookup = await _cache(content_repo, settings, clock, adapter).get("news", "us:general")

  assert lookup == Absent("source_rejected")
  assert usable_content(lookup) is None
  assert content_repo.fetch_log[-1]["fetch_status"] == "failed_no_cache"


@pytest.mark.anyio
async def test_rate_limited_refresh_is_logged_as_such(content_repo, settings, clock) -> None:
  adapter = StaticAdapter("news", HEADLINES, error=RateLimitError("budget spent", source="newsapi"), clock=clock)

  lookup = await _cache(content_repo, settings, clock, adapter).get("news", "us:general")

  assert lookup == Absent("rate_limited")
  assert content_repo.fetch_log[-1]["fetch_status"] == "rate_limited"


@pytest.mark.anyio
async def test_refresh_owned_by_another_process_serves_stale(content_repo, settings, clock) -> None:
  adapter = StaticAdapter("news", HEADLINES, clock=clock)
  seeded = await _seed(content_repo, clock, age_hours=13)
  content_repo.leases[("news", "us:general")] = ("other-instance", clock.now + timedelta(seconds=60))

  lookup = await _cache(content_repo, settings, clock, adapter).get("news", "us:general")

  assert lookup == Stale(seeded, REFRESH_IN_PROGRESS)
  assert adapter.fetches == 0


@pytest.mark.anyio
async def test_malformed_payload_is_treated_as_a_failed_fetch(content_repo, settings, clock) -> None:
  adapter = StaticAdapter("news", HEADLINES, error=KeyError("articles"), clock=clock)

  lookup = await _cache(content_repo, settings, clock, adapter).get("news", "us:general")

  assert lookup == Absent("invalid_payload")


@pytest.mark.anyio
async def test_unknown_content_type_is_absent(content_repo, settings, clock) -> None:
  lookup = await _cache(content_repo, settings, clock).get("horoscopes", "aries")
  assert lookup == Absent("unsupported_content_type")


@pytest.mark.anyio
async def test_refresh_all_overwrites_cached_scopes_and_reports_failures(content_repo, settings, clock) -> None:
  news = StaticAdapter("news", HEADLINES, clock=clock)
  sports = StaticAdapter("sports", [], error=TransientSourceError("espn down", source="espn"), clock=clock)
  await _seed(content_repo, clock, age_hours=1)
  await _seed(content_repo, clock, content_type="sports", scope="nba", age_hours=1)

  summary = await _cache(content_repo, settings, clock, news, sports).refresh_all()

  assert summary.successful == 1
  assert summary.failed == 1
  assert not summary.success
  assert news.fetches == 1
  assert content_repo.entries[("news", "us:general")].content.items[0].headline == HEADLINES[0].headline
  failed = next(result for result in summary.results if result.status == "failed")
  assert (failed.content_type, failed.scope) == ("sports", "nba")


@pytest.mark.anyio
async def test_refresh_all_can_target_content_types(content_repo, settings, clock) -> None:
  news = StaticAdapter("news", HEADLINES, clock=clock)
  sports = StaticAdapter("sports", [], clock=clock)
  await _seed(content_repo, clock, age_hours=1)
  await _seed(content_repo, clock, content_type="sports", scope="nba", age_hours=1)

  summary = await _cache(content_repo, settings, clock, news, sports).refresh_all(["sports"])

  assert [result.content_type for result in summary.results] == ["sports"]
  assert news.fetches == 0


@pytest.mark.anyio
async def test_freshness_summary_buckets_by_newest_entry(content_repo, settings, clock) -> None:
  news = StaticAdapter("news", HEADLINES, clock=clock)
  sports = StaticAdapter("sports", [], clock=clock)
  await _seed(content_repo, clock, age_hours=0.5)
  await _seed(content_repo, clock, content_type="sports", scope="nba", age_hours=8)

  report = await _cache(content_repo, settings, clock, news, sports).freshness_summary()

  buckets = {entry["content_type"]: entry["bucket"] for entry in report["content"]}
  assert buckets == {"news": "fresh", "sports": "stale"}
  assert report["overall"] == "stale"


@pytest.mark.anyio
async def test_per_scope_locks_are_released_after_refresh(content_repo, settings, clock) -> None:
  adapter = StaticAdapter("stocks", HEADLINES, delay=0.01, clock=clock)
  cache = _cache(content_repo, settings, clock, adapter)
  scopes = [f"symbols:{index}" for index in range(20)]

  await asyncio.gather(*(cache.get("stocks", scope) for scope in scopes), *(cache.get("stocks", scopes[0]) for _ in range(3)))

  assert cache._locks == {}
  assert adapter.fetches == len(scopes)
