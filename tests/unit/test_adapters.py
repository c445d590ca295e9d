"""Upstream adapters against canned provider responses."""

from __future__ import annotations

from collections.abc import Callable

import httpx
import pytest

from app.content.adapters.news import NewsAdapter, parse_news_scope, score_article
from app.content.adapters.sports import SportsAdapter, describe_game
from app.content.adapters.stocks import StocksAdapter, describe_quote, stocks_scope
from app.content.adapters.weather import WeatherAdapter, content_from_client_weather, describe_weather_code, weather_scope
from app.content.quotes import QUOTE_LIBRARY, daily_quotes
from app.core.errors import PermanentSourceError, RateLimitError, TransientSourceError
from tests.fakes import START, FakeClock, NullRateLimiter


def _client(handler: Callable[[httpx.Request], httpx.Response]) -> httpx.AsyncClient:
  return httpx.AsyncClient(transport=httpx.MockTransport(handler))


def _common(handler: Callable[[httpx.Request], httpx.Response], limiter: NullRateLimiter | None = None) -> dict:
  return {"rate_limiter": limiter or NullRateLimiter(), "client": _client(handler), "clock": FakeClock()}


def _article(title: str, outlet: str = "Chronicle", published_at: str = "2026-10-17T10:30:00Z", description: str = "") -> dict:
  return {"title": f"{title} - {outlet}", "description": description, "source": {"name": outlet}, "url": "https://news.test/a", "publishedAt": published_at}


@pytest.mark.anyio
async def test_news_ranks_local_breaking_stories_first() -> None:
  def handler(request: httpx.Request) -> httpx.Response:
    assert request.url.host == "newsapi.org"
    assert request.url.params["country"] == "us"
    assert request.url.params["category"] == "technology"
    articles = [_article("Senate passes budget"), _article("Breaking: earthquake shakes Bay Area"), _article("[Removed]", outlet="x"), _article("Senate passes budget", outlet="Post")]
    return httpx.Response(200, json={"status": "ok", "articles": articles})

  limiter = NullRateLimiter()
  adapter = NewsAdapter(newsapi_key="key", gnews_key=None, **_common(handler, limiter))
  content = await adapter.fetch("us:technology")

  assert content.source == "newsapi"
  assert [item.headline for item in content.items] == ["Breaking: earthquake shakes Bay Area", "Senate passes budget"]
  assert content.items[0].source == "Chronicle"
  assert limiter.calls == ["newsapi"]


@pytest.mark.anyio
async def test_news_falls_back_to_gnews_when_newsapi_fails() -> None:
  def handler(request: httpx.Request) -> httpx.Response:
    if request.url.host == "newsapi.org":
      return httpx.Response(503)
    return httpx.Response(200, json={"articles": [{"title": "Storm expected Friday", "description": "", "source": {"name": "Wire"}, "publishedAt": "2026-10-17T09:00:00Z"}]})

  limiter = NullRateLimiter()
  adapter = NewsAdapter(newsapi_key="key", gnews_key="gkey", **_common(handler, limiter))
  content = await adapter.fetch("us:general")

  assert content.source == "gnews"
  assert content.items[0].headline == "Storm expected Friday"
  assert limiter.calls == ["newsapi", "gnews"]


@pytest.mark.anyio
async def test_news_without_keys_is_permanent() -> None:
  adapter = NewsAdapter(newsapi_key=None, gnews_key=None, **_common(lambda request: httpx.Response(200)))
  with pytest.raises(PermanentSourceError) as excinfo:
    await adapter.fetch("us:general")
  assert excinfo.value.code == "source_not_configured"


@pytest.mark.parametrize(
  ("status", "error"),
  [(429, RateLimitError), (500, TransientSourceError), (503, TransientSourceError), (401, PermanentSourceError), (404, PermanentSourceError)],
)
@pytest.mark.anyio
async def test_http_status_maps_onto_error_taxonomy(status: int, error: type[Exception]) -> None:
  adapter = NewsAdapter(newsapi_key="key", gnews_key=None, **_common(lambda request: httpx.Response(status)))
  with pytest.raises(error):
    await adapter.fetch("us:general")


@pytest.mark.anyio
async def test_timeouts_are_transient() -> None:
  def handler(request: httpx.Request) -> httpx.Response:
    raise httpx.ReadTimeout("slow", request=request)

  adapter = SportsAdapter(**_common(handler))
  with pytest.raises(TransientSourceError) as excinfo:
    await adapter.fetch("nba")
  assert excinfo.value.code == "upstream_timeout"


def test_score_article_weights_geography_and_recency() -> None:
  local = score_article("Oakland opens new ferry terminal", "", "2026-10-17T10:30:00Z", START)
  national = score_article("Congress returns from recess", "", "2026-10-16T10:30:00Z", START)
  assert local == 120.0
  assert national == 60.0
  assert score_article("Paint dries", "", None, START) == 40.0


def test_parse_news_scope_defaults() -> None:
  assert parse_news_scope("GB") == ("gb", "general")
  assert parse_news_scope(":sports") == ("us", "sports")


@pytest.mark.anyio
async def test_weather_geocodes_then_reads_forecast() -> None:
  def handler(request: httpx.Request) -> httpx.Response:
    if request.url.host == "geocoding-api.open-meteo.com":
      assert request.url.params["name"] == "portland"
      results = [{"name": "Portland", "admin1": "Maine", "country_code": "US", "latitude": 43.6, "longitude": -70.2}, {"name": "Portland", "admin1": "Oregon", "country_code": "US", "latitude": 45.5, "longitude": -122.6}]
      return httpx.Response(200, json={"results": results})
    assert request.url.params["latitude"] == "45.5"
    assert request.url.params["temperature_unit"] == "fahrenheit"
    return httpx.Response(200, json={"current": {"temperature_2m": 51.4, "weather_code": 3}, "daily": {"temperature_2m_max": [58.6], "temperature_2m_min": [44.2], "precipitation_probability_max": [70], "weather_code": [63]}})

  content = await WeatherAdapter(**_common(handler)).fetch("portland|oregon|us")

  [item] = content.items
  assert item.headline == "Rain in Portland"
  assert item.data["high"] == 59
  assert item.data["low"] == 44
  assert "70 percent chance" in item.detail


@pytest.mark.anyio
async def test_weather_unknown_place_is_permanent() -> None:
  adapter = WeatherAdapter(**_common(lambda request: httpx.Response(200, json={"results": []})))
  with pytest.raises(PermanentSourceError) as excinfo:
    await adapter.fetch("atlantis||")
  assert excinfo.value.code == "location_not_found"


def test_weather_scope_and_codes() -> None:
  assert weather_scope({"city": " San Francisco", "state": "CA", "country": "US"}) == "san francisco|ca|us"
  assert weather_scope({"state": "CA"}) is None
  assert weather_scope(None) is None
  assert describe_weather_code(0) == "clear skies"
  assert describe_weather_code(96) == "thunderstorms"
  assert describe_weather_code(None) == "mixed conditions"


def test_client_weather_replaces_lookup() -> None:
  content = content_from_client_weather({"temperatureF": 61.2, "highTemperatureF": 68, "lowTemperatureF": 52, "condition": "Sunny"}, location="Oakland", fetched_at=START)
  assert content is not None
  assert content.source == "client"
  assert content.items[0].headline == "Sunny in Oakland"
  assert content_from_client_weather({}, location=None, fetched_at=START) is None


def _event(state: str, home: tuple[str, str | None], away: tuple[str, str | None], detail: str = "") -> dict:
  competitors = [{"homeAway": "home", "team": {"shortDisplayName": home[0]}, "score": home[1]}, {"homeAway": "away", "team": {"shortDisplayName": away[0]}, "score": away[1]}]
  return {"name": f"{away[0]} at {home[0]}", "date": "2026-10-17T02:00Z", "status": {"type": {"state": state, "shortDetail": detail}}, "competitions": [{"competitors": competitors}]}


def test_describe_game_phrases_each_state() -> None:
  assert describe_game(_event("post", ("Warriors", "112"), ("Lakers", "104")), "nba").headline == "Warriors beat Lakers 112 to 104"
  assert describe_game(_event("in", ("Warriors", "50"), ("Lakers", "61"), "Q3 4:12"), "nba").headline == "Lakers lead Warriors 61 to 50, Q3 4:12"
  assert describe_game(_event("pre", ("Warriors", None), ("Lakers", None), "7:30 PM"), "nba").headline == "Lakers visit Warriors, 7:30 PM"
  assert describe_game({"competitions": []}, "nba") is None


@pytest.mark.anyio
async def test_sports_orders_final_scores_first() -> None:
  events = [_event("pre", ("Kings", None), ("Suns", None)), _event("post", ("Warriors", "112"), ("Lakers", "104"))]

  def handler(request: httpx.Request) -> httpx.Response:
    assert request.url.path == "/apis/site/v2/sports/basketball/nba/scoreboard"
    return httpx.Response(200, json={"events": events})

  content = await SportsAdapter(**_common(handler)).fetch("nba")
  assert [item.data["state"] for item in content.items] == ["post", "pre"]


@pytest.mark.anyio
async def test_sports_rejects_unknown_league() -> None:
  with pytest.raises(PermanentSourceError):
    await SportsAdapter(**_common(lambda request: httpx.Response(200))).fetch("cricket")


@pytest.mark.anyio
async def test_stocks_keep_listener_order_and_default_watchlist() -> None:
  seen: list[str] = []

  def handler(request: httpx.Request) -> httpx.Response:
    seen.append(request.url.params["symbols"])
    assert request.headers["x-rapidapi-key"] == "rk"
    quotes = [{"symbol": "MSFT", "shortName": "Microsoft", "regularMarketPrice": 410.5, "regularMarketChangePercent": -1.26}, {"symbol": "AAPL", "shortName": "Apple", "regularMarketPrice": 190, "regularMarketChangePercent": 0.01}]
    return httpx.Response(200, json={"quoteResponse": {"result": quotes}})

  adapter = StocksAdapter(rapidapi_key="rk", default_symbols=("SPY",), **_common(handler))
  content = await adapter.fetch("AAPL,MSFT")
  assert [item.headline for item in content.items] == ["Apple is flat at 190.00 dollars", "Microsoft is down 1.3 percent at 410.50 dollars"]

  await adapter.fetch("default")
  assert seen == ["AAPL,MSFT", "SPY"]


def test_stocks_scope_is_order_independent() -> None:
  assert stocks_scope(["MSFT", "AAPL"]) == stocks_scope(["AAPL", "MSFT"]) == "AAPL,MSFT"
  assert stocks_scope([]) == "default"
  assert describe_quote({"symbol": "X"}) is None


def test_daily_quotes_lead_with_the_same_pick_for_a_category_and_date() -> None:
  first = daily_quotes("Stoic", "2026-10-18")
  again = daily_quotes("stoic", "2026-10-18")

  assert first == again
  assert len({item.headline for item in first}) == len(QUOTE_LIBRARY["stoic"])
  assert all(item.data["category"] == "stoic" for item in first)
  assert daily_quotes("astrology", "2026-10-18")[0].data["category"] == "inspirational"
