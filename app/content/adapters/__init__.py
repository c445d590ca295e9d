"""Upstream content adapters."""

from __future__ import annotations

import httpx

from app.config import Settings
from app.content.adapters.base import SourceAdapter
from app.content.adapters.news import NewsAdapter
from app.content.adapters.sports import SportsAdapter
from app.content.adapters.stocks import StocksAdapter
from app.content.adapters.weather import WeatherAdapter
from app.content.rate_limit import RateLimiter


def build_adapters(settings: Settings, rate_limiter: RateLimiter, *, client: httpx.AsyncClient | None = None) -> dict[str, SourceAdapter]:
  """Create one adapter per upstream content type."""
  common = {"rate_limiter": rate_limiter, "client": client, "timeout": settings.upstream_timeout_seconds}
  return {
    "news": NewsAdapter(newsapi_key=settings.newsapi_key, gnews_key=settings.gnews_api_key, default_scope=settings.news_scope, **common),
    "weather": WeatherAdapter(**common),
    "sports": SportsAdapter(**common),
    "stocks": StocksAdapter(rapidapi_key=settings.rapidapi_key, default_symbols=settings.default_stock_symbols, **common),
  }


__all__ = ["NewsAdapter", "SourceAdapter", "SportsAdapter", "StocksAdapter", "WeatherAdapter", "build_adapters"]
