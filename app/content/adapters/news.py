"""Top headlines from NewsAPI with GNews as the fallback source."""

from __future__ import annotations

import logging
import re
from datetime import datetime
from typing import Any

from app.config import Settings
from app.content.adapters.base import SourceAdapter
from app.content.models import ContentItem
from app.core.errors import DayStartError, PermanentSourceError

logger = logging.getLogger(__name__)

NEWSAPI_URL = "https://newsapi.org/v2/top-headlines"
GNEWS_URL = "https://gnews.io/api/v4/top-headlines"
MAX_ARTICLES = 10

LOCAL_KEYWORDS = ("san francisco", "bay area", "oakland", "san jose", "silicon valley", "palo alto", "mountain view", "berkeley", "marin")
REGIONAL_KEYWORDS = ("california", "west coast", "pacific", "los angeles", "san diego", "sacramento", "fresno", "nevada", "oregon", "washington")
NATIONAL_KEYWORDS = ("united states", "america", "u.s.", "federal", "congress", "senate", "white house", "supreme court", "fda", "cdc")
BREAKING_KEYWORDS = ("breaking", "urgent", "developing", "just in", "alert", "emergency", "major", "massive", "crisis", "disaster", "accident")
IMPACT_KEYWORDS = ("economy", "market crash", "election", "earthquake", "fire", "storm", "security", "data breach", "layoffs", "merger", "acquisition", "ipo", "inflation", "recession", "interest rate", "tech", "ai", "climate")


def _keyword_pattern(keywords: tuple[str, ...]) -> re.Pattern[str]:
  # Word boundaries keep short keywords like "ai" from matching inside other words.
  return re.compile(r"\b(?:" + "|".join(re.escape(keyword) for keyword in keywords) + r")\b")


_LOCAL = _keyword_pattern(LOCAL_KEYWORDS)
_REGIONAL = _keyword_pattern(REGIONAL_KEYWORDS)
_NATIONAL = _keyword_pattern(NATIONAL_KEYWORDS)
_BREAKING = _keyword_pattern(BREAKING_KEYWORDS)
_IMPACT = _keyword_pattern(IMPACT_KEYWORDS)


def score_article(title: str, description: str, published_at: str | None, now: datetime) -> float:
  """Rank a headline: geography first, then breaking and high-impact boosts, then recency."""
  text = f"{title} {description}".lower()
  if _LOCAL.search(text):
    score = 100.0
  elif _REGIONAL.search(text):
    score = 80.0
  elif _NATIONAL.search(text):
    score = 60.0
  else:
    score = 40.0
  if _BREAKING.search(text):
    score += 50
  if _IMPACT.search(text):
    score += 30
  if published_at:
    try:
      published = datetime.fromisoformat(published_at.replace("Z", "+00:00"))
    except ValueError:
      published = None
    if published is not None and published.tzinfo is not None:
      hours_old = (now - published).total_seconds() / 3600
      if hours_old < 2:
        score += 20
      elif hours_old < 6:
        score += 10
  return score


def parse_news_scope(scope: str) -> tuple[str, str]:
  """Split `country:category`; a bare country means general news."""
  country, _, category = scope.partition(":")
  return (country.strip().lower() or "us", category.strip().lower() or "general")


class NewsAdapter(SourceAdapter):
  content_type = "news"
  provider = "newsapi"
  fallback_provider = "gnews"

  def __init__(self, *, newsapi_key: str | None, gnews_key: str | None, default_scope: str = "us:general", **kwargs: Any) -> None:
    super().__init__(**kwargs)
    self._newsapi_key = newsapi_key
    self._gnews_key = gnews_key
    self._default_scope = default_scope

  def configured_scopes(self, settings: Settings) -> list[str]:
    return [self._default_scope]

  async def _fetch_items(self, scope: str) -> tuple[list[ContentItem], str]:
    country, category = parse_news_scope(scope)
    if not self._newsapi_key and not self._gnews_key:
      raise PermanentSourceError("No news provider key configured.", source=self.provider, code="source_not_configured")

    primary_error: DayStartError | None = None
    if self._newsapi_key:
      try:
        payload = await self._get_json(NEWSAPI_URL, params={"country": country, "category": category, "pageSize": MAX_ARTICLES, "apiKey": self._newsapi_key})
        if payload.get("status") != "ok":
          raise PermanentSourceError(f"NewsAPI error: {payload.get('message') or 'unknown error'}", source=self.provider)
        return self._normalize(payload.get("articles") or []), self.provider
      except DayStartError as exc:
        if not self._gnews_key:
          raise
        primary_error = exc
        logger.warning("NewsAPI failed for %s, falling back to GNews: %s", scope, exc)

    payload = await self._get_json(GNEWS_URL, provider=self.fallback_provider, params={"country": country, "category": category, "lang": "en", "max": MAX_ARTICLES, "apikey": self._gnews_key})
    articles = payload.get("articles")
    if articles is None:
      errors = payload.get("errors") or ["no articles returned"]
      raise PermanentSourceError(f"GNews error: {errors[0]}", source=self.fallback_provider)
    if primary_error is not None:
      logger.info("GNews served %s after NewsAPI error code=%s", scope, primary_error.code)
    return self._normalize(articles), self.fallback_provider

  def _normalize(self, articles: list[dict[str, Any]]) -> list[ContentItem]:
    now = self._clock()
    items: list[ContentItem] = []
    seen: set[str] = set()
    for article in articles[:MAX_ARTICLES]:
      title = (article.get("title") or "").strip()
      # NewsAPI appends " - Outlet" to titles; the outlet is carried separately.
      outlet = ((article.get("source") or {}).get("name") or "").strip() or None
      if outlet and title.endswith(f" - {outlet}"):
        title = title[: -len(outlet) - 3].strip()
      if not title or title == "[Removed]" or title.lower() in seen:
        continue
      seen.add(title.lower())
      description = (article.get("description") or "").strip()
      published_at = article.get("publishedAt")
      items.append(ContentItem(headline=title, detail=description, source=outlet, url=article.get("url"), published_at=published_at, score=score_article(title, description, published_at, now)))
    items.sort(key=lambda item: item.score, reverse=True)
    return items
