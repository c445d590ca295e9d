"""Quotes from Yahoo Finance via RapidAPI."""

from __future__ import annotations

from typing import Any

from app.config import Settings
from app.content.adapters.base import SourceAdapter
from app.content.models import ContentItem
from app.core.errors import PermanentSourceError

QUOTES_URL = "https://apidojo-yahoo-finance-v1.p.rapidapi.com/market/v2/get-quotes"
RAPIDAPI_HOST = "apidojo-yahoo-finance-v1.p.rapidapi.com"
DEFAULT_SCOPE = "default"


def stocks_scope(symbols: list[str]) -> str:
  """Cache scope for a symbol list; an empty list uses the default watchlist."""
  if not symbols:
    return DEFAULT_SCOPE
  return ",".join(sorted(symbols))


def describe_quote(quote: dict[str, Any]) -> ContentItem | None:
  symbol = str(quote.get("symbol") or "").strip()
  price = quote.get("regularMarketPrice")
  if not symbol or price is None:
    return None
  name = str(quote.get("shortName") or quote.get("longName") or symbol).strip()
  change_percent = float(quote.get("regularMarketChangePercent") or 0.0)
  if abs(change_percent) < 0.05:
    movement = "is flat"
  else:
    movement = f"is {'up' if change_percent > 0 else 'down'} {abs(change_percent):.1f} percent"
  data = {"symbol": symbol, "name": name, "price": float(price), "change": quote.get("regularMarketChange"), "change_percent": round(change_percent, 2)}
  return ContentItem(headline=f"{name} {movement} at {float(price):.2f} dollars", source="yahoo-finance", score=abs(change_percent), data=data)


class StocksAdapter(SourceAdapter):
  content_type = "stocks"
  provider = "yahoo-finance"

  def __init__(self, *, rapidapi_key: str | None, default_symbols: tuple[str, ...], **kwargs: Any) -> None:
    super().__init__(**kwargs)
    self._rapidapi_key = rapidapi_key
    self._default_symbols = default_symbols

  def configured_scopes(self, settings: Settings) -> list[str]:
    return [DEFAULT_SCOPE]

  async def _fetch_items(self, scope: str) -> tuple[list[ContentItem], str]:
    if not self._rapidapi_key:
      raise PermanentSourceError("RAPIDAPI_KEY not configured.", source=self.provider, code="source_not_configured")
    symbols = list(self._default_symbols) if scope == DEFAULT_SCOPE else [symbol for symbol in scope.split(",") if symbol]
    if not symbols:
      raise PermanentSourceError("Stock scope has no symbols.", source=self.provider, code="invalid_scope")

    payload = await self._get_json(QUOTES_URL, params={"region": "US", "symbols": ",".join(symbols)}, headers={"x-rapidapi-host": RAPIDAPI_HOST, "x-rapidapi-key": self._rapidapi_key})
    results = (payload.get("quoteResponse") or {}).get("result")
    if results is None:
      raise PermanentSourceError("Yahoo Finance returned no quote data.", source=self.provider)
    by_symbol = {str(quote.get("symbol")): quote for quote in results}
    # Keep the listener's ordering rather than the provider's.
    items = [item for item in (describe_quote(by_symbol[symbol]) for symbol in symbols if symbol in by_symbol) if item is not None]
    return items, self.provider
