"""Shared HTTP plumbing for upstream content adapters."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from typing import Any, ClassVar

import httpx

from app.config import Settings
from app.content.models import ContentItem, NormalizedContent
from app.content.rate_limit import RateLimiter
from app.core.errors import PermanentSourceError, RateLimitError, TransientSourceError

logger = logging.getLogger(__name__)

_USER_AGENT = "daystart-engine/1.0"


class SourceAdapter(ABC):
  """Fetch one upstream source and normalize it into content items."""

  content_type: ClassVar[str]
  provider: ClassVar[str]

  def __init__(self, *, rate_limiter: RateLimiter, client: httpx.AsyncClient | None = None, timeout: float = 10.0, clock: Callable[[], datetime] | None = None) -> None:
    self._rate_limiter = rate_limiter
    self._client = client
    self._timeout = timeout
    self._clock = clock or (lambda: datetime.now(UTC))

  async def fetch(self, scope: str) -> NormalizedContent:
    """Fetch and normalize content for a scope; raises taxonomy errors on failure."""
    items, source = await self._fetch_items(scope)
    logger.info("Fetched %s/%s from %s items=%d", self.content_type, scope, source, len(items))
    return NormalizedContent(content_type=self.content_type, scope=scope, source=source, fetched_at=self._clock(), items=items)

  @abstractmethod
  async def _fetch_items(self, scope: str) -> tuple[list[ContentItem], str]:
    """Return normalized items plus the name of the source that produced them."""

  def configured_scopes(self, settings: Settings) -> list[str]:
    """Scopes refreshed by the periodic refresh even when nothing is cached yet."""
    return []

  @asynccontextmanager
  async def _session(self) -> AsyncIterator[httpx.AsyncClient]:
    if self._client is not None:
      yield self._client
      return
    async with httpx.AsyncClient(timeout=self._timeout, headers={"user-agent": _USER_AGENT}) as client:
      yield client

  async def _get_json(self, url: str, *, provider: str | None = None, params: dict[str, Any] | None = None, headers: dict[str, str] | None = None) -> Any:
    """GET a JSON document after consuming one request from the provider budget."""
    name = provider or self.provider
    await self._rate_limiter.acquire(name)
    try:
      async with self._session() as client:
        response = await client.get(url, params=params, headers=headers, timeout=self._timeout)
    except httpx.TimeoutException as exc:
      raise TransientSourceError(f"{name} timed out.", source=name, code="upstream_timeout") from exc
    except httpx.TransportError as exc:
      raise TransientSourceError(f"{name} transport error: {exc}", source=name) from exc

    _raise_for_status(response, name)
    try:
      return response.json()
    except ValueError as exc:
      raise TransientSourceError(f"{name} returned invalid JSON.", source=name) from exc


def _raise_for_status(response: httpx.Response, provider: str) -> None:
  """Map upstream HTTP failures onto the source error taxonomy."""
  status = response.status_code
  if status < 400:
    return
  if status == 429:
    raise RateLimitError(f"{provider} responded 429.", source=provider)
  if status >= 500:
    raise TransientSourceError(f"{provider} responded {status}.", source=provider, code="upstream_unavailable")
  raise PermanentSourceError(f"{provider} rejected the request with {status}.", source=provider)
