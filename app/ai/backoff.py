"""Retry logic with a fixed backoff schedule."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import TypeVar

from app.core.errors import TransientSourceError

T = TypeVar("T")
logger = logging.getLogger(__name__)


async def retry_with_backoff(func: Callable[..., Awaitable[T]], *args, delays: tuple[float, ...] = (5, 20, 50), retry_on: tuple[type[BaseException], ...] = (TransientSourceError,), **kwargs) -> T:
  """
  Execute a coroutine function, retrying transient failures.

  One retry per delay, then a final attempt whose error propagates.
  """
  for attempt, delay in enumerate(delays):
    try:
      return await func(*args, **kwargs)
    except retry_on as e:
      logger.warning("Retry attempt %d/%d needed. Error: %s. Retrying in %ss...", attempt + 1, len(delays), e, delay)
      await asyncio.sleep(delay)

  # Final attempt
  return await func(*args, **kwargs)
