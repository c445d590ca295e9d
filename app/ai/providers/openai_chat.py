"""OpenAI chat provider implementation using the openai SDK."""

from __future__ import annotations

import logging
import os
from typing import Final

from openai import AsyncOpenAI

from app.ai.providers.base import AIModel, ModelResponse, Provider, SimpleModelResponse


class OpenAIChatModel(AIModel):
  """OpenAI chat-completions client."""

  def __init__(self, name: str, api_key: str | None = None, client: AsyncOpenAI | None = None) -> None:
    self.name: str = name
    if client is not None:
      self._client = client
      return

    api_key = api_key or os.getenv("OPENAI_API_KEY")
    if not api_key:
      raise ValueError("OPENAI_API_KEY environment variable is required")
    self._client = AsyncOpenAI(api_key=api_key)

  async def generate(self, prompt: str, *, system: str | None = None, temperature: float | None = None, max_tokens: int | None = None) -> ModelResponse:
    """Generate text response from OpenAI."""
    logger = logging.getLogger("app.ai.providers.openai_chat")

    messages = []
    if system:
      messages.append({"role": "system", "content": system})
    messages.append({"role": "user", "content": prompt})

    options: dict[str, float | int] = {}
    if temperature is not None:
      options["temperature"] = temperature
    if max_tokens is not None:
      options["max_tokens"] = max_tokens
    response = await self._client.chat.completions.create(model=self.name, messages=messages, **options)

    content = response.choices[0].message.content or ""
    logger.debug("OpenAI response (%d chars)", len(content))
    usage = None

    if response.usage:
      usage = {"prompt_tokens": response.usage.prompt_tokens, "completion_tokens": response.usage.completion_tokens, "total_tokens": response.usage.total_tokens}

    return SimpleModelResponse(content=content, usage=usage)


class OpenAIProvider(Provider):
  """OpenAI provider."""

  _DEFAULT_MODEL: Final[str] = "gpt-4o-mini"
  _AVAILABLE_MODELS: Final[set[str]] = {"gpt-4o-mini", "gpt-4o", "gpt-4.1-mini"}

  def __init__(self, api_key: str | None = None) -> None:
    self.name: str = "openai"
    self._api_key = api_key

  def get_model(self, model: str | None = None) -> AIModel:
    """Return an OpenAI model client."""
    model_name = model or self._DEFAULT_MODEL
    if model_name not in self._AVAILABLE_MODELS:
      raise ValueError(f"Unsupported OpenAI model '{model_name}'.")
    return OpenAIChatModel(model_name, api_key=self._api_key)
