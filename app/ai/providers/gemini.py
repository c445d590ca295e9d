"""Gemini provider implementation using the google-genai SDK."""

from __future__ import annotations

import asyncio
import logging
import os
import random
from typing import Any, Final

from google import genai
from google.genai import types

from app.ai.providers.base import AIModel, ModelResponse, Provider, SimpleModelResponse

DEFAULT_SPEECH_MODEL: Final[str] = "gemini-2.5-flash-preview-tts"


class GeminiModel(AIModel):
  """Gemini model client using google-genai SDK."""

  def __init__(self, name: str, api_key: str | None = None) -> None:
    self.name: str = name

    api_key = api_key or os.getenv("GEMINI_API_KEY")
    if not api_key:
      raise ValueError("GEMINI_API_KEY environment variable is required")

    self._client = genai.Client(api_key=api_key)

  async def generate(self, prompt: str, *, system: str | None = None, temperature: float | None = None, max_tokens: int | None = None) -> ModelResponse:
    """Generate text response from Gemini."""
    logger = logging.getLogger("app.ai.providers.gemini")

    config: dict[str, Any] = {}
    if system:
      config["system_instruction"] = system
    if temperature is not None:
      config["temperature"] = temperature
    if max_tokens is not None:
      config["max_output_tokens"] = max_tokens

    # Use the async client to avoid blocking the asyncio event loop.
    response = await _with_backoff(self._client.aio.models.generate_content, model=self.name, contents=prompt, config=config or None)

    text = response.text or ""
    logger.debug("Gemini response (%d chars)", len(text))
    usage = None

    if response.usage_metadata:
      usage = {"prompt_tokens": response.usage_metadata.prompt_token_count, "completion_tokens": response.usage_metadata.candidates_token_count, "total_tokens": response.usage_metadata.total_token_count}
    return SimpleModelResponse(content=text, usage=usage)

  async def generate_speech(self, text: str, voice: str) -> bytes:
    """Generate raw 24kHz 16-bit mono PCM for the text with a prebuilt voice."""
    config = types.GenerateContentConfig(
      response_modalities=["AUDIO"],
      speech_config=types.SpeechConfig(voice_config=types.VoiceConfig(prebuilt_voice_config=types.PrebuiltVoiceConfig(voice_name=voice))),
    )
    response = await _with_backoff(self._client.aio.models.generate_content, model=self.name, contents=text, config=config)

    # Extract audio bytes
    for candidate in response.candidates or []:
      for part in (candidate.content.parts if candidate.content else None) or []:
        if part.inline_data and part.inline_data.data:
          return part.inline_data.data

    raise RuntimeError("No audio data received from Gemini.")


class GeminiProvider(Provider):
  """Gemini provider."""

  _DEFAULT_MODEL: Final[str] = "gemini-2.0-flash"
  _AVAILABLE_MODELS: Final[set[str]] = {"gemini-2.5-flash", "gemini-2.0-flash", "gemini-2.0-flash-lite", DEFAULT_SPEECH_MODEL}

  def __init__(self, api_key: str | None = None) -> None:
    self.name: str = "gemini"
    self._api_key = api_key

  def get_model(self, model: str | None = None) -> GeminiModel:
    """Return a Gemini model client."""
    model_name = model or self._DEFAULT_MODEL
    if model_name not in self._AVAILABLE_MODELS:
      raise ValueError(f"Unsupported Gemini model '{model_name}'.")

    return GeminiModel(model_name, api_key=self._api_key)


async def _with_backoff(func, *args, **kwargs):
  retries = 3
  base_delay = 1
  for i in range(retries):
    try:
      return await func(*args, **kwargs)
    except Exception as e:
      # Check for 429
      if "429" in str(e) or "Too Many Requests" in str(e):
        if i == retries - 1:
          raise
        delay = base_delay * (2**i) + random.uniform(0, 1)
        await asyncio.sleep(delay)
      else:
        raise
  return await func(*args, **kwargs)
