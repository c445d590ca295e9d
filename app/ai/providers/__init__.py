"""Provider implementations."""

from __future__ import annotations

from app.ai.providers.base import AIModel, ModelResponse, Provider, SimpleModelResponse
from app.ai.providers.gemini import GeminiModel, GeminiProvider
from app.ai.providers.openai_chat import OpenAIChatModel, OpenAIProvider
from app.config import Settings


def get_script_model(settings: Settings) -> AIModel | None:
  """Return the configured script polish model, or None when polish is disabled."""
  if settings.script_provider == "openai":
    if not settings.openai_api_key:
      return None
    return OpenAIProvider(api_key=settings.openai_api_key).get_model(settings.script_model)
  if settings.script_provider == "gemini":
    if not settings.gemini_api_key:
      return None
    return GeminiProvider(api_key=settings.gemini_api_key).get_model(settings.script_model)
  return None


__all__ = ["AIModel", "ModelResponse", "SimpleModelResponse", "Provider", "GeminiModel", "GeminiProvider", "OpenAIChatModel", "OpenAIProvider", "get_script_model"]
