"""Text-to-speech synthesis with a primary provider and a fallback."""

from __future__ import annotations

import asyncio
import io
import logging
import math
import wave
from abc import ABC, abstractmethod
from dataclasses import dataclass
from decimal import Decimal
from typing import ClassVar

import httpx
from openai import APIConnectionError, APIStatusError, APITimeoutError, AsyncOpenAI

from app.ai.backoff import retry_with_backoff
from app.ai.providers.gemini import DEFAULT_SPEECH_MODEL, GeminiProvider
from app.ai.utils.cost import calculate_tts_cost
from app.config import Settings
from app.core.errors import PermanentJobError, TransientSourceError

logger = logging.getLogger(__name__)

# Spoken characters per second used when a provider does not report duration.
CHARS_PER_SECOND = 15


def estimate_duration_seconds(text: str) -> int:
  return max(math.ceil(len(text) / CHARS_PER_SECOND), 1)


@dataclass(frozen=True)
class SynthesizedAudio:
  audio: bytes
  content_type: str
  extension: str
  duration_seconds: int
  provider: str
  cost: Decimal

  @property
  def size_bytes(self) -> int:
    return len(self.audio)


class SpeechProvider(ABC):
  """One TTS backend."""

  name: ClassVar[str]
  content_type: ClassVar[str] = "audio/mpeg"
  extension: ClassVar[str] = "mp3"

  @abstractmethod
  async def synthesize(self, text: str, voice: str) -> bytes:
    """Return encoded audio; raise TransientSourceError or PermanentJobError on failure."""

  def duration_seconds(self, text: str, audio: bytes) -> int:
    return estimate_duration_seconds(text)


class ElevenLabsSpeechProvider(SpeechProvider):
  name = "elevenlabs"
  API_URL = "https://api.elevenlabs.io/v1/text-to-speech/{voice_id}"
  MODEL_ID = "eleven_monolingual_v1"
  VOICE_IDS = {"voice1": "pNInz6obpgDQGcFmaJgB", "voice2": "21m00Tcm4TlvDq8ikWAM", "voice3": "ErXwobaYiN019PkySvjV"}

  def __init__(self, api_key: str, *, timeout: float = 90.0, client: httpx.AsyncClient | None = None) -> None:
    self._api_key = api_key
    self._timeout = timeout
    self._client = client

  async def synthesize(self, text: str, voice: str) -> bytes:
    voice_id = self.VOICE_IDS.get(voice, self.VOICE_IDS["voice1"])
    body = {"text": text, "model_id": self.MODEL_ID, "voice_settings": {"stability": 0.5, "similarity_boost": 0.75}}
    headers = {"xi-api-key": self._api_key, "accept": "audio/mpeg", "content-type": "application/json"}
    url = self.API_URL.format(voice_id=voice_id)
    try:
      if self._client is not None:
        response = await self._client.post(url, json=body, headers=headers, timeout=self._timeout)
      else:
        async with httpx.AsyncClient(timeout=self._timeout) as client:
          response = await client.post(url, json=body, headers=headers)
    except httpx.TransportError as exc:
      raise TransientSourceError(f"ElevenLabs transport error: {exc}", source=self.name) from exc

    if response.status_code == 429 or response.status_code >= 500:
      raise TransientSourceError(f"ElevenLabs responded {response.status_code}.", source=self.name)
    if response.status_code == 401:
      # Quota exhaustion and key problems both surface as 401; another provider may still succeed.
      raise TransientSourceError("ElevenLabs rejected the credentials or quota is exhausted.", source=self.name, code="tts_quota")
    if response.status_code >= 400:
      raise PermanentJobError(f"ElevenLabs rejected the script with {response.status_code}: {response.text[:200]}", code="tts_rejected")
    if not response.content:
      raise TransientSourceError("ElevenLabs returned empty audio.", source=self.name)
    return response.content


class OpenAISpeechProvider(SpeechProvider):
  name = "openai"
  MODEL = "tts-1"
  VOICES = {"voice1": "alloy", "voice2": "nova", "voice3": "onyx"}

  def __init__(self, api_key: str | None = None, *, timeout: float = 90.0, client: AsyncOpenAI | None = None) -> None:
    self._client = client or AsyncOpenAI(api_key=api_key, timeout=timeout, max_retries=0)

  async def synthesize(self, text: str, voice: str) -> bytes:
    try:
      response = await self._client.audio.speech.create(model=self.MODEL, voice=self.VOICES.get(voice, "alloy"), input=text, response_format="mp3")
    except (APIConnectionError, APITimeoutError) as exc:
      raise TransientSourceError(f"OpenAI TTS unreachable: {exc}", source=self.name) from exc
    except APIStatusError as exc:
      if exc.status_code == 429 or exc.status_code >= 500:
        raise TransientSourceError(f"OpenAI TTS responded {exc.status_code}.", source=self.name) from exc
      raise PermanentJobError(f"OpenAI TTS rejected the script with {exc.status_code}.", code="tts_rejected") from exc
    audio = response.content
    if not audio:
      raise TransientSourceError("OpenAI TTS returned empty audio.", source=self.name)
    return audio


class GeminiSpeechProvider(SpeechProvider):
  name = "gemini"
  content_type = "audio/wav"
  extension = "wav"
  VOICES = {"voice1": "Kore", "voice2": "Aoede", "voice3": "Charon"}
  SAMPLE_RATE = 24000

  def __init__(self, api_key: str | None = None, *, timeout: float = 90.0) -> None:
    self._model = GeminiProvider(api_key=api_key).get_model(DEFAULT_SPEECH_MODEL)
    self._timeout = timeout

  async def synthesize(self, text: str, voice: str) -> bytes:
    try:
      async with asyncio.timeout(self._timeout):
        pcm = await self._model.generate_speech(text, self.VOICES.get(voice, "Kore"))
    except Exception as e:  # noqa: BLE001
      raise TransientSourceError(f"Gemini speech generation failed: {e}", source=self.name) from e
    return _pcm_to_wav(pcm, self.SAMPLE_RATE)

  def duration_seconds(self, text: str, audio: bytes) -> int:
    with wave.open(io.BytesIO(audio), "rb") as reader:
      return max(math.ceil(reader.getnframes() / reader.getframerate()), 1)


def _pcm_to_wav(pcm: bytes, sample_rate: int) -> bytes:
  buffer = io.BytesIO()
  with wave.open(buffer, "wb") as writer:
    writer.setnchannels(1)
    writer.setsampwidth(2)
    writer.setframerate(sample_rate)
    writer.writeframes(pcm)
  return buffer.getvalue()


class NarrationSynthesizer:
  """Synthesize with the primary provider, retrying once, then fall back."""

  def __init__(self, primary: SpeechProvider, fallback: SpeechProvider | None = None, *, retry_delay: float = 1.0) -> None:
    self._primary = primary
    self._fallback = fallback
    self._retry_delay = retry_delay

  async def synthesize(self, text: str, voice: str) -> SynthesizedAudio:
    providers = [self._primary] + ([self._fallback] if self._fallback is not None else [])
    errors: list[str] = []
    permanent = True
    for provider in providers:
      try:
        audio = await retry_with_backoff(provider.synthesize, text, voice, delays=(self._retry_delay,))
      except (TransientSourceError, PermanentJobError) as exc:
        logger.warning("TTS provider %s failed: %s", provider.name, exc)
        errors.append(f"{provider.name}: {exc}")
        permanent = permanent and isinstance(exc, PermanentJobError)
        continue
      except Exception as exc:  # noqa: BLE001
        logger.warning("TTS provider %s raised an unexpected error", provider.name, exc_info=True)
        errors.append(f"{provider.name}: {exc!r}")
        permanent = False
        continue
      logger.info("Synthesized %d chars with %s (%d bytes)", len(text), provider.name, len(audio))
      return SynthesizedAudio(audio=audio, content_type=provider.content_type, extension=provider.extension, duration_seconds=provider.duration_seconds(text, audio), provider=provider.name, cost=calculate_tts_cost(provider.name, len(text)))

    message = "All TTS providers failed: " + "; ".join(errors)
    # Only a script every provider refuses is a permanent failure.
    if permanent:
      raise PermanentJobError(message, code="tts_rejected")
    raise TransientSourceError(message, source="tts", code="tts_unavailable")


def _build_provider(name: str, settings: Settings) -> SpeechProvider | None:
  if name == "elevenlabs" and settings.elevenlabs_api_key:
    return ElevenLabsSpeechProvider(settings.elevenlabs_api_key, timeout=settings.tts_timeout_seconds)
  if name == "openai" and settings.openai_api_key:
    return OpenAISpeechProvider(settings.openai_api_key, timeout=settings.tts_timeout_seconds)
  if name == "gemini" and settings.gemini_api_key:
    return GeminiSpeechProvider(settings.gemini_api_key, timeout=settings.tts_timeout_seconds)
  return None


def build_narration_synthesizer(settings: Settings) -> NarrationSynthesizer:
  """Wire the configured primary and fallback providers; missing credentials skip a provider."""
  primary = _build_provider(settings.tts_primary, settings)
  fallback = _build_provider(settings.tts_fallback, settings) if settings.tts_fallback and settings.tts_fallback != settings.tts_primary else None
  if primary is None:
    if fallback is None:
      raise RuntimeError("No TTS provider configured; set ELEVENLABS_API_KEY, OPENAI_API_KEY or GEMINI_API_KEY.")
    logger.warning("Primary TTS provider %s unavailable; using %s only.", settings.tts_primary, fallback.name)
    return NarrationSynthesizer(fallback)
  return NarrationSynthesizer(primary, fallback)

