"""Object storage helper for narrated audio artifacts."""

from __future__ import annotations

import logging
import os
from datetime import timedelta
from typing import Protocol
from urllib.parse import quote, urlparse, urlunparse

from google.api_core import exceptions as gcs_exceptions
from google.auth.credentials import AnonymousCredentials
from google.cloud import storage
from starlette.concurrency import run_in_threadpool

from app.config import Settings
from app.core.errors import StorageError

logger = logging.getLogger(__name__)


def audio_object_name(user_id: str, local_date: str, job_id: str, extension: str) -> str:
  """Return the bucket path for a briefing artifact."""
  return f"{user_id}/{local_date}/{job_id}.{extension}"


class AudioStorage(Protocol):
  """Artifact store used by the worker, status API and sweeper."""

  async def upload_audio(self, object_name: str, audio: bytes, content_type: str) -> None:
    """Write an artifact, raising StorageError on failure."""

  async def generate_signed_url(self, object_name: str, *, ttl_seconds: int) -> str:
    """Return a time-limited download URL."""

  async def delete(self, object_name: str) -> bool:
    """Delete an artifact; False when it was already gone. Raises StorageError on failure."""


class StorageClient:
  """Thin wrapper over GCS and emulator access for audio artifacts."""

  def __init__(self, settings: Settings) -> None:
    self._bucket_name = settings.audio_bucket
    self._storage_host = settings.gcs_storage_host
    # Ensure emulator endpoint is visible to the SDK in local development.
    if self._storage_host:
      self._emulator_endpoint = _normalize_emulator_endpoint(self._storage_host)
      os.environ["GCS_STORAGE_EMULATOR_HOST"] = self._emulator_endpoint
      self._client = storage.Client(project=settings.gcp_project_id or "local-dev", credentials=AnonymousCredentials(), client_options={"api_endpoint": self._emulator_endpoint})
    else:
      self._client = storage.Client(project=settings.gcp_project_id)

  @property
  def bucket_name(self) -> str:
    """Return the bucket holding audio artifacts."""
    return self._bucket_name

  async def ensure_bucket(self) -> None:
    """Create the bucket when missing in local/dev flows."""
    # Keep production startup side-effect free; only auto-create in emulator mode.
    if not self._storage_host:
      return
    bucket = self._client.bucket(self._bucket_name)

    def _create_if_missing() -> None:
      if not bucket.exists(client=self._client):
        self._client.create_bucket(bucket)

    await run_in_threadpool(_create_if_missing)

  async def upload_audio(self, object_name: str, audio: bytes, content_type: str) -> None:
    """Upload audio bytes; artifacts are private and served through signed URLs."""
    bucket = self._client.bucket(self._bucket_name)
    blob = bucket.blob(object_name)
    blob.cache_control = "private, max-age=3600"
    blob.content_type = content_type
    try:
      await run_in_threadpool(blob.upload_from_string, audio, content_type)
    except gcs_exceptions.GoogleAPIError as exc:
      raise StorageError(f"Upload of {object_name} failed: {exc}", object_name=object_name) from exc

  async def generate_signed_url(self, object_name: str, *, ttl_seconds: int) -> str:
    """Generate a short-lived signed URL for direct artifact download."""
    if self._storage_host:
      # The emulator cannot sign; its media endpoint is unauthenticated.
      return f"{self._emulator_endpoint}/storage/v1/b/{self._bucket_name}/o/{quote(object_name, safe='')}?alt=media"
    bucket = self._client.bucket(self._bucket_name)
    blob = bucket.blob(object_name)
    expiration = timedelta(seconds=int(ttl_seconds))
    return await run_in_threadpool(blob.generate_signed_url, expiration=expiration, method="GET")

  async def exists(self, object_name: str) -> bool:
    """Return True when an object exists in the bucket."""
    bucket = self._client.bucket(self._bucket_name)
    blob = bucket.blob(object_name)
    return bool(await run_in_threadpool(blob.exists))

  async def delete(self, object_name: str) -> bool:
    """Delete an artifact; a missing object counts as already deleted."""
    bucket = self._client.bucket(self._bucket_name)
    blob = bucket.blob(object_name)
    try:
      await run_in_threadpool(blob.delete)
    except gcs_exceptions.NotFound:
      logger.info("Artifact %s already absent", object_name)
      return False
    except gcs_exceptions.GoogleAPIError as exc:
      raise StorageError(f"Delete of {object_name} failed: {exc}", object_name=object_name) from exc
    return True


def build_storage_client(settings: Settings) -> StorageClient:
  """Create a storage client instance with environment-aware credentials."""
  return StorageClient(settings)


def _normalize_emulator_endpoint(raw_endpoint: str) -> str:
  """Normalize emulator endpoint so the SDK receives scheme+host+port only."""
  parsed = urlparse(raw_endpoint)
  if not parsed.scheme or not parsed.netloc:
    return raw_endpoint.rstrip("/")
  return urlunparse((parsed.scheme, parsed.netloc, "", "", "", "")).rstrip("/")
