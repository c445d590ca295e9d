import hashlib
import json
import logging
import re
import time
import uuid
from typing import Any

from starlette.datastructures import MutableHeaders
from starlette.types import ASGIApp, Receive, Scope, Send

from app.config import get_settings

logger = logging.getLogger("app.core.middleware")

# Listener details and signed artifact URLs never reach the logs.
SENSITIVE_KEYS = frozenset({"authorization", "token", "secret", "key", "preferred_name", "calendar_events", "location_data", "weather_data", "transcript", "script_content", "audio_url"})
QUIET_PATHS = frozenset({"/health"})
_REQUEST_ID_PATTERN = re.compile(r"^[A-Za-z0-9._:\-]{8,128}$")


def _redact_sensitive_keys(data: Any) -> Any:
  """Redact sensitive keys from a dictionary or list recursively."""
  if isinstance(data, dict):
    return {k: ("***" if k.lower() in SENSITIVE_KEYS else _redact_sensitive_keys(v)) for k, v in data.items()}
  if isinstance(data, list):
    return [_redact_sensitive_keys(item) for item in data]
  return data


def _normalize_headers(scope: Scope) -> dict[str, str]:
  """Normalize scope headers so downstream logging can check content type safely."""
  # Convert byte headers into a case-insensitive mapping for logging decisions.
  header_map = {key.decode("latin-1").lower(): value.decode("latin-1") for key, value in scope.get("headers", [])}
  return header_map


def _build_request_url(scope: Scope) -> str:
  """Build a readable URL path for logging without relying on Request bodies."""
  # Construct a path with query string to mirror incoming request targets.
  path = scope.get("path", "")
  query_string = scope.get("query_string", b"")
  if query_string:
    return f"{path}?{query_string.decode('latin-1')}"

  return path


def _is_textual_content_type(content_type: str | None) -> bool:
  """Decide whether a body is safe to log as text."""
  if not content_type:
    return False

  # Allow JSON and text types while excluding binary payloads.
  normalized = content_type.lower()
  if "application/json" in normalized:
    return True

  if normalized.endswith("+json"):
    return True

  if normalized.startswith("text/"):
    return True

  if "application/x-www-form-urlencoded" in normalized:
    return True

  return False


def _truncate_body(body: bytes, max_bytes: int) -> tuple[bytes, bool]:
  """Clamp body bytes for logging to avoid oversized log entries."""
  # Cap the body size to the configured limit.
  if len(body) <= max_bytes:
    return body, False

  return body[:max_bytes], True


def _decode_body_text(body: bytes) -> str:
  """Decode bytes into text for logging with safe fallbacks."""
  # Prefer UTF-8 for JSON/text payloads and fall back safely.
  try:
    return body.decode("utf-8")
  except UnicodeDecodeError:
    return body.decode("latin-1", errors="replace")


def _format_body_for_log(body: bytes, content_type: str | None, max_bytes: int) -> str:
  """Format a request/response body for logging with redaction."""
  # Represent empty payloads explicitly to avoid ambiguous logs.
  if not body:
    return "<empty>"

  # Skip binary payloads to avoid dumping raw bytes into logs.
  if not _is_textual_content_type(content_type):
    return f"<non-text body {len(body)} bytes>"

  # Avoid parsing truncated JSON to prevent misleading logs.
  trimmed, truncated = _truncate_body(body, max_bytes)
  if truncated:
    text = _decode_body_text(trimmed)
    return f"{text}...(truncated)"

  text = _decode_body_text(trimmed)
  if content_type and ("application/json" in content_type.lower() or content_type.lower().endswith("+json")):
    try:
      parsed = json.loads(text)
    except json.JSONDecodeError:
      return text

    redacted = _redact_sensitive_keys(parsed)
    return json.dumps(redacted, ensure_ascii=True)

  return text


def _resolve_request_id(headers: dict[str, str]) -> str:
  """Reuse a caller or Cloud Tasks correlation id when it looks sane, else mint one."""
  for header in ("x-request-id", "x-cloudtasks-taskname"):
    candidate = headers.get(header, "").strip()
    if candidate and _REQUEST_ID_PATTERN.match(candidate):
      return candidate
  return str(uuid.uuid4())


def _identity_fingerprint(headers: dict[str, str]) -> str:
  """Short stable hash of x-client-info so logs correlate listeners without storing the identity."""
  identity = headers.get("x-client-info", "").strip()
  if not identity:
    return "-"
  return hashlib.sha256(identity.encode("utf-8")).hexdigest()[:12]


class RequestLoggingMiddleware:
  """Log request/response details while preserving body streams for downstream handlers."""

  def __init__(self, app: ASGIApp) -> None:
    self.app = app

  async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
    if scope["type"] != "http":
      await self.app(scope, receive, send)
      return

    settings = get_settings()
    log_http_bodies = settings.log_http_bodies
    log_http_body_bytes = settings.log_http_body_bytes

    headers = _normalize_headers(scope)
    request_id = _resolve_request_id(headers)
    scope.setdefault("state", {})["request_id"] = request_id

    method = scope.get("method", "UNKNOWN")
    url = _build_request_url(scope)
    # Health probes run every few seconds; keep them out of the info stream.
    log_level = logging.DEBUG if scope.get("path") in QUIET_PATHS else logging.INFO
    start_time = time.monotonic()
    logger.log(log_level, "Incoming request request_id=%s client=%s %s %s", request_id, _identity_fingerprint(headers), method, url)
    content_type = headers.get("content-type")

    request_body = b""
    receive_wrapper = receive
    if log_http_bodies:
      body_chunks: list[bytes] = []
      more_body = True
      while more_body:
        message = await receive()
        if message.get("type") != "http.request":
          break
        chunk = message.get("body", b"")
        if chunk:
          body_chunks.append(chunk)
        more_body = message.get("more_body", False)

      request_body = b"".join(body_chunks)
      body_sent = False

      async def receive_wrapper() -> dict[str, Any]:
        nonlocal body_sent
        if body_sent:
          return {"type": "http.request", "body": b"", "more_body": False}
        body_sent = True
        return {"type": "http.request", "body": request_body, "more_body": False}

      if request_body:
        logger.info("Request body request_id=%s body=%s", request_id, _format_body_for_log(request_body, content_type, log_http_body_bytes))

    status_code = 0
    response_content_type: str | None = None
    response_chunks: list[bytes] = []
    response_size = 0

    async def send_wrapper(message: dict[str, Any]) -> None:
      nonlocal status_code, response_content_type, response_size
      if message.get("type") == "http.response.start":
        status_code = message.get("status", 0)
        response_headers = MutableHeaders(scope=message)
        if "x-request-id" not in response_headers:
          response_headers["x-request-id"] = request_id
        response_content_type = response_headers.get("content-type")
      elif log_http_bodies and message.get("type") == "http.response.body":
        chunk = message.get("body", b"")
        # Keep one byte past the limit so the formatter can mark truncation.
        if chunk and response_size <= log_http_body_bytes:
          kept = chunk[: log_http_body_bytes + 1 - response_size]
          response_chunks.append(kept)
          response_size += len(kept)
      await send(message)

    try:
      await self.app(scope, receive_wrapper, send_wrapper)
    finally:
      elapsed_ms = (time.monotonic() - start_time) * 1000
      if status_code >= 500:
        log_level = logging.WARNING
      logger.log(log_level, "Response request_id=%s status=%s (took %.2fms)", request_id, status_code, elapsed_ms)
      if log_http_bodies and response_chunks:
        formatted = _format_body_for_log(b"".join(response_chunks), response_content_type, log_http_body_bytes)
        logger.info("Response body request_id=%s status=%s body=%s", request_id, status_code, formatted)


class SecurityHeadersMiddleware:
  """Strip server banners and keep listener payloads out of shared caches."""

  def __init__(self, app: ASGIApp) -> None:
    self.app = app

  async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
    if scope["type"] != "http":
      await self.app(scope, receive, send)
      return

    async def send_wrapper(message: dict[str, Any]) -> None:
      if message["type"] == "http.response.start":
        headers = MutableHeaders(scope=message)
        for banner in ("x-powered-by", "server"):
          if banner in headers:
            del headers[banner]
        headers.setdefault("x-content-type-options", "nosniff")
        # Status responses carry short-lived signed URLs and transcripts.
        headers.setdefault("cache-control", "no-store")
      await send(message)

    await self.app(scope, receive, send_wrapper)
