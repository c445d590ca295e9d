"""Lightweight .env loader for local configuration."""

from __future__ import annotations

import os
from pathlib import Path
from urllib.parse import urlparse


def default_env_path() -> Path:
  """Return the default .env path at the repo root."""

  return Path(__file__).resolve().parents[2] / ".env"


def _strip_quotes(value: str) -> str:
  if len(value) >= 2 and value[0] == value[-1] and value[0] in {'"', "'"}:
    return value[1:-1]
  return value


def load_env_file(path: Path, *, override: bool = False) -> None:
  """Load key=value pairs from a .env file into the process environment."""

  if not path.is_file():
    return

  for raw_line in path.read_text(encoding="utf-8").splitlines():
    line = raw_line.strip()
    if not line or line.startswith("#"):
      continue
    if line.startswith("export "):
      line = line[len("export ") :].lstrip()
    key, sep, value = line.partition("=")
    key = key.strip()
    if not sep or not key:
      continue
    # Existing process variables win unless the caller asks otherwise.
    if not override and key in os.environ:
      continue
    os.environ[key] = _strip_quotes(value.strip())


def parse_env_bool(value: str | None) -> bool:
  if value is None:
    return False
  return value.strip().lower() in {"1", "true", "yes", "on"}


def redact_dsn(raw: str | None) -> str:
  """Strip credentials from a DSN for logging, keeping user, host and database."""
  if not raw:
    return "<unset>"
  parsed = urlparse(raw)
  if not parsed.scheme:
    return "<invalid>"
  user = parsed.username or ""
  host = parsed.hostname or ""
  port = f":{parsed.port}" if parsed.port else ""
  netloc = f"{user}@{host}{port}" if user else f"{host}{port}"
  database = parsed.path.lstrip("/")
  return f"{parsed.scheme}://{netloc}/{database}" if database else f"{parsed.scheme}://{netloc}"
