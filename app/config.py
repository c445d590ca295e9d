"""Application configuration loaded from environment variables."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Any

from app.utils.env import default_env_path, load_env_file

load_env_file(default_env_path(), override=False)

_DEFAULT_STOCK_SYMBOLS = "AAPL,GOOGL,MSFT,AMZN,TSLA,NVDA,META,NFLX"
_DEFAULT_SPORTS = "MLB,NHL,NBA,NFL,NCAAF"
_DEFAULT_PROVIDER_BUDGETS: dict[str, Any] = {
  "newsapi": {"limit": 90, "window_seconds": 86400},
  "gnews": {"limit": 90, "window_seconds": 86400},
  "open-meteo": {"limit": 5000, "window_seconds": 86400},
  "espn": {"limit": 600, "window_seconds": 3600},
  "yahoo-finance": {"limit": 450, "window_seconds": 86400},
}

TTS_CALLS_PER_JOB = 4


@dataclass(frozen=True)
class Settings:
  """Typed settings for the DayStart service."""

  environment: str
  allowed_origins: tuple[str, ...]
  debug: bool
  log_max_bytes: int
  log_backup_count: int
  log_http_4xx: bool
  log_http_bodies: bool
  log_http_body_bytes: int
  pg_dsn: str | None
  pg_connect_timeout: int
  worker_auth_token: str | None
  cleanup_auth_token: str | None
  task_secret: str | None
  task_service_provider: str
  cloud_tasks_queue_path: str | None
  cloud_run_invoker_service_account: str | None
  base_url: str | None
  audio_bucket: str
  signed_url_ttl_seconds: int
  gcs_storage_host: str | None
  gcp_project_id: str | None
  openai_api_key: str | None
  gemini_api_key: str | None
  elevenlabs_api_key: str | None
  newsapi_key: str | None
  gnews_api_key: str | None
  rapidapi_key: str | None
  script_provider: str
  script_model: str
  tts_primary: str
  tts_fallback: str | None
  tts_timeout_seconds: float
  upstream_timeout_seconds: float
  job_lease_minutes: int
  job_max_attempts: int
  worker_batch_size: int
  worker_concurrency: int
  job_timeout_seconds: int
  retry_base_seconds: int
  process_lead_minutes: int
  min_length_minutes: int
  max_length_minutes: int
  content_ttl_hours: int
  cache_grace_hours: int
  content_refresh_lease_seconds: int
  news_scope: str
  default_stock_symbols: tuple[str, ...]
  default_sports: tuple[str, ...]
  audio_retention_days: int
  cleanup_interval_hours: int
  job_retention_days: int
  fetch_log_retention_days: int
  provider_budgets: dict[str, Any] = field(hash=False)


@dataclass(frozen=True)
class DatabaseSettings:
  """Typed settings for database connectivity."""

  debug: bool
  pg_dsn: str | None
  pg_connect_timeout: int
  pg_pool_size: int = 5


def _parse_origins(raw: str | None) -> tuple[str, ...]:
  if not raw:
    raise ValueError("DAYSTART_ALLOWED_ORIGINS must be set to one or more origins.")

  origins = [origin.strip() for origin in raw.split(",") if origin.strip()]

  if not origins:
    raise ValueError("DAYSTART_ALLOWED_ORIGINS must include at least one origin.")

  if "*" in origins:
    raise ValueError("DAYSTART_ALLOWED_ORIGINS must not include wildcard origins.")

  return tuple(origins)


def _parse_json_dict(raw: str | None, default: dict[str, Any]) -> dict[str, Any]:
  if not raw:
    return default
  try:
    parsed = json.loads(raw)
  except json.JSONDecodeError:
    return default
  if not isinstance(parsed, dict):
    return default
  return parsed


def _parse_bool(raw: str | None) -> bool:
  """Parse a boolean-ish string from environment variables."""

  if raw is None:
    return False

  normalized = raw.strip().lower()
  return normalized in {"1", "true", "yes", "on"}


def _parse_csv(raw: str | None, default: str, *, upper: bool = False) -> tuple[str, ...]:
  value = raw if raw is not None and raw.strip() else default
  items = [item.strip() for item in value.split(",") if item.strip()]
  if upper:
    items = [item.upper() for item in items]
  return tuple(items)


def _positive_int(name: str, default: str) -> int:
  value = int(os.getenv(name, default))
  if value <= 0:
    raise ValueError(f"{name} must be a positive integer.")
  return value


@lru_cache(maxsize=1)
def get_settings() -> Settings:
  """Load settings once per process."""

  environment = os.getenv("DAYSTART_ENV", "development").lower()

  # Toggle verbose error output and diagnostics in non-production environments.
  debug = _parse_bool(os.getenv("DAYSTART_DEBUG"))

  log_max_bytes = _positive_int("DAYSTART_LOG_MAX_BYTES", "5242880")  # 5MB default
  log_backup_count = int(os.getenv("DAYSTART_LOG_BACKUP_COUNT", "10"))
  if log_backup_count < 0:
    raise ValueError("DAYSTART_LOG_BACKUP_COUNT must be zero or a positive integer.")

  # Allow opt-in logging of 4xx HTTPExceptions for diagnostics.
  log_http_4xx = _parse_bool(os.getenv("DAYSTART_LOG_HTTP_4XX"))
  # Allow opt-in logging of HTTP request/response bodies with a size cap.
  log_http_bodies = _parse_bool(os.getenv("DAYSTART_LOG_HTTP_BODIES"))
  log_http_body_bytes = _positive_int("DAYSTART_LOG_HTTP_BODY_BYTES", "2048")

  worker_auth_token = _optional_str(os.getenv("DAYSTART_WORKER_AUTH_TOKEN"))
  cleanup_auth_token = _optional_str(os.getenv("DAYSTART_CLEANUP_AUTH_TOKEN"))
  # The cleanup trigger must carry elevated credentials distinct from the worker token.
  if worker_auth_token and cleanup_auth_token and worker_auth_token == cleanup_auth_token:
    raise ValueError("DAYSTART_CLEANUP_AUTH_TOKEN must differ from DAYSTART_WORKER_AUTH_TOKEN.")

  min_length_minutes = _positive_int("DAYSTART_MIN_LENGTH_MINUTES", "1")
  max_length_minutes = _positive_int("DAYSTART_MAX_LENGTH_MINUTES", "15")
  if min_length_minutes > max_length_minutes:
    raise ValueError("DAYSTART_MIN_LENGTH_MINUTES must not exceed DAYSTART_MAX_LENGTH_MINUTES.")

  job_lease_minutes = _positive_int("DAYSTART_JOB_LEASE_MINUTES", "15")
  job_timeout_seconds = _positive_int("DAYSTART_JOB_TIMEOUT_SECONDS", "240")
  # A lease shorter than the per-job timeout would let a second worker reclaim a live job.
  if job_timeout_seconds >= job_lease_minutes * 60:
    raise ValueError("DAYSTART_JOB_TIMEOUT_SECONDS must be shorter than the job lease.")

  tts_timeout_seconds = float(os.getenv("DAYSTART_TTS_TIMEOUT_SECONDS", "45"))
  # Primary and fallback are each tried twice inside one job attempt.
  if tts_timeout_seconds <= 0 or tts_timeout_seconds * TTS_CALLS_PER_JOB >= job_timeout_seconds:
    raise ValueError(f"DAYSTART_TTS_TIMEOUT_SECONDS x {TTS_CALLS_PER_JOB} must be shorter than DAYSTART_JOB_TIMEOUT_SECONDS.")

  script_provider = (os.getenv("DAYSTART_SCRIPT_PROVIDER") or "openai").strip().lower()
  if script_provider not in {"openai", "gemini", "none"}:
    raise ValueError("DAYSTART_SCRIPT_PROVIDER must be one of 'openai', 'gemini', 'none'.")

  tts_primary = (os.getenv("DAYSTART_TTS_PRIMARY") or "elevenlabs").strip().lower()
  tts_fallback = _optional_str(os.getenv("DAYSTART_TTS_FALLBACK", "openai"))
  if tts_fallback is not None:
    tts_fallback = tts_fallback.lower()

  return Settings(
    environment=environment,
    allowed_origins=_parse_origins(os.getenv("DAYSTART_ALLOWED_ORIGINS")),
    debug=debug,
    log_max_bytes=log_max_bytes,
    log_backup_count=log_backup_count,
    log_http_4xx=log_http_4xx,
    log_http_bodies=log_http_bodies,
    log_http_body_bytes=log_http_body_bytes,
    pg_dsn=os.getenv("DAYSTART_PG_DSN") or os.getenv("DATABASE_URL"),
    pg_connect_timeout=_positive_int("DAYSTART_PG_CONNECT_TIMEOUT", "5"),
    worker_auth_token=worker_auth_token,
    cleanup_auth_token=cleanup_auth_token,
    task_secret=_optional_str(os.getenv("DAYSTART_TASK_SECRET")),
    task_service_provider=os.getenv("DAYSTART_TASK_SERVICE_PROVIDER", "local-http").lower(),
    cloud_tasks_queue_path=_optional_str(os.getenv("DAYSTART_CLOUD_TASKS_QUEUE_PATH")),
    cloud_run_invoker_service_account=_optional_str(os.getenv("DAYSTART_CLOUD_RUN_INVOKER_SERVICE_ACCOUNT")),
    base_url=_optional_str(os.getenv("DAYSTART_BASE_URL")),
    audio_bucket=os.getenv("DAYSTART_AUDIO_BUCKET", "daystart-audio"),
    signed_url_ttl_seconds=_positive_int("DAYSTART_SIGNED_URL_TTL_SECONDS", "1800"),
    gcs_storage_host=_optional_str(os.getenv("GCS_STORAGE_HOST")),
    gcp_project_id=_optional_str(os.getenv("GCP_PROJECT_ID")),
    openai_api_key=_optional_str(os.getenv("OPENAI_API_KEY")),
    gemini_api_key=_optional_str(os.getenv("GEMINI_API_KEY")),
    elevenlabs_api_key=_optional_str(os.getenv("ELEVENLABS_API_KEY")),
    newsapi_key=_optional_str(os.getenv("NEWSAPI_KEY")),
    gnews_api_key=_optional_str(os.getenv("GNEWS_API_KEY")),
    rapidapi_key=_optional_str(os.getenv("RAPIDAPI_KEY")),
    script_provider=script_provider,
    script_model=os.getenv("DAYSTART_SCRIPT_MODEL") or ("gemini-2.0-flash" if script_provider == "gemini" else "gpt-4o-mini"),
    tts_primary=tts_primary,
    tts_fallback=tts_fallback,
    tts_timeout_seconds=tts_timeout_seconds,
    upstream_timeout_seconds=float(os.getenv("DAYSTART_UPSTREAM_TIMEOUT_SECONDS", "10")),
    job_lease_minutes=job_lease_minutes,
    job_max_attempts=_positive_int("DAYSTART_JOB_MAX_ATTEMPTS", "3"),
    worker_batch_size=_positive_int("DAYSTART_WORKER_BATCH_SIZE", "5"),
    worker_concurrency=_positive_int("DAYSTART_WORKER_CONCURRENCY", "2"),
    job_timeout_seconds=job_timeout_seconds,
    retry_base_seconds=_positive_int("DAYSTART_RETRY_BASE_SECONDS", "60"),
    process_lead_minutes=_positive_int("DAYSTART_PROCESS_LEAD_MINUTES", "45"),
    min_length_minutes=min_length_minutes,
    max_length_minutes=max_length_minutes,
    content_ttl_hours=_positive_int("DAYSTART_CONTENT_TTL_HOURS", "12"),
    cache_grace_hours=_positive_int("DAYSTART_CACHE_GRACE_HOURS", "24"),
    content_refresh_lease_seconds=_positive_int("DAYSTART_CONTENT_REFRESH_LEASE_SECONDS", "120"),
    news_scope=(os.getenv("DAYSTART_NEWS_SCOPE") or "us:general").strip().lower(),
    default_stock_symbols=_parse_csv(os.getenv("DAYSTART_DEFAULT_STOCK_SYMBOLS"), _DEFAULT_STOCK_SYMBOLS, upper=True),
    default_sports=_parse_csv(os.getenv("DAYSTART_DEFAULT_SPORTS"), _DEFAULT_SPORTS, upper=True),
    audio_retention_days=_positive_int("DAYSTART_AUDIO_RETENTION_DAYS", "10"),
    cleanup_interval_hours=_positive_int("DAYSTART_CLEANUP_INTERVAL_HOURS", "20"),
    job_retention_days=_positive_int("DAYSTART_JOB_RETENTION_DAYS", "30"),
    fetch_log_retention_days=_positive_int("DAYSTART_FETCH_LOG_RETENTION_DAYS", "7"),
    provider_budgets=_parse_json_dict(os.getenv("DAYSTART_PROVIDER_BUDGETS"), _DEFAULT_PROVIDER_BUDGETS),
  )


@lru_cache(maxsize=1)
def get_database_settings() -> DatabaseSettings:
  """Load database settings without requiring web-runtime configuration like CORS."""
  # Keep database configuration isolated so migrations and offline scripts don't require unrelated env vars.
  debug = _parse_bool(os.getenv("DAYSTART_DEBUG"))
  pg_connect_timeout = _positive_int("DAYSTART_PG_CONNECT_TIMEOUT", "5")
  pg_pool_size = _positive_int("DAYSTART_PG_POOL_SIZE", "5")
  pg_dsn = os.getenv("DAYSTART_PG_DSN") or os.getenv("DATABASE_URL")
  return DatabaseSettings(debug=debug, pg_dsn=pg_dsn, pg_connect_timeout=pg_connect_timeout, pg_pool_size=pg_pool_size)


def _optional_str(raw: str | None) -> str | None:
  if raw is None:
    return None
  value = raw.strip()
  if value == "":
    return None
  return value

