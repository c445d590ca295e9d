import logging
import os
import subprocess
import sys
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI

from app.core.database import dispose_engine
from app.core.env_contract import EnvContractError, validate_runtime_env_or_raise
from app.core.logging import _initialize_logging
from app.services.storage_client import build_storage_client
from app.utils.env import parse_env_bool, redact_dsn

_GUARDED_ENVIRONMENTS = {"production", "prod", "stage", "staging"}


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
  """Initialize logging, enforce the env contract and prepare local infrastructure."""
  from app.config import get_settings

  settings = get_settings()
  logger = logging.getLogger("app.core.lifespan")

  try:
    _initialize_logging(settings)
    validate_runtime_env_or_raise(logger=logger, target="service")
  except EnvContractError:
    logger.error("Environment contract failed; refusing to start the service.", exc_info=True)
    raise

  # The storage emulator starts empty, so the audio bucket is created on boot there.
  try:
    storage_client = build_storage_client(settings)
    await storage_client.ensure_bucket()
    logger.info("Audio bucket ready: %s", storage_client.bucket_name)
  except Exception as exc:  # noqa: BLE001
    logger.warning("Failed to ensure audio bucket at startup: %s", exc)

  if parse_env_bool(os.getenv("DAYSTART_AUTO_APPLY_MIGRATIONS")):
    _apply_startup_migrations(settings.environment, settings.pg_dsn, logger)

  logger.info("Startup complete environment=%s", settings.environment)
  try:
    yield
  finally:
    await dispose_engine()


def _apply_startup_migrations(environment: str, pg_dsn: str | None, logger: logging.Logger) -> None:
  if environment in _GUARDED_ENVIRONMENTS and not parse_env_bool(os.getenv("DAYSTART_FORCE_STARTUP_MIGRATIONS")):
    logger.info("Skipping startup migrations for environment=%s", environment)
    return
  logger.info("Applying migrations DAYSTART_PG_DSN=%s", redact_dsn(pg_dsn))
  repo_root = Path(__file__).resolve().parents[2]
  try:
    subprocess.run([sys.executable, "scripts/migrate_with_lock.py"], check=True, cwd=repo_root)
  except subprocess.CalledProcessError:
    logger.warning("Startup migrations failed; migrator returned non-zero exit status.", exc_info=True)
