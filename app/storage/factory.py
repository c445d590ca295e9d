from app.config import Settings
from app.storage.cleanup_repo import CleanupRepository
from app.storage.content_repo import ContentRepository
from app.storage.jobs_repo import JobsRepository
from app.storage.postgres_cleanup_repo import PostgresCleanupRepository
from app.storage.postgres_content_repo import PostgresContentRepository
from app.storage.postgres_jobs_repo import PostgresJobsRepository


def _require_dsn(settings: Settings) -> None:
  if not settings.pg_dsn:
    raise ValueError("DAYSTART_PG_DSN must be set to enable Postgres persistence.")


def _get_jobs_repo(settings: Settings) -> JobsRepository:
  """Return the active jobs repository."""
  _require_dsn(settings)
  return PostgresJobsRepository()


def _get_content_repo(settings: Settings) -> ContentRepository:
  """Return the active content cache repository."""
  _require_dsn(settings)
  return PostgresContentRepository()


def _get_cleanup_repo(settings: Settings) -> CleanupRepository:
  """Return the active retention bookkeeping repository."""
  _require_dsn(settings)
  return PostgresCleanupRepository()
