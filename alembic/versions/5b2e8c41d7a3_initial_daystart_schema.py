"""initial daystart schema: jobs, artifacts, content cache, rate counters, cleanup log

Revision ID: 5b2e8c41d7a3
Revises:
Create Date: 2026-09-28 09:00:00.000000
"""

from __future__ import annotations

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from app.core.migration_guards import guarded_create_index, guarded_create_table, guarded_drop_index, guarded_drop_table
from sqlalchemy.dialects import postgresql

revision: str = "5b2e8c41d7a3"
down_revision: str | Sequence[str] | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

_EMPTY_JSON_ARRAY = sa.text("'[]'::jsonb")


def _jsonb() -> postgresql.JSONB:
  return postgresql.JSONB(astext_type=sa.Text())


def upgrade() -> None:
  """Create the queue, artifact, cache and retention tables."""
  guarded_create_table(
    "daystart_jobs",
    sa.Column("job_id", sa.String(), nullable=False),
    sa.Column("user_id", sa.String(), nullable=False),
    sa.Column("access_tier", sa.String(), nullable=False, server_default="anonymous"),
    sa.Column("local_date", sa.String(length=10), nullable=False),
    sa.Column("scheduled_at", sa.DateTime(timezone=True), nullable=False),
    sa.Column("process_not_before", sa.DateTime(timezone=True), nullable=True),
    sa.Column("timezone", sa.String(), nullable=False, server_default="UTC"),
    sa.Column("is_welcome", sa.Boolean(), nullable=False, server_default=sa.text("false")),
    sa.Column("priority", sa.Integer(), nullable=False, server_default=sa.text("50")),
    sa.Column("preferred_name", sa.String(length=50), nullable=True),
    sa.Column("include_weather", sa.Boolean(), nullable=False, server_default=sa.text("false")),
    sa.Column("include_news", sa.Boolean(), nullable=False, server_default=sa.text("false")),
    sa.Column("include_sports", sa.Boolean(), nullable=False, server_default=sa.text("false")),
    sa.Column("include_stocks", sa.Boolean(), nullable=False, server_default=sa.text("false")),
    sa.Column("include_calendar", sa.Boolean(), nullable=False, server_default=sa.text("false")),
    sa.Column("include_quotes", sa.Boolean(), nullable=False, server_default=sa.text("false")),
    sa.Column("stock_symbols", _jsonb(), nullable=False, server_default=_EMPTY_JSON_ARRAY),
    sa.Column("selected_sports", _jsonb(), nullable=False, server_default=_EMPTY_JSON_ARRAY),
    sa.Column("quote_preference", sa.String(), nullable=True),
    sa.Column("voice_option", sa.String(), nullable=False, server_default="voice1"),
    sa.Column("daystart_length", sa.Integer(), nullable=False, server_default=sa.text("3")),
    sa.Column("location_data", _jsonb(), nullable=True),
    sa.Column("weather_data", _jsonb(), nullable=True),
    sa.Column("calendar_events", _jsonb(), nullable=True),
    sa.Column("status", sa.String(), nullable=False, server_default="queued"),
    sa.Column("worker_id", sa.String(), nullable=True),
    sa.Column("lease_until", sa.DateTime(timezone=True), nullable=True),
    sa.Column("attempt_count", sa.Integer(), nullable=False, server_default=sa.text("0")),
    sa.Column("max_attempts", sa.Integer(), nullable=False, server_default=sa.text("3")),
    sa.Column("estimated_ready_time", sa.DateTime(timezone=True), nullable=True),
    sa.Column("error_code", sa.String(), nullable=True),
    sa.Column("error_message", sa.Text(), nullable=True),
    sa.Column("superseded_by_job_id", sa.String(), nullable=True),
    sa.Column("script_content", sa.Text(), nullable=True),
    sa.Column("audio_file_path", sa.String(), nullable=True),
    sa.Column("audio_duration", sa.Integer(), nullable=True),
    sa.Column("tts_provider", sa.String(), nullable=True),
    sa.Column("script_cost", sa.Numeric(10, 5), nullable=True),
    sa.Column("tts_cost", sa.Numeric(10, 5), nullable=True),
    sa.Column("total_cost", sa.Numeric(10, 5), nullable=True),
    sa.Column("user_completed", sa.Boolean(), nullable=False, server_default=sa.text("false")),
    sa.Column("user_completed_at", sa.DateTime(timezone=True), nullable=True),
    sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
    sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
    sa.PrimaryKeyConstraint("job_id"),
    sa.CheckConstraint("status IN ('queued', 'processing', 'completed', 'failed', 'cancelled')", name="ck_daystart_jobs_status"),
    sa.CheckConstraint("access_tier IN ('purchase', 'anonymous')", name="ck_daystart_jobs_access_tier"),
    sa.CheckConstraint("daystart_length > 0", name="ck_daystart_jobs_length_positive"),
  )
  guarded_create_index("ix_daystart_jobs_user_id", "daystart_jobs", ["user_id"], unique=False)
  guarded_create_index("ix_daystart_jobs_user_date", "daystart_jobs", ["user_id", "local_date"], unique=False)
  guarded_create_index("ix_daystart_jobs_claim_order", "daystart_jobs", ["status", "priority", "scheduled_at"], unique=False)
  # Enqueue relies on this to reject a second active job for the same listener and date.
  guarded_create_index("ux_daystart_jobs_active_user_date", "daystart_jobs", ["user_id", "local_date"], unique=True, postgresql_where=sa.text("status IN ('queued', 'processing')"))

  guarded_create_table(
    "audio_artifacts",
    sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
    sa.Column("job_id", sa.String(), sa.ForeignKey("daystart_jobs.job_id", ondelete="SET NULL"), nullable=True),
    sa.Column("storage_path", sa.String(), nullable=False),
    sa.Column("duration_seconds", sa.Integer(), nullable=False),
    sa.Column("size_bytes", sa.Integer(), nullable=False, server_default=sa.text("0")),
    sa.Column("content_type", sa.String(), nullable=False, server_default="audio/mpeg"),
    sa.Column("tts_provider", sa.String(), nullable=True),
    sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
    sa.PrimaryKeyConstraint("id"),
    sa.UniqueConstraint("job_id", name="audio_artifacts_job_id_key"),
    sa.UniqueConstraint("storage_path", name="audio_artifacts_storage_path_key"),
  )
  guarded_create_index("ix_audio_artifacts_live_created", "audio_artifacts", ["created_at"], unique=False, postgresql_where=sa.text("deleted_at IS NULL"))

  guarded_create_table(
    "content_cache",
    sa.Column("content_type", sa.String(), nullable=False),
    sa.Column("scope", sa.String(), nullable=False),
    sa.Column("payload", _jsonb(), nullable=False),
    sa.Column("source", sa.String(), nullable=False),
    sa.Column("fetched_at", sa.DateTime(timezone=True), nullable=False),
    sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
    sa.PrimaryKeyConstraint("content_type", "scope"),
  )
  guarded_create_index("ix_content_cache_expires_at", "content_cache", ["expires_at"], unique=False)

  guarded_create_table(
    "content_refresh_leases",
    sa.Column("content_type", sa.String(), nullable=False),
    sa.Column("scope", sa.String(), nullable=False),
    sa.Column("holder", sa.String(), nullable=False),
    sa.Column("lease_until", sa.DateTime(timezone=True), nullable=False),
    sa.PrimaryKeyConstraint("content_type", "scope"),
  )

  guarded_create_table(
    "provider_rate_counters",
    sa.Column("provider", sa.String(), nullable=False),
    sa.Column("window_start", sa.BigInteger(), nullable=False),
    sa.Column("request_count", sa.Integer(), nullable=False),
    sa.Column("request_limit", sa.Integer(), nullable=False),
    sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    sa.PrimaryKeyConstraint("provider", "window_start"),
  )

  guarded_create_table(
    "content_fetch_log",
    sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
    sa.Column("content_type", sa.String(), nullable=False),
    sa.Column("scope", sa.String(), nullable=False),
    sa.Column("source", sa.String(), nullable=True),
    sa.Column("fetch_status", sa.String(), nullable=False),
    sa.Column("cached_age_hours", sa.Float(), nullable=True),
    sa.Column("error_message", sa.Text(), nullable=True),
    sa.Column("payload_summary", _jsonb(), nullable=True),
    sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    sa.PrimaryKeyConstraint("id"),
  )
  guarded_create_index("ix_content_fetch_log_created_at", "content_fetch_log", ["created_at"], unique=False)
  guarded_create_index("ix_content_fetch_log_type_created", "content_fetch_log", ["content_type", "created_at"], unique=False)

  guarded_create_table(
    "cleanup_log",
    sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
    sa.Column("started_at", sa.DateTime(timezone=True), nullable=False),
    sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
    sa.Column("status", sa.String(), nullable=False),
    sa.Column("files_scanned", sa.Integer(), nullable=False, server_default=sa.text("0")),
    sa.Column("files_deleted", sa.Integer(), nullable=False, server_default=sa.text("0")),
    sa.Column("files_failed", sa.Integer(), nullable=False, server_default=sa.text("0")),
    sa.Column("cache_rows_deleted", sa.Integer(), nullable=False, server_default=sa.text("0")),
    sa.Column("jobs_purged", sa.Integer(), nullable=False, server_default=sa.text("0")),
    sa.Column("fetch_logs_deleted", sa.Integer(), nullable=False, server_default=sa.text("0")),
    sa.Column("errors", _jsonb(), nullable=False, server_default=_EMPTY_JSON_ARRAY),
    sa.Column("runtime_seconds", sa.Float(), nullable=True),
    sa.PrimaryKeyConstraint("id"),
  )
  guarded_create_index("ix_cleanup_log_started_at", "cleanup_log", ["started_at"], unique=False)


def downgrade() -> None:
  """Drop every DayStart table."""
  guarded_drop_index("ix_cleanup_log_started_at", table_name="cleanup_log")
  guarded_drop_table("cleanup_log")
  guarded_drop_index("ix_content_fetch_log_type_created", table_name="content_fetch_log")
  guarded_drop_index("ix_content_fetch_log_created_at", table_name="content_fetch_log")
  guarded_drop_table("content_fetch_log")
  guarded_drop_table("provider_rate_counters")
  guarded_drop_table("content_refresh_leases")
  guarded_drop_index("ix_content_cache_expires_at", table_name="content_cache")
  guarded_drop_table("content_cache")
  guarded_drop_index("ix_audio_artifacts_live_created", table_name="audio_artifacts")
  guarded_drop_table("audio_artifacts")
  for index_name in ("ux_daystart_jobs_active_user_date", "ix_daystart_jobs_claim_order", "ix_daystart_jobs_user_date", "ix_daystart_jobs_user_id"):
    guarded_drop_index(index_name, table_name="daystart_jobs")
  guarded_drop_table("daystart_jobs")
