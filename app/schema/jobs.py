from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from sqlalchemy import Boolean, CheckConstraint, DateTime, ForeignKey, Index, Integer, Numeric, String, Text, func, text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from app.core.database import Base

JOB_STATUSES = ("queued", "processing", "completed", "failed", "cancelled")


class Job(Base):
  __tablename__ = "daystart_jobs"
  __table_args__ = (
    # One active job per identity and date; the enqueue path relies on this to reject duplicates under races.
    Index("ux_daystart_jobs_active_user_date", "user_id", "local_date", unique=True, postgresql_where=text("status IN ('queued', 'processing')")),
    Index("ix_daystart_jobs_claim_order", "status", "priority", "scheduled_at"),
    Index("ix_daystart_jobs_user_date", "user_id", "local_date"),
    CheckConstraint("status IN ('queued', 'processing', 'completed', 'failed', 'cancelled')", name="ck_daystart_jobs_status"),
    CheckConstraint("access_tier IN ('purchase', 'anonymous')", name="ck_daystart_jobs_access_tier"),
    CheckConstraint("daystart_length > 0", name="ck_daystart_jobs_length_positive"),
  )

  job_id: Mapped[str] = mapped_column(String, primary_key=True)
  user_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
  access_tier: Mapped[str] = mapped_column(String, nullable=False, server_default="anonymous")
  local_date: Mapped[str] = mapped_column(String(10), nullable=False)
  scheduled_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
  process_not_before: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
  timezone: Mapped[str] = mapped_column(String, nullable=False, server_default="UTC")
  is_welcome: Mapped[bool] = mapped_column(Boolean, nullable=False, server_default=text("false"))
  priority: Mapped[int] = mapped_column(Integer, nullable=False, server_default=text("50"))
  preferred_name: Mapped[str | None] = mapped_column(String(50), nullable=True)
  include_weather: Mapped[bool] = mapped_column(Boolean, nullable=False, server_default=text("false"))
  include_news: Mapped[bool] = mapped_column(Boolean, nullable=False, server_default=text("false"))
  include_sports: Mapped[bool] = mapped_column(Boolean, nullable=False, server_default=text("false"))
  include_stocks: Mapped[bool] = mapped_column(Boolean, nullable=False, server_default=text("false"))
  include_calendar: Mapped[bool] = mapped_column(Boolean, nullable=False, server_default=text("false"))
  include_quotes: Mapped[bool] = mapped_column(Boolean, nullable=False, server_default=text("false"))
  stock_symbols: Mapped[list] = mapped_column(JSONB, nullable=False, server_default=text("'[]'::jsonb"))
  selected_sports: Mapped[list] = mapped_column(JSONB, nullable=False, server_default=text("'[]'::jsonb"))
  quote_preference: Mapped[str | None] = mapped_column(String, nullable=True)
  voice_option: Mapped[str] = mapped_column(String, nullable=False, server_default="voice1")
  daystart_length: Mapped[int] = mapped_column(Integer, nullable=False, server_default=text("3"))
  location_data: Mapped[dict | None] = mapped_column(JSONB, nullable=True)
  weather_data: Mapped[dict | None] = mapped_column(JSONB, nullable=True)
  calendar_events: Mapped[list | None] = mapped_column(JSONB, nullable=True)
  status: Mapped[str] = mapped_column(String, nullable=False, server_default="queued")
  worker_id: Mapped[str | None] = mapped_column(String, nullable=True)
  lease_until: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
  attempt_count: Mapped[int] = mapped_column(Integer, nullable=False, server_default=text("0"))
  max_attempts: Mapped[int] = mapped_column(Integer, nullable=False, server_default=text("3"))
  estimated_ready_time: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
  error_code: Mapped[str | None] = mapped_column(String, nullable=True)
  error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
  superseded_by_job_id: Mapped[str | None] = mapped_column(String, nullable=True)
  script_content: Mapped[str | None] = mapped_column(Text, nullable=True)
  audio_file_path: Mapped[str | None] = mapped_column(String, nullable=True)
  audio_duration: Mapped[int | None] = mapped_column(Integer, nullable=True)
  tts_provider: Mapped[str | None] = mapped_column(String, nullable=True)
  script_cost: Mapped[Decimal | None] = mapped_column(Numeric(10, 5), nullable=True)
  tts_cost: Mapped[Decimal | None] = mapped_column(Numeric(10, 5), nullable=True)
  total_cost: Mapped[Decimal | None] = mapped_column(Numeric(10, 5), nullable=True)
  user_completed: Mapped[bool] = mapped_column(Boolean, nullable=False, server_default=text("false"))
  user_completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
  created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
  updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())
  started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
  completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class AudioArtifact(Base):
  __tablename__ = "audio_artifacts"
  __table_args__ = (Index("ix_audio_artifacts_live_created", "created_at", postgresql_where=text("deleted_at IS NULL")),)

  id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
  job_id: Mapped[str | None] = mapped_column(ForeignKey("daystart_jobs.job_id", ondelete="SET NULL"), nullable=True, unique=True)
  storage_path: Mapped[str] = mapped_column(String, nullable=False, unique=True)
  duration_seconds: Mapped[int] = mapped_column(Integer, nullable=False)
  size_bytes: Mapped[int] = mapped_column(Integer, nullable=False, server_default=text("0"))
  content_type: Mapped[str] = mapped_column(String, nullable=False, server_default="audio/mpeg")
  tts_provider: Mapped[str | None] = mapped_column(String, nullable=True)
  created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
  deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
