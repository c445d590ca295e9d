from __future__ import annotations

from datetime import datetime

from sqlalchemy import BigInteger, DateTime, Float, Index, Integer, String, Text, func
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from app.core.database import Base


class ContentCacheEntry(Base):
  __tablename__ = "content_cache"
  __table_args__ = (Index("ix_content_cache_expires_at", "expires_at"),)

  content_type: Mapped[str] = mapped_column(String, primary_key=True)
  scope: Mapped[str] = mapped_column(String, primary_key=True)
  payload: Mapped[dict] = mapped_column(JSONB, nullable=False)
  source: Mapped[str] = mapped_column(String, nullable=False)
  fetched_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
  expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class ContentRefreshLease(Base):
  __tablename__ = "content_refresh_leases"

  content_type: Mapped[str] = mapped_column(String, primary_key=True)
  scope: Mapped[str] = mapped_column(String, primary_key=True)
  holder: Mapped[str] = mapped_column(String, nullable=False)
  lease_until: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class ProviderRateCounter(Base):
  __tablename__ = "provider_rate_counters"

  provider: Mapped[str] = mapped_column(String, primary_key=True)
  window_start: Mapped[int] = mapped_column(BigInteger, primary_key=True)
  request_count: Mapped[int] = mapped_column(Integer, nullable=False)
  request_limit: Mapped[int] = mapped_column(Integer, nullable=False)
  updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())


class ContentFetchLog(Base):
  __tablename__ = "content_fetch_log"
  __table_args__ = (Index("ix_content_fetch_log_type_created", "content_type", "created_at"),)

  id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
  content_type: Mapped[str] = mapped_column(String, nullable=False)
  scope: Mapped[str] = mapped_column(String, nullable=False)
  source: Mapped[str | None] = mapped_column(String, nullable=True)
  fetch_status: Mapped[str] = mapped_column(String, nullable=False)
  cached_age_hours: Mapped[float | None] = mapped_column(Float, nullable=True)
  error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
  payload_summary: Mapped[dict | None] = mapped_column(JSONB, nullable=True)
  created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now(), index=True)
