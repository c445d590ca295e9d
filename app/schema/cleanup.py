from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, Float, Integer, String, text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from app.core.database import Base


class CleanupLog(Base):
  __tablename__ = "cleanup_log"

  id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
  started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)
  completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
  status: Mapped[str] = mapped_column(String, nullable=False)
  files_scanned: Mapped[int] = mapped_column(Integer, nullable=False, server_default=text("0"))
  files_deleted: Mapped[int] = mapped_column(Integer, nullable=False, server_default=text("0"))
  files_failed: Mapped[int] = mapped_column(Integer, nullable=False, server_default=text("0"))
  cache_rows_deleted: Mapped[int] = mapped_column(Integer, nullable=False, server_default=text("0"))
  jobs_purged: Mapped[int] = mapped_column(Integer, nullable=False, server_default=text("0"))
  fetch_logs_deleted: Mapped[int] = mapped_column(Integer, nullable=False, server_default=text("0"))
  errors: Mapped[list] = mapped_column(JSONB, nullable=False, server_default=text("'[]'::jsonb"))
  runtime_seconds: Mapped[float | None] = mapped_column(Float, nullable=True)
