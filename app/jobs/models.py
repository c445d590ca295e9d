"""Domain models for DayStart briefing jobs."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Literal

JobStatus = Literal["queued", "processing", "completed", "failed", "cancelled"]
AccessTier = Literal["purchase", "anonymous"]
ContentType = Literal["weather", "news", "sports", "stocks", "calendar", "quotes"]

ACTIVE_STATUSES: tuple[JobStatus, ...] = ("queued", "processing")
TERMINAL_STATUSES: tuple[JobStatus, ...] = ("completed", "failed", "cancelled")
CONTENT_TYPES: tuple[ContentType, ...] = ("weather", "news", "sports", "stocks", "calendar", "quotes")

# Claim ordering: welcome and "NOW" requests first, then nearest schedule.
PRIORITY_IMMEDIATE = 100
PRIORITY_SOON = 75
PRIORITY_TODAY = 50
PRIORITY_LATER = 25


@dataclass
class JobRecord:
  """Represents one briefing generation request."""

  job_id: str
  user_id: str
  local_date: str
  scheduled_at: datetime
  timezone: str
  daystart_length: int
  voice_option: str
  status: JobStatus = "queued"
  access_tier: AccessTier = "anonymous"
  is_welcome: bool = False
  priority: int = PRIORITY_TODAY
  process_not_before: datetime | None = None
  preferred_name: str | None = None
  include_weather: bool = False
  include_news: bool = False
  include_sports: bool = False
  include_stocks: bool = False
  include_calendar: bool = False
  include_quotes: bool = False
  stock_symbols: list[str] = field(default_factory=list)
  selected_sports: list[str] = field(default_factory=list)
  quote_preference: str | None = None
  location_data: dict | None = None
  weather_data: dict | None = None
  calendar_events: list[str] | None = None
  worker_id: str | None = None
  lease_until: datetime | None = None
  attempt_count: int = 0
  max_attempts: int = 3
  estimated_ready_time: datetime | None = None
  error_code: str | None = None
  error_message: str | None = None
  superseded_by_job_id: str | None = None
  script_content: str | None = None
  audio_file_path: str | None = None
  audio_duration: int | None = None
  tts_provider: str | None = None
  script_cost: Decimal | None = None
  tts_cost: Decimal | None = None
  total_cost: Decimal | None = None
  user_completed: bool = False
  user_completed_at: datetime | None = None
  created_at: datetime | None = None
  updated_at: datetime | None = None
  started_at: datetime | None = None
  completed_at: datetime | None = None

  def enabled_content_types(self) -> list[ContentType]:
    """Return the content sections this job asked for, in canonical order."""
    return [content_type for content_type in CONTENT_TYPES if getattr(self, f"include_{content_type}")]

  @property
  def attempts_remaining(self) -> int:
    return max(self.max_attempts - self.attempt_count, 0)


@dataclass(frozen=True)
class JobResult:
  """Outputs a worker stores when completing a job."""

  audio_file_path: str
  audio_duration: int
  script_content: str
  tts_provider: str
  script_cost: Decimal
  tts_cost: Decimal
  size_bytes: int
  content_type: str

  @property
  def total_cost(self) -> Decimal:
    return self.script_cost + self.tts_cost


@dataclass(frozen=True)
class ReclaimResult:
  """Jobs whose expired leases were reset by reclaim."""

  requeued: list[str] = field(default_factory=list)
  failed: list[str] = field(default_factory=list)

  @property
  def total(self) -> int:
    return len(self.requeued) + len(self.failed)
