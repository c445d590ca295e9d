from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, StrictBool, StrictInt, StrictStr, field_validator

from app.jobs.models import JobStatus

MAX_CALENDAR_EVENTS = 20
MAX_STOCK_SYMBOLS = 25


class LocationData(BaseModel):
  """Coarse location used to scope weather content."""

  city: StrictStr | None = Field(default=None, max_length=100)
  state: StrictStr | None = Field(default=None, max_length=100)
  country: StrictStr | None = Field(default=None, max_length=100)
  model_config = ConfigDict(extra="forbid")


class CreateJobRequest(BaseModel):
  """Request payload for scheduling a DayStart briefing."""

  local_date: StrictStr = Field(description="Listener's local date (YYYY-MM-DD) or 'TODAY'.", examples=["2026-10-17", "TODAY"])
  scheduled_at: StrictStr = Field(description="ISO-8601 timestamp the briefing should be ready for, or 'NOW'.", examples=["2026-10-17T06:30:00-07:00"])
  timezone: StrictStr = Field(min_length=1, description="IANA timezone name.", examples=["America/Los_Angeles"])
  preferred_name: StrictStr | None = Field(default=None, max_length=200, description="Name used in the greeting; sanitized before storage.")
  include_weather: StrictBool
  include_news: StrictBool
  include_sports: StrictBool
  include_stocks: StrictBool
  include_calendar: StrictBool
  include_quotes: StrictBool
  stock_symbols: list[StrictStr] = Field(default_factory=list, max_length=100)
  selected_sports: list[StrictStr] | None = Field(default=None, max_length=10, description="League codes such as NBA or NFL; defaults to every supported league.")
  quote_preference: StrictStr | None = Field(default=None, max_length=40)
  voice_option: StrictStr = Field(default="voice1", description="voice1, voice2, voice3 or a named voice.")
  daystart_length: StrictInt = Field(default=3, description="Target briefing length in minutes.")
  process_not_before: StrictStr | None = Field(default=None, description="Optional ISO-8601 earliest processing time.")
  location_data: LocationData | None = None
  weather_data: dict[str, Any] | None = Field(default=None, description="Optional client-supplied forecast that replaces the weather lookup.")
  calendar_events: list[StrictStr] | None = Field(default=None, max_length=MAX_CALENDAR_EVENTS)
  force_update: StrictBool = Field(default=False, description="Replace a completed briefing for the same date.")
  is_welcome: StrictBool = Field(default=False, description="First-run briefing processed ahead of the schedule.")
  model_config = ConfigDict(extra="forbid")

  @field_validator("calendar_events")
  @classmethod
  def _trim_calendar_events(cls, value: list[str] | None) -> list[str] | None:
    if value is None:
      return None
    return [event.strip()[:200] for event in value if event.strip()]


class CreateJobResponse(BaseModel):
  """Response returned after a briefing job is enqueued."""

  success: bool = True
  job_id: str
  status: JobStatus
  local_date: str
  priority: int
  estimated_ready_time: datetime | None
  request_id: str | None = None


AudioStatus = Literal["ready", "processing", "failed", "not_found"]


class AudioStatusResponse(BaseModel):
  """Polling response describing a briefing's progress and artifact."""

  success: bool = True
  status: AudioStatus
  job_id: str | None = None
  local_date: str | None = None
  audio_url: str | None = None
  duration: int | None = None
  transcript: str | None = None
  estimated_ready_time: datetime | None = None
  error_code: str | None = None
  error_message: str | None = None
  request_id: str | None = None


class ProcessJobsResponse(BaseModel):
  """Acknowledgement returned by the processing trigger."""

  success: bool = True
  message: str
  worker_id: str
  started_at: datetime
  request_id: str | None = None


class RefreshContentRequest(BaseModel):
  """Optional filter for the refresh trigger."""

  content_types: list[Literal["weather", "news", "sports", "stocks"]] | None = None
  model_config = ConfigDict(extra="forbid")


class SourceRefreshResult(BaseModel):
  content_type: str
  scope: str
  source: str | None = None
  status: Literal["success", "failed", "skipped"]
  error: str | None = None


class RefreshContentResponse(BaseModel):
  success: bool
  successful: int
  failed: int
  duration_ms: int
  results: list[SourceRefreshResult]
  request_id: str | None = None


class CleanupResponse(BaseModel):
  success: bool = True
  status: Literal["completed", "partial", "skipped"]
  files_scanned: int
  files_deleted: int
  files_failed: int
  cache_rows_deleted: int
  jobs_purged: int
  fetch_logs_deleted: int
  rate_counters_deleted: int = 0
  errors: list[str]
  runtime_seconds: float | None = None
  request_id: str | None = None


class ContentFreshnessEntry(BaseModel):
  content_type: str
  last_fetched_at: datetime | None = None
  age_hours: float | None = None
  bucket: Literal["fresh", "recent", "stale", "cache_only", "critical"]
  fetches_24h: dict[str, int] = Field(default_factory=dict)


class ContentStatusResponse(BaseModel):
  """Freshness of cached content per type, newest payload first."""

  success: bool = True
  checked_at: datetime
  overall: Literal["fresh", "recent", "stale", "cache_only", "critical"]
  content: list[ContentFreshnessEntry]
  request_id: str | None = None


class ProcessJobTask(BaseModel):
  """Payload posted by the task dispatcher for immediate processing."""

  job_id: StrictStr = Field(min_length=1, max_length=64)
