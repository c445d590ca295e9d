"""Validation and normalization of briefing enqueue requests."""

from __future__ import annotations

import re
from datetime import UTC, date, datetime, timedelta
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from app.api.models import MAX_STOCK_SYMBOLS, CreateJobRequest
from app.config import Settings
from app.core.errors import JobValidationError
from app.jobs.models import PRIORITY_IMMEDIATE, PRIORITY_LATER, PRIORITY_SOON, PRIORITY_TODAY, AccessTier, JobRecord

MAX_NAME_LENGTH = 50
READY_ESTIMATE = timedelta(seconds=90)
SUPPORTED_LEAGUES = ("MLB", "NHL", "NBA", "NFL", "NCAAF")
VOICE_ALIASES = {"voice1": "voice1", "voice2": "voice2", "voice3": "voice3", "grace": "voice1", "rachel": "voice2", "matthew": "voice3"}

_SYMBOL_PATTERN = re.compile(r"^[A-Z0-9\-.$=^]{1,16}$")
_DATE_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}$")
# Keep Latin letters (including accented forms), spaces and common name punctuation.
_NAME_DISALLOWED = re.compile(r"[^A-Za-zÀ-ɏ\s'.\-]")
_WHITESPACE = re.compile(r"\s+")


def sanitize_name(raw: str | None) -> str | None:
  """Strip emoji and non-Latin characters so the name reads cleanly in narration."""
  if raw is None:
    return None
  cleaned = _WHITESPACE.sub(" ", _NAME_DISALLOWED.sub("", raw)).strip(" .-'")
  if not cleaned:
    return None
  return cleaned[:MAX_NAME_LENGTH].rstrip()


def resolve_timezone(name: str) -> ZoneInfo:
  try:
    return ZoneInfo(name)
  except (ZoneInfoNotFoundError, ValueError) as exc:
    raise JobValidationError("timezone", f"Unknown timezone '{name}'.") from exc


def resolve_local_date(raw: str, tz: ZoneInfo, now: datetime) -> str:
  """Return YYYY-MM-DD, resolving 'TODAY' in the listener's timezone."""
  if raw.strip().upper() == "TODAY":
    return now.astimezone(tz).date().isoformat()
  if not _DATE_PATTERN.match(raw):
    raise JobValidationError("local_date", "local_date must be YYYY-MM-DD.")
  try:
    return date.fromisoformat(raw).isoformat()
  except ValueError as exc:
    raise JobValidationError("local_date", f"local_date '{raw}' is not a calendar date.") from exc


def parse_timestamp(field: str, raw: str, tz: ZoneInfo) -> datetime:
  """Parse an ISO-8601 timestamp; naive values are read in the listener's timezone."""
  try:
    parsed = datetime.fromisoformat(raw.strip().replace("Z", "+00:00"))
  except ValueError as exc:
    raise JobValidationError(field, f"{field} must be an ISO-8601 timestamp.") from exc
  if parsed.tzinfo is None:
    parsed = parsed.replace(tzinfo=tz)
  return parsed.astimezone(UTC)


def normalize_stock_symbols(symbols: list[str]) -> list[str]:
  normalized: list[str] = []
  for symbol in symbols:
    candidate = symbol.strip().upper()
    if not candidate:
      continue
    if not _SYMBOL_PATTERN.match(candidate):
      raise JobValidationError("stock_symbols", f"Invalid stock symbol '{symbol}'.")
    if candidate not in normalized:
      normalized.append(candidate)
  if len(normalized) > MAX_STOCK_SYMBOLS:
    raise JobValidationError("stock_symbols", f"At most {MAX_STOCK_SYMBOLS} stock symbols are supported.")
  return normalized


def normalize_sports(selected: list[str] | None, defaults: tuple[str, ...]) -> list[str]:
  if selected is None:
    return [league for league in defaults if league in SUPPORTED_LEAGUES]
  normalized: list[str] = []
  for league in selected:
    candidate = league.strip().upper()
    if candidate not in SUPPORTED_LEAGUES:
      raise JobValidationError("selected_sports", f"Unsupported league '{league}'.")
    if candidate not in normalized:
      normalized.append(candidate)
  return normalized


def resolve_voice(raw: str) -> str:
  voice = VOICE_ALIASES.get(raw.strip().lower())
  if voice is None:
    raise JobValidationError("voice_option", f"Unknown voice option '{raw}'.")
  return voice


def compute_priority(*, immediate: bool, scheduled_at: datetime, now: datetime) -> int:
  """Rank claim order: immediate requests first, then by how soon the briefing is due."""
  if immediate:
    return PRIORITY_IMMEDIATE
  until_due = scheduled_at - now
  if until_due <= timedelta(hours=4):
    return PRIORITY_SOON
  if until_due <= timedelta(hours=24):
    return PRIORITY_TODAY
  return PRIORITY_LATER


def build_job_record(request: CreateJobRequest, *, job_id: str, identity: str, access_tier: AccessTier, settings: Settings, now: datetime) -> JobRecord:
  """Validate a create request and produce the job row to insert.

  Raises JobValidationError naming the offending field; nothing is persisted on failure.
  """
  tz = resolve_timezone(request.timezone)
  local_date = resolve_local_date(request.local_date, tz, now)

  if not settings.min_length_minutes <= request.daystart_length <= settings.max_length_minutes:
    raise JobValidationError("daystart_length", f"daystart_length must be between {settings.min_length_minutes} and {settings.max_length_minutes} minutes.")

  immediate = request.is_welcome or request.scheduled_at.strip().upper() == "NOW"
  scheduled_at = now if request.scheduled_at.strip().upper() == "NOW" else parse_timestamp("scheduled_at", request.scheduled_at, tz)

  if immediate:
    process_not_before = now
  elif request.process_not_before:
    process_not_before = parse_timestamp("process_not_before", request.process_not_before, tz)
  else:
    process_not_before = scheduled_at - timedelta(minutes=settings.process_lead_minutes)
  estimated_ready_time = max(process_not_before, now) + READY_ESTIMATE

  location = request.location_data.model_dump(exclude_none=True) if request.location_data else None

  return JobRecord(
    job_id=job_id,
    user_id=identity,
    access_tier=access_tier,
    local_date=local_date,
    scheduled_at=scheduled_at,
    timezone=request.timezone,
    daystart_length=request.daystart_length,
    voice_option=resolve_voice(request.voice_option),
    status="queued",
    is_welcome=request.is_welcome,
    priority=compute_priority(immediate=immediate, scheduled_at=scheduled_at, now=now),
    process_not_before=process_not_before,
    preferred_name=sanitize_name(request.preferred_name),
    include_weather=request.include_weather,
    include_news=request.include_news,
    include_sports=request.include_sports,
    include_stocks=request.include_stocks,
    include_calendar=request.include_calendar,
    include_quotes=request.include_quotes,
    stock_symbols=normalize_stock_symbols(request.stock_symbols),
    selected_sports=normalize_sports(request.selected_sports, settings.default_sports),
    quote_preference=request.quote_preference,
    location_data=location or None,
    weather_data=request.weather_data,
    calendar_events=request.calendar_events,
    max_attempts=settings.job_max_attempts,
    estimated_ready_time=estimated_ready_time,
    created_at=now,
    updated_at=now,
  )
