"""Enqueue request validation and normalization."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from zoneinfo import ZoneInfo

import pytest
from pydantic import ValidationError

from app.core.errors import JobValidationError
from app.jobs.models import PRIORITY_IMMEDIATE, PRIORITY_LATER, PRIORITY_SOON, PRIORITY_TODAY
from app.jobs.validation import build_job_record, compute_priority, normalize_sports, normalize_stock_symbols, resolve_local_date, resolve_voice, sanitize_name
from tests.fakes import START, job_request, make_settings


def _build(**overrides):
  return build_job_record(job_request(**overrides), job_id="job-1", identity="listener-1", access_tier="anonymous", settings=make_settings(), now=START)


def test_today_resolves_in_listener_timezone() -> None:
  late_evening_utc = datetime(2026, 10, 18, 2, 0, tzinfo=UTC)
  assert resolve_local_date("TODAY", ZoneInfo("America/Los_Angeles"), late_evening_utc) == "2026-10-17"
  assert resolve_local_date("today", ZoneInfo("Asia/Tokyo"), late_evening_utc) == "2026-10-18"


def test_local_date_must_be_a_calendar_date() -> None:
  with pytest.raises(JobValidationError) as excinfo:
    resolve_local_date("2026-02-30", ZoneInfo("UTC"), START)
  assert excinfo.value.field == "local_date"
  with pytest.raises(JobValidationError):
    resolve_local_date("10/17/2026", ZoneInfo("UTC"), START)


@pytest.mark.parametrize("length", [0, 16, 60])
def test_length_outside_bounds_is_rejected(length: int) -> None:
  with pytest.raises(JobValidationError) as excinfo:
    _build(daystart_length=length)
  assert excinfo.value.field == "daystart_length"


@pytest.mark.parametrize("length", [1, 5, 15])
def test_length_inside_bounds_is_accepted(length: int) -> None:
  assert _build(daystart_length=length).daystart_length == length


def test_unknown_timezone_is_rejected() -> None:
  with pytest.raises(JobValidationError) as excinfo:
    _build(timezone="Mars/Olympus_Mons")
  assert excinfo.value.field == "timezone"


def test_missing_content_flag_is_rejected_by_request_model() -> None:
  with pytest.raises(ValidationError):
    job_request(include_news=None)


def test_unknown_fields_are_rejected_by_request_model() -> None:
  with pytest.raises(ValidationError):
    job_request(favourite_colour="green")


def test_scheduled_job_waits_for_lead_time() -> None:
  record = _build()
  assert record.scheduled_at == datetime(2026, 10, 18, 13, 30, tzinfo=UTC)
  assert record.process_not_before == record.scheduled_at - timedelta(minutes=45)
  assert record.estimated_ready_time == record.process_not_before + timedelta(seconds=90)
  assert record.enabled_content_types() == ["news"]


def test_now_and_welcome_jobs_are_immediate() -> None:
  now_record = _build(scheduled_at="NOW")
  assert now_record.priority == PRIORITY_IMMEDIATE
  assert now_record.process_not_before == START

  welcome = _build(is_welcome=True)
  assert welcome.priority == PRIORITY_IMMEDIATE
  assert welcome.process_not_before == START


def test_explicit_process_not_before_is_respected() -> None:
  record = _build(process_not_before="2026-10-18T05:00:00")
  assert record.process_not_before == datetime(2026, 10, 18, 12, 0, tzinfo=UTC)


def test_priority_tracks_time_until_due() -> None:
  assert compute_priority(immediate=False, scheduled_at=START + timedelta(hours=2), now=START) == PRIORITY_SOON
  assert compute_priority(immediate=False, scheduled_at=START + timedelta(hours=12), now=START) == PRIORITY_TODAY
  assert compute_priority(immediate=False, scheduled_at=START + timedelta(days=2), now=START) == PRIORITY_LATER


def test_sanitize_name_strips_emoji_and_scripts() -> None:
  assert sanitize_name("  José 🎉 ") == "José"
  assert sanitize_name("O'Brien-Smith") == "O'Brien-Smith"
  assert sanitize_name("🎉🎉") is None
  assert sanitize_name(None) is None
  assert len(sanitize_name("a" * 120)) == 50


def test_stock_symbols_are_normalized_and_deduplicated() -> None:
  assert normalize_stock_symbols([" aapl", "AAPL", "brk.b", "^GSPC", ""]) == ["AAPL", "BRK.B", "^GSPC"]
  with pytest.raises(JobValidationError) as excinfo:
    normalize_stock_symbols(["DROP TABLE"])
  assert excinfo.value.field == "stock_symbols"


def test_sports_default_to_configured_leagues() -> None:
  assert normalize_sports(None, ("NBA", "CRICKET", "NFL")) == ["NBA", "NFL"]
  assert normalize_sports(["nba", "NBA", "mlb"], ()) == ["NBA", "MLB"]
  with pytest.raises(JobValidationError):
    normalize_sports(["curling"], ())


def test_voice_aliases_resolve_to_canonical_voices() -> None:
  assert resolve_voice("Grace") == "voice1"
  assert resolve_voice("voice3") == "voice3"
  with pytest.raises(JobValidationError):
    resolve_voice("robot")
