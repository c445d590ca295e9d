"""Compiled Postgres statements behind claims, refresh leases and rate budgets."""

from __future__ import annotations

from sqlalchemy.dialects import postgresql

from app.content.rate_limit import budget_increment_statement
from app.storage.postgres_content_repo import refresh_lease_statement
from app.storage.postgres_jobs_repo import claimable_jobs_query
from tests.fakes import START


def _sql(stmt) -> str:  # type: ignore[no-untyped-def]
  return " ".join(str(stmt.compile(dialect=postgresql.dialect())).split())


def test_claim_query_skips_locked_rows_in_priority_order() -> None:
  sql = _sql(claimable_jobs_query(now=START, limit=5))
  assert sql.endswith("FOR UPDATE SKIP LOCKED")
  assert "ORDER BY daystart_jobs.priority DESC, daystart_jobs.scheduled_at ASC, daystart_jobs.created_at ASC" in sql
  assert "daystart_jobs.attempt_count < daystart_jobs.max_attempts" in sql
  assert "daystart_jobs.lease_until <" in sql


def test_claim_query_can_target_one_job() -> None:
  sql = _sql(claimable_jobs_query(now=START, limit=1, job_id="job-1"))
  assert "daystart_jobs.job_id =" in sql
  assert "LIMIT" in sql


def test_refresh_lease_only_steals_lapsed_leases() -> None:
  sql = _sql(refresh_lease_statement("news", "us:general", holder="w1", now=START, lease_until=START))
  assert "ON CONFLICT (content_type, scope) DO UPDATE" in sql
  assert "WHERE content_refresh_leases.lease_until <" in sql
  assert "RETURNING content_refresh_leases.holder" in sql


def test_budget_increment_stops_at_limit() -> None:
  sql = _sql(budget_increment_statement("newsapi", window=1_700_000_000, limit=100, now=START))
  assert "ON CONFLICT (provider, window_start) DO UPDATE" in sql
  assert "provider_rate_counters.request_count +" in sql
  assert "WHERE provider_rate_counters.request_count <" in sql
  assert "RETURNING provider_rate_counters.request_count" in sql
