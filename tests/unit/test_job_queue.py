"""Queue state machine: enqueue guards, claim ordering, leases and retries."""

from __future__ import annotations

import asyncio
from datetime import timedelta
from decimal import Decimal

import pytest

from app.core.errors import DuplicateActiveJobError, LeaseConflictError
from app.jobs.models import PRIORITY_IMMEDIATE, JobResult
from app.jobs.queue import JobQueue
from tests.fakes import job_request


def _result(path: str = "user/2026-10-18/job.mp3") -> JobResult:
  return JobResult(audio_file_path=path, audio_duration=170, script_content="Good morning.", tts_provider="openai", script_cost=Decimal("0.001"), tts_cost=Decimal("0.01"), size_bytes=1024, content_type="audio/mpeg")


@pytest.fixture
def queue(jobs_repo, settings, clock) -> JobQueue:
  return JobQueue(jobs_repo, settings, clock=clock)


@pytest.mark.anyio
async def test_enqueue_persists_queued_job_with_lead_time(queue, clock) -> None:
  job = await queue.enqueue(job_request(), identity="listener-1")
  assert job.status == "queued"
  assert job.user_id == "listener-1"
  assert job.local_date == "2026-10-18"
  assert job.process_not_before == job.scheduled_at - timedelta(minutes=45)
  assert job.attempt_count == 0


@pytest.mark.anyio
async def test_enqueue_rejects_second_active_job_for_same_date(queue) -> None:
  first = await queue.enqueue(job_request(), identity="listener-1")
  with pytest.raises(DuplicateActiveJobError) as excinfo:
    await queue.enqueue(job_request(), identity="listener-1")
  assert excinfo.value.code == "duplicate_active_job"
  assert excinfo.value.existing_job_id == first.job_id


@pytest.mark.anyio
async def test_enqueue_allows_same_date_for_other_identity(queue) -> None:
  await queue.enqueue(job_request(), identity="listener-1")
  other = await queue.enqueue(job_request(), identity="listener-2")
  assert other.status == "queued"


@pytest.mark.anyio
async def test_completed_job_requires_force_update_and_is_superseded(queue, jobs_repo, clock) -> None:
  first = await queue.enqueue(job_request(scheduled_at="NOW"), identity="listener-1")
  [claimed] = await queue.claim(1, worker_id="w1")
  await queue.complete(claimed.job_id, worker_id="w1", result=_result())

  with pytest.raises(DuplicateActiveJobError) as excinfo:
    await queue.enqueue(job_request(), identity="listener-1")
  assert excinfo.value.code == "already_completed"

  replacement = await queue.enqueue(job_request(force_update=True), identity="listener-1")
  assert replacement.job_id != first.job_id
  old = await queue.get(first.job_id)
  assert old.status == "cancelled"
  assert old.superseded_by_job_id == replacement.job_id


@pytest.mark.anyio
async def test_claim_orders_by_priority_then_schedule(queue, clock) -> None:
  later = await queue.enqueue(job_request(process_not_before="2026-10-17T00:00:00Z"), identity="a")
  now_job = await queue.enqueue(job_request(scheduled_at="NOW"), identity="b")
  clock.advance(hours=1)
  claimed = await queue.claim(5, worker_id="w1")
  assert [job.job_id for job in claimed] == [now_job.job_id, later.job_id]
  assert claimed[0].priority == PRIORITY_IMMEDIATE
  assert all(job.status == "processing" and job.attempt_count == 1 for job in claimed)


@pytest.mark.anyio
async def test_claim_skips_jobs_not_yet_due(queue) -> None:
  await queue.enqueue(job_request(), identity="a")
  assert await queue.claim(5, worker_id="w1") == []


@pytest.mark.anyio
async def test_concurrent_claims_never_share_a_job(queue) -> None:
  for index in range(10):
    await queue.enqueue(job_request(scheduled_at="NOW"), identity=f"listener-{index}")

  batches = await asyncio.gather(*(queue.claim(3, worker_id=f"w{index}") for index in range(4)))
  claimed_ids = [job.job_id for batch in batches for job in batch]
  assert len(claimed_ids) == 10
  assert len(set(claimed_ids)) == 10


@pytest.mark.anyio
async def test_fail_requeues_with_backoff_then_fails_when_exhausted(queue, clock) -> None:
  job = await queue.enqueue(job_request(scheduled_at="NOW"), identity="a")

  for attempt in (1, 2):
    [claimed] = await queue.claim(1, worker_id="w1")
    assert claimed.attempt_count == attempt
    updated = await queue.fail(job.job_id, worker_id="w1", error_code="upstream_unavailable", error_message="503")
    assert updated.status == "queued"
    assert updated.process_not_before == clock.now + timedelta(seconds=60 * 2 ** (attempt - 1))
    clock.advance(minutes=5)

  [claimed] = await queue.claim(1, worker_id="w1")
  assert claimed.attempt_count == 3
  updated = await queue.fail(job.job_id, worker_id="w1", error_code="upstream_unavailable", error_message="503")
  assert updated.status == "failed"
  assert updated.attempt_count <= updated.max_attempts


@pytest.mark.anyio
async def test_permanent_failure_skips_retries(queue) -> None:
  job = await queue.enqueue(job_request(scheduled_at="NOW"), identity="a")
  await queue.claim(1, worker_id="w1")
  updated = await queue.fail(job.job_id, worker_id="w1", error_code="tts_rejected", error_message="policy", permanent=True)
  assert updated.status == "failed"
  assert updated.attempt_count == 1


@pytest.mark.anyio
async def test_expired_lease_is_reclaimed_and_old_holder_cannot_finish(queue, clock) -> None:
  job = await queue.enqueue(job_request(scheduled_at="NOW"), identity="a")
  await queue.claim(1, worker_id="crashed")
  clock.advance(minutes=16)

  reclaimed = await queue.reclaim_stale()
  assert reclaimed.requeued == [job.job_id]

  [claimed] = await queue.claim(1, worker_id="w2")
  assert claimed.worker_id == "w2"
  assert claimed.attempt_count == 2

  with pytest.raises(LeaseConflictError):
    await queue.complete(job.job_id, worker_id="crashed", result=_result())
  with pytest.raises(LeaseConflictError):
    await queue.fail(job.job_id, worker_id="crashed", error_code="x", error_message="late")

  done = await queue.complete(job.job_id, worker_id="w2", result=_result())
  assert done.status == "completed"


@pytest.mark.anyio
async def test_reclaim_fails_job_with_no_attempts_left(queue, jobs_repo, clock) -> None:
  job = await queue.enqueue(job_request(scheduled_at="NOW"), identity="a")
  jobs_repo.jobs[job.job_id].max_attempts = 1
  await queue.claim(1, worker_id="crashed")
  clock.advance(minutes=16)

  reclaimed = await queue.reclaim_stale()
  assert reclaimed.failed == [job.job_id]
  assert (await queue.get(job.job_id)).status == "failed"


@pytest.mark.anyio
async def test_claim_specific_only_takes_claimable_job(queue) -> None:
  job = await queue.enqueue(job_request(scheduled_at="NOW"), identity="a")
  first = await queue.claim_specific(job.job_id, worker_id="w1")
  assert first is not None
  assert await queue.claim_specific(job.job_id, worker_id="w2") is None
  assert await queue.claim_specific("missing", worker_id="w2") is None


def test_retry_delay_doubles_per_attempt(queue) -> None:
  assert queue.retry_delay(1) == timedelta(seconds=60)
  assert queue.retry_delay(2) == timedelta(seconds=120)
  assert queue.retry_delay(3) == timedelta(seconds=240)
