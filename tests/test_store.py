import asyncio
from datetime import timedelta

import pytest

from formjobs.v1.core.exceptions import InvalidStateError, NotFoundError, ValidationError
from formjobs.v1.infra.jobs.models import JobStatus
from formjobs.v1.infra.jobs.store import JobStore


async def _claim_one(store: JobStore):
    jobs = await store.claim_next_batch(1)
    assert len(jobs) == 1
    return jobs[0]


class TestEnqueue:
    async def test_enqueue_creates_pending_job(self, store, clock):
        job_id = await store.enqueue("echo", {"entry_id": 7}, max_attempts=3)

        job = await store.get(job_id)
        assert job.status == JobStatus.PENDING.value
        assert job.attempt_count == 0
        assert job.max_attempts == 3
        assert job.payload == {"entry_id": 7}
        assert job.owner_token is None
        assert job.created_at == clock()
        assert job.scheduled_for == clock()

    async def test_enqueue_with_delay(self, store, clock):
        job_id = await store.enqueue("echo", {}, max_attempts=1, delay=timedelta(seconds=5))

        job = await store.get(job_id)
        assert job.scheduled_for == clock() + timedelta(seconds=5)

    @pytest.mark.parametrize(
        "job_type, payload, max_attempts",
        [
            ("", {}, 3),
            ("x" * 51, {}, 3),
            ("echo", ["not", "a", "dict"], 3),
            ("echo", {"bad": object()}, 3),
            ("echo", {}, 0),
        ],
    )
    async def test_enqueue_rejects_malformed_jobs(self, store, job_type, payload, max_attempts):
        with pytest.raises(ValidationError):
            await store.enqueue(job_type, payload, max_attempts=max_attempts)

        stats = await store.get_statistics()
        assert stats.total == 0


class TestClaim:
    async def test_claim_is_fifo_and_sets_ownership(self, store, clock):
        first = await store.enqueue("echo", {"n": 1}, max_attempts=3)
        clock.advance(1)
        second = await store.enqueue("echo", {"n": 2}, max_attempts=3)

        jobs = await store.claim_next_batch(5)

        assert [job.id for job in jobs] == [first, second]
        for job in jobs:
            assert job.status == JobStatus.PROCESSING.value
            assert job.owner_token
            assert job.started_at == clock()
        assert jobs[0].owner_token != jobs[1].owner_token

    async def test_claim_respects_limit(self, store):
        for n in range(4):
            await store.enqueue("echo", {"n": n}, max_attempts=3)

        assert len(await store.claim_next_batch(3)) == 3
        assert len(await store.claim_next_batch(3)) == 1
        assert await store.claim_next_batch(3) == []

    async def test_claim_skips_jobs_not_yet_eligible(self, store, clock):
        await store.enqueue("echo", {}, max_attempts=3, delay=timedelta(seconds=10))

        assert await store.claim_next_batch(1) == []
        assert len(await store.claim_next_batch(1, eligible_before=clock() + timedelta(seconds=10))) == 1

    async def test_claim_respects_concurrency_cap(self, database, clock):
        capped = JobStore(database.SessionLocal, clock=clock, max_concurrent=2)
        for n in range(5):
            await capped.enqueue("echo", {"n": n}, max_attempts=3)

        assert len(await capped.claim_next_batch(5)) == 2
        assert await capped.claim_next_batch(5) == []
        assert await capped.count_by_status(JobStatus.PROCESSING) == 2

    async def test_concurrent_claims_never_hand_out_a_job_twice(self, store):
        for n in range(10):
            await store.enqueue("echo", {"n": n}, max_attempts=3)

        batches = await asyncio.gather(*(store.claim_next_batch(3) for _ in range(4)))

        claimed_ids = [job.id for batch in batches for job in batch]
        assert len(claimed_ids) == 10
        assert len(set(claimed_ids)) == 10
        assert await store.count_by_status(JobStatus.PENDING) == 0


class TestOutcomes:
    async def test_mark_completed(self, store):
        job_id = await store.enqueue("echo", {}, max_attempts=3)
        job = await _claim_one(store)

        completed = await store.mark_completed(job_id, job.owner_token, {"text": "hi"})

        assert completed.status == JobStatus.COMPLETED.value
        assert completed.result == {"text": "hi"}
        assert completed.owner_token is None
        assert completed.completed_at is not None

    async def test_outcome_requires_current_owner(self, store):
        job_id = await store.enqueue("echo", {}, max_attempts=3)
        await _claim_one(store)

        with pytest.raises(InvalidStateError, match="owned by another worker"):
            await store.mark_completed(job_id, "not-the-owner", None)

        job = await store.get(job_id)
        assert job.status == JobStatus.PROCESSING.value

    async def test_outcome_on_unknown_job(self, store):
        import uuid

        with pytest.raises(NotFoundError):
            await store.mark_failed(uuid.uuid4(), "token", "boom")

    async def test_mark_retry_counts_attempt_and_schedules(self, store, clock):
        job_id = await store.enqueue("echo", {}, max_attempts=3)
        job = await _claim_one(store)
        next_run = clock() + timedelta(minutes=2)

        retried = await store.mark_retry(job_id, job.owner_token, "timeout", next_run)

        assert retried.status == JobStatus.RETRY.value
        assert retried.attempt_count == 1
        assert retried.scheduled_for == next_run
        assert retried.owner_token is None
        assert retried.error_message == "timeout"

    async def test_mark_retry_refused_when_attempts_exhausted(self, store, clock):
        job_id = await store.enqueue("echo", {}, max_attempts=1)
        job = await _claim_one(store)

        with pytest.raises(InvalidStateError, match="attempts exhausted"):
            await store.mark_retry(job_id, job.owner_token, "x", clock())

        failed = await store.mark_failed(job_id, job.owner_token, "x")
        assert failed.attempt_count == 1

    async def test_promote_due_retries(self, store, clock):
        job_id = await store.enqueue("echo", {}, max_attempts=3)
        job = await _claim_one(store)
        await store.mark_retry(job_id, job.owner_token, "x", clock() + timedelta(seconds=60))

        assert await store.promote_due_retries() == 0
        clock.advance(60)
        assert await store.promote_due_retries() == 1

        assert (await store.get(job_id)).status == JobStatus.PENDING.value


class TestTerminalStates:
    async def test_completed_job_rejects_every_mutation(self, store, clock):
        job_id = await store.enqueue("echo", {}, max_attempts=3)
        job = await _claim_one(store)
        await store.mark_completed(job_id, job.owner_token, None)

        with pytest.raises(InvalidStateError):
            await store.mark_failed(job_id, job.owner_token, "late")
        with pytest.raises(InvalidStateError):
            await store.mark_retry(job_id, job.owner_token, "late", clock())
        with pytest.raises(InvalidStateError):
            await store.cancel(job_id)
        with pytest.raises(InvalidStateError):
            await store.requeue(job_id)

        assert (await store.get(job_id)).status == JobStatus.COMPLETED.value

    async def test_cancelled_job_is_terminal(self, store):
        job_id = await store.enqueue("echo", {}, max_attempts=3)
        cancelled = await store.cancel(job_id)

        assert cancelled.status == JobStatus.CANCELLED.value
        assert cancelled.is_terminal()
        with pytest.raises(InvalidStateError):
            await store.cancel(job_id)
        with pytest.raises(InvalidStateError):
            await store.requeue(job_id)
        assert await store.claim_next_batch(1) == []

    @pytest.mark.parametrize(
        "status",
        [
            JobStatus.PROCESSING,
            JobStatus.COMPLETED,
            JobStatus.FAILED,
            JobStatus.RETRY,
            JobStatus.CANCELLED,
        ],
    )
    async def test_cancel_only_pending(self, store, clock, status):
        job_id = await store.enqueue("echo", {}, max_attempts=3)
        if status == JobStatus.CANCELLED:
            await store.cancel(job_id)
        else:
            job = await _claim_one(store)
            if status == JobStatus.COMPLETED:
                await store.mark_completed(job_id, job.owner_token, None)
            elif status == JobStatus.FAILED:
                await store.mark_failed(job_id, job.owner_token, "boom")
            elif status == JobStatus.RETRY:
                await store.mark_retry(
                    job_id, job.owner_token, "later", clock() + timedelta(minutes=2)
                )
        before = await store.get(job_id)
        clock.advance(1)

        with pytest.raises(
            InvalidStateError, match=f"Cannot cancel job in status '{status.value}'"
        ) as exc_info:
            await store.cancel(job_id)

        assert exc_info.value.error_code == "INVALID_STATE"
        after = await store.get(job_id)
        assert after.status == status.value
        assert after.updated_at == before.updated_at


class TestRequeue:
    async def test_requeue_failed_job_preserves_attempts(self, store, clock):
        job_id = await store.enqueue("echo", {}, max_attempts=3)
        job = await _claim_one(store)
        await store.mark_failed(job_id, job.owner_token, "boom")

        requeued, changed = await store.requeue(job_id)

        assert changed is True
        assert requeued.status == JobStatus.PENDING.value
        assert requeued.attempt_count == 1
        assert requeued.scheduled_for == clock()
        assert requeued.completed_at is None

    async def test_requeue_can_reset_attempts(self, store):
        job_id = await store.enqueue("echo", {}, max_attempts=3)
        job = await _claim_one(store)
        await store.mark_failed(job_id, job.owner_token, "boom")

        requeued, _ = await store.requeue(job_id, reset_attempts=True)

        assert requeued.attempt_count == 0

    async def test_requeue_pending_job_is_a_no_op(self, store):
        job_id = await store.enqueue("echo", {}, max_attempts=3)

        job, changed = await store.requeue(job_id)

        assert changed is False
        assert job.status == JobStatus.PENDING.value

    async def test_requeue_unknown_job(self, store):
        import uuid

        with pytest.raises(NotFoundError):
            await store.requeue(uuid.uuid4())


class TestMaintenance:
    async def test_reclaim_stuck_and_stale_pending(self, store, clock):
        stuck_id = await store.enqueue("echo", {}, max_attempts=3)
        await _claim_one(store)
        waiting_id = await store.enqueue("echo", {}, max_attempts=3)

        clock.advance(301)

        assert [job.id for job in await store.reclaim_stuck(timedelta(seconds=300))] == [stuck_id]
        assert await store.reclaim_stuck(timedelta(seconds=600)) == []
        stale = await store.find_stale_pending(timedelta(seconds=300))
        assert [job.id for job in stale] == [waiting_id]

    async def test_release_stuck_consumes_attempt(self, store, clock):
        job_id = await store.enqueue("echo", {}, max_attempts=3)
        job = await _claim_one(store)

        released = await store.release_stuck(job_id, job.owner_token, "stuck")

        assert released.status == JobStatus.PENDING.value
        assert released.attempt_count == 1
        assert released.error_code == "WORKER_TIMEOUT"

    async def test_delete_older_than_only_removes_finished_jobs(self, store, clock):
        completed_id = await store.enqueue("echo", {}, max_attempts=3)
        job = await _claim_one(store)
        await store.mark_completed(completed_id, job.owner_token, None)

        failed_id = await store.enqueue("echo", {}, max_attempts=1)
        job = await _claim_one(store)
        await store.mark_failed(failed_id, job.owner_token, "boom")

        cancelled_id = await store.enqueue("echo", {}, max_attempts=3)
        await store.cancel(cancelled_id)

        pending_id = await store.enqueue("echo", {}, max_attempts=3)
        processing_id = await store.enqueue("echo", {}, max_attempts=3)
        await _claim_one(store)

        clock.advance(hours=48)
        recent_id = await store.enqueue("echo", {}, max_attempts=3)
        await store.cancel(recent_id)

        deleted = await store.delete_older_than(clock() - timedelta(hours=24))

        assert deleted == 3
        for job_id in (completed_id, failed_id, cancelled_id):
            assert await store.get(job_id) is None
        for job_id in (pending_id, processing_id, recent_id):
            assert await store.get(job_id) is not None

    async def test_delete_older_than_refuses_active_statuses(self, store, clock):
        with pytest.raises(ValidationError, match="Only finished jobs"):
            await store.delete_older_than(clock(), statuses=[JobStatus.PENDING])


class TestStatistics:
    async def test_statistics_add_up_to_total(self, store):
        for n in range(3):
            await store.enqueue("echo", {"n": n}, max_attempts=3)
        await store.enqueue("other", {}, max_attempts=3)
        job = await _claim_one(store)
        await store.mark_completed(job.id, job.owner_token, None)

        stats = await store.get_statistics()

        assert stats.total == 4
        assert stats.pending == 3
        assert stats.completed == 1
        assert (
            stats.pending + stats.processing + stats.completed
            + stats.failed + stats.retry + stats.cancelled
        ) == stats.total
        assert stats.by_type == {"echo": 3, "other": 1}

    async def test_list_by_status_newest_first(self, store, clock):
        first = await store.enqueue("echo", {}, max_attempts=3)
        clock.advance(1)
        second = await store.enqueue("echo", {}, max_attempts=3)
        await store.cancel(second)

        assert [job.id for job in await store.list_by_status()] == [second, first]
        assert [job.id for job in await store.list_by_status([JobStatus.PENDING])] == [first]
