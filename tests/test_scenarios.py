"""End-to-end walks through the job lifecycle with a controlled clock."""

from formjobs.v1.infra.jobs.engine import build_engine
from formjobs.v1.infra.jobs.errors import TransientExecutionError
from formjobs.v1.infra.jobs.models import JobStatus


async def test_transient_failures_exhaust_attempts(engine, handler, clock):
    handler.outcomes = [TransientExecutionError("provider down")] * 3
    job_id = await engine.enqueue("echo", {"entry_id": 1}, max_attempts=3)

    await engine.scheduler.tick()
    await engine.scheduler.drain(timeout=5)
    job = await engine.store.get(job_id)
    assert (job.status, job.attempt_count) == (JobStatus.RETRY.value, 1)
    assert job.scheduled_for == clock() + engine.retry_policy.backoff(1)

    # Not due yet
    assert await engine.scheduler.tick() == 0

    clock.advance(seconds=engine.retry_policy.backoff(1).total_seconds())
    assert await engine.scheduler.tick() == 1
    await engine.scheduler.drain(timeout=5)
    job = await engine.store.get(job_id)
    assert (job.status, job.attempt_count) == (JobStatus.RETRY.value, 2)

    clock.advance(seconds=engine.retry_policy.backoff(2).total_seconds())
    assert await engine.scheduler.tick() == 1
    await engine.scheduler.drain(timeout=5)
    job = await engine.store.get(job_id)
    assert (job.status, job.attempt_count) == (JobStatus.FAILED.value, 3)
    assert job.error_message == "TransientExecutionError: provider down"
    assert len(handler.calls) == 3


async def test_single_slot_runs_jobs_one_at_a_time(test_settings, database, clock, registry):
    settings = test_settings.model_copy(update={"job_max_concurrent": 1})
    engine = build_engine(settings, database, clock=clock, registry=registry)
    first = await engine.enqueue("echo", {"n": 1})
    clock.advance(1)
    second = await engine.enqueue("echo", {"n": 2})

    claimed = await engine.store.claim_next_batch(5)
    assert [job.id for job in claimed] == [first]
    assert await engine.store.claim_next_batch(5) == []

    await engine.executor.execute(claimed[0])

    (next_job,) = await engine.store.claim_next_batch(5)
    assert next_job.id == second


async def test_status_counts_add_up_through_transitions(engine, handler, clock):
    handler.outcomes = [TransientExecutionError("flaky"), {"ok": True}]

    async def assert_conserved(expected_total):
        stats = (await engine.admin.get_status(quiet=True)).stats
        by_status = (
            stats.pending
            + stats.processing
            + stats.completed
            + stats.failed
            + stats.retry
            + stats.cancelled
        )
        assert stats.total == by_status == expected_total
        return stats

    retried = await engine.enqueue("echo", {"n": 1})
    clock.advance(1)
    succeeded = await engine.enqueue("echo", {"n": 2})
    clock.advance(1)
    cancelled = await engine.enqueue("echo", {"n": 3})
    await assert_conserved(3)

    await engine.admin.cancel(cancelled)
    claimed = await engine.store.claim_next_batch(2)
    stats = await assert_conserved(3)
    assert (stats.processing, stats.cancelled) == (2, 1)

    for job in claimed:
        await engine.executor.execute(job)
    stats = await assert_conserved(3)
    assert (stats.retry, stats.completed) == (1, 1)

    clock.advance(minutes=2)
    await engine.scheduler.tick()
    await engine.scheduler.drain(timeout=5)
    stats = await assert_conserved(3)
    assert (stats.completed, stats.cancelled, stats.pending) == (2, 1, 0)
    assert (await engine.store.get(retried)).attempt_count == 1
    assert (await engine.store.get(succeeded)).result == {"ok": True}
