import pytest

from autoseo.errors import ValidationFailed
from autoseo.models import QUEUE_ANALYTICS_SYNC, QUEUE_PUBLISHING
from autoseo.queue import Backoff, EnqueueOptions, JobQueue
from autoseo.storage import init_db
from autoseo.utils import utc_now_iso, utc_now_iso_offset


def test_enqueue_and_claim_job(conn, db_path):
    queue = JobQueue(conn)
    other = JobQueue(init_db(db_path))

    job_id = queue.enqueue(QUEUE_PUBLISHING, {"article_id": "a1"})
    claimed = queue.claim(QUEUE_PUBLISHING, "worker-1")

    assert claimed is not None
    assert claimed.id == job_id
    assert claimed.status == "running"
    assert claimed.attempts == 1
    assert claimed.payload == {"article_id": "a1"}
    assert other.claim(QUEUE_PUBLISHING, "worker-2") is None


def test_claim_is_scoped_to_queue(conn):
    queue = JobQueue(conn)
    queue.enqueue(QUEUE_PUBLISHING, {})

    assert queue.claim(QUEUE_ANALYTICS_SYNC, "worker-1") is None
    assert queue.claim(QUEUE_PUBLISHING, "worker-1") is not None


def test_dedupe_key_returns_existing_job(conn):
    queue = JobQueue(conn)

    first = queue.enqueue(QUEUE_PUBLISHING, {"n": 1}, EnqueueOptions(dedupe_key="publishing:a1:w"))
    second = queue.enqueue(QUEUE_PUBLISHING, {"n": 2}, EnqueueOptions(dedupe_key="publishing:a1:w"))

    assert first == second
    jobs = queue.list_jobs(limit=10)
    assert len(jobs) == 1
    assert jobs[0].payload == {"n": 1}


def test_priority_then_age_ordering(conn):
    queue = JobQueue(conn)
    low = queue.enqueue(QUEUE_PUBLISHING, {"p": "low"})
    high = queue.enqueue(QUEUE_PUBLISHING, {"p": "high"}, EnqueueOptions(priority=10))

    assert queue.claim(QUEUE_PUBLISHING, "w").id == high
    assert queue.claim(QUEUE_PUBLISHING, "w").id == low


def test_delayed_job_is_not_claimable_yet(conn):
    queue = JobQueue(conn)
    queue.enqueue(QUEUE_PUBLISHING, {}, EnqueueOptions(delay_seconds=600))

    assert queue.claim(QUEUE_PUBLISHING, "w") is None


def test_retryable_failure_requeues_with_backoff(conn):
    queue = JobQueue(conn)
    job_id = queue.enqueue(
        QUEUE_PUBLISHING,
        {},
        EnqueueOptions(max_attempts=3, backoff=Backoff(type="fixed", delay_seconds=120)),
    )
    job = queue.claim(QUEUE_PUBLISHING, "w")

    status = queue.nack(job, "timed out", "TransportError", retryable=True)

    assert status == "queued"
    stored = queue.get(job_id)
    assert stored.status == "queued"
    assert stored.error_code == "TransportError"
    assert stored.run_at > utc_now_iso_offset(seconds=60)
    assert queue.claim(QUEUE_PUBLISHING, "w") is None


def test_exhausted_job_goes_dead_and_can_be_retried(conn):
    queue = JobQueue(conn)
    job_id = queue.enqueue(QUEUE_PUBLISHING, {}, EnqueueOptions(max_attempts=1))
    job = queue.claim(QUEUE_PUBLISHING, "w")

    assert queue.nack(job, "still failing", "TransportError", retryable=True) == "dead"

    dead = queue.list_dead()
    assert [item.id for item in dead] == [job_id]
    assert dead[0].error_code == "Exhausted"

    assert queue.retry_dead(job_id) is True
    requeued = queue.get(job_id)
    assert requeued.status == "queued"
    assert requeued.attempts == 0
    assert queue.claim(QUEUE_PUBLISHING, "w").id == job_id


def test_non_retryable_failure_is_terminal(conn):
    queue = JobQueue(conn)
    job_id = queue.enqueue(QUEUE_PUBLISHING, {})
    job = queue.claim(QUEUE_PUBLISHING, "w")

    assert queue.nack(job, "bad request", "ValidationFailed", retryable=False) == "failed"
    stored = queue.get(job_id)
    assert stored.status == "failed"
    assert stored.error_code == "ValidationFailed"


def test_job_lifecycle_records_result(conn):
    queue = JobQueue(conn)
    job_id = queue.enqueue(QUEUE_PUBLISHING, {"article_id": "a1"})
    queue.claim(QUEUE_PUBLISHING, "w")

    assert queue.ack(job_id, {"url": "https://blog.acme.test/a1"}) is True

    stored = queue.get(job_id)
    assert stored.status == "succeeded"
    assert stored.result == {"url": "https://blog.acme.test/a1"}
    assert queue.ack(job_id) is False


def test_stale_lock_requeues_job(conn):
    queue = JobQueue(conn)
    job_id = queue.enqueue(QUEUE_PUBLISHING, None)
    assert queue.claim(QUEUE_PUBLISHING, "worker-1") is not None

    conn.execute(
        "UPDATE jobs SET locked_at = ? WHERE id = ?",
        (utc_now_iso_offset(seconds=-3600), job_id),
    )
    conn.commit()

    reclaimed = queue.claim(QUEUE_PUBLISHING, "worker-2")
    assert reclaimed is not None
    assert reclaimed.id == job_id
    assert reclaimed.locked_by == "worker-2"
    assert reclaimed.attempts == 2


def test_cancel_only_queued_jobs(conn):
    queue = JobQueue(conn)
    job_id = queue.enqueue(QUEUE_PUBLISHING, {})

    assert queue.cancel(job_id) is True
    assert queue.get(job_id).status == "canceled"
    assert queue.cancel(job_id) is False


def test_repeatable_job_registers_schedule(conn):
    queue = JobQueue(conn)

    ref = queue.enqueue(
        QUEUE_ANALYTICS_SYNC,
        {"project_id": "p1"},
        EnqueueOptions(repeat="0 * * * *", priority=3),
        job_name="hourly-sync",
    )

    assert ref == "repeat:hourly-sync"
    schedules = {schedule.name: schedule for schedule in queue.schedules()}
    assert schedules["hourly-sync"].pattern == "0 * * * *"
    assert schedules["hourly-sync"].options == {"priority": 3}
    assert queue.list_jobs() == []


def test_enqueue_rejects_unknown_queue_and_bad_options(conn):
    queue = JobQueue(conn)
    with pytest.raises(ValidationFailed):
        queue.enqueue("emails", {})
    with pytest.raises(ValidationFailed):
        queue.enqueue(QUEUE_PUBLISHING, {}, EnqueueOptions(backoff=Backoff(type="linear")))
    with pytest.raises(ValidationFailed):
        queue.enqueue(QUEUE_PUBLISHING, {}, EnqueueOptions(repeat="every hour", dedupe_key="x"))


def test_backoff_delays():
    assert [Backoff("exponential", 30).delay_for(n) for n in (1, 2, 3)] == [30, 60, 120]
    assert [Backoff("fixed", 300).delay_for(n) for n in (1, 5)] == [300, 300]


def test_queue_defaults_come_from_config(conn, config):
    queue = JobQueue(conn, config)
    job_id = queue.enqueue(QUEUE_ANALYTICS_SYNC, {})
    job = queue.get(job_id)

    assert job.max_attempts == config.queue(QUEUE_ANALYTICS_SYNC).max_attempts
    assert job.backoff_type == "fixed"
    assert job.requested_at <= utc_now_iso()
