from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from .config import BACKOFF_TYPES, Config, default_config
from .cron import parse_cron
from .errors import ValidationFailed
from .models import QUEUE_NAMES, Job, JobSchedule
from .storage import (
    cancel_job,
    claim_next_job,
    complete_job,
    count_jobs,
    finish_job_unsuccessfully,
    get_job,
    insert_job,
    list_jobs,
    list_schedules,
    mark_schedule_fired,
    requeue_terminal_job,
    schedule_job_retry,
    upsert_schedule,
)
from .utils import log_event, utc_now_iso_offset


@dataclass(frozen=True)
class Backoff:
    type: str = "exponential"
    delay_seconds: int = 60

    def delay_for(self, attempts: int) -> int:
        if self.type == "fixed":
            return self.delay_seconds
        return self.delay_seconds * (2 ** max(attempts - 1, 0))


@dataclass(frozen=True)
class EnqueueOptions:
    repeat: str | None = None
    max_attempts: int | None = None
    backoff: Backoff | None = None
    priority: int = 0
    delay_seconds: int = 0
    dedupe_key: str | None = None


class JobQueue:
    """Durable, prioritised job queue backed by the ``jobs`` table.

    A queue instance is bound to one connection; workers build their own per
    thread. Per-queue defaults for attempts and backoff come from the runtime
    config.
    """

    def __init__(self, conn: Any, config: Config | None = None) -> None:
        self.conn = conn
        self.config = config or default_config()
        self.logger = logging.getLogger("autoseo.queue")

    def enqueue(
        self,
        queue_name: str,
        payload: dict[str, object] | None,
        options: EnqueueOptions | None = None,
        job_name: str | None = None,
    ) -> str:
        _check_queue_name(queue_name)
        if payload is not None and not isinstance(payload, dict):
            raise ValidationFailed("job payload must be an object")
        options = options or EnqueueOptions()
        if options.repeat:
            return self._register_repeat(queue_name, payload, options, job_name)
        queue_cfg = self.config.queue(queue_name)
        backoff = options.backoff or Backoff(
            type=queue_cfg.backoff.type, delay_seconds=queue_cfg.backoff.delay_seconds
        )
        if backoff.type not in BACKOFF_TYPES:
            raise ValidationFailed(f"unsupported backoff type {backoff.type}")
        max_attempts = options.max_attempts or queue_cfg.max_attempts
        if max_attempts < 1:
            raise ValidationFailed("max_attempts must be >= 1")
        run_at = utc_now_iso_offset(seconds=options.delay_seconds) if options.delay_seconds else None
        job_id, created = insert_job(
            self.conn,
            queue_name,
            payload,
            job_name=job_name,
            max_attempts=max_attempts,
            backoff_type=backoff.type,
            backoff_delay_seconds=backoff.delay_seconds,
            priority=options.priority,
            dedupe_key=options.dedupe_key,
            run_at=run_at,
        )
        log_event(
            self.logger,
            logging.INFO if created else logging.DEBUG,
            "job_enqueued" if created else "job_deduplicated",
            job_id=job_id,
            queue=queue_name,
            dedupe_key=options.dedupe_key,
        )
        return job_id

    def _register_repeat(
        self,
        queue_name: str,
        payload: dict[str, object] | None,
        options: EnqueueOptions,
        job_name: str | None,
    ) -> str:
        parse_cron(options.repeat or "")
        name = job_name or options.dedupe_key
        if not name:
            raise ValidationFailed("repeatable jobs need a job_name or dedupe_key")
        job_options: dict[str, object] = {"priority": options.priority}
        if options.max_attempts:
            job_options["max_attempts"] = options.max_attempts
        if options.backoff:
            job_options["backoff"] = {
                "type": options.backoff.type,
                "delay_seconds": options.backoff.delay_seconds,
            }
        upsert_schedule(self.conn, name, queue_name, options.repeat or "", payload, job_options)
        log_event(
            self.logger,
            logging.INFO,
            "job_schedule_registered",
            name=name,
            queue=queue_name,
            pattern=options.repeat,
        )
        return f"repeat:{name}"

    def claim(self, queue_name: str, worker_id: str) -> Job | None:
        _check_queue_name(queue_name)
        return claim_next_job(
            self.conn,
            worker_id,
            queue_name,
            lock_timeout_seconds=self.config.jobs.lock_timeout_seconds,
        )

    def ack(self, job_id: str, result: dict[str, object] | None = None) -> bool:
        return complete_job(self.conn, job_id, result=result)

    def nack(
        self,
        job: Job,
        error: str,
        error_code: str | None = None,
        retryable: bool = True,
    ) -> str:
        """Record a failed attempt and return the job's new status."""
        if retryable and job.attempts < job.max_attempts:
            backoff = Backoff(type=job.backoff_type, delay_seconds=job.backoff_delay_seconds)
            delay = backoff.delay_for(job.attempts)
            schedule_job_retry(
                self.conn, job.id, utc_now_iso_offset(seconds=delay), error, error_code
            )
            log_event(
                self.logger,
                logging.WARNING,
                "job_retry_scheduled",
                job_id=job.id,
                queue=job.queue_name,
                attempt=job.attempts,
                delay_seconds=delay,
                error_code=error_code,
            )
            return "queued"
        if retryable:
            finish_job_unsuccessfully(self.conn, job.id, "dead", error, "Exhausted")
            log_event(
                self.logger,
                logging.ERROR,
                "job_exhausted",
                job_id=job.id,
                queue=job.queue_name,
                attempts=job.attempts,
                last_error_code=error_code,
            )
            return "dead"
        finish_job_unsuccessfully(self.conn, job.id, "failed", error, error_code)
        log_event(
            self.logger,
            logging.ERROR,
            "job_failed_permanently",
            job_id=job.id,
            queue=job.queue_name,
            error_code=error_code,
        )
        return "failed"

    def get(self, job_id: str) -> Job | None:
        return get_job(self.conn, job_id)

    def list_jobs(
        self, limit: int = 50, queue_name: str | None = None, status: str | None = None
    ) -> list[Job]:
        return list_jobs(
            self.conn, limit=limit, queue_name=queue_name, statuses=(status,) if status else None
        )

    def list_dead(self, queue_name: str | None = None, limit: int = 100) -> list[Job]:
        return list_jobs(
            self.conn, limit=limit, queue_name=queue_name, statuses=("failed", "dead")
        )

    def retry_dead(self, job_id: str) -> bool:
        retried = requeue_terminal_job(self.conn, job_id)
        if retried:
            log_event(self.logger, logging.INFO, "job_retried_by_operator", job_id=job_id)
        return retried

    def cancel(self, job_id: str) -> bool:
        return cancel_job(self.conn, job_id)

    def count_running(self, queue_name: str) -> int:
        return count_jobs(self.conn, queue_name, "running")

    def schedules(self) -> list[JobSchedule]:
        return list_schedules(self.conn)

    def upsert_schedule(
        self,
        name: str,
        queue_name: str,
        pattern: str,
        payload: dict[str, object] | None = None,
    ) -> None:
        _check_queue_name(queue_name)
        parse_cron(pattern)
        upsert_schedule(self.conn, name, queue_name, pattern, payload)

    def mark_schedule_fired(self, name: str, fired_at: str) -> bool:
        return mark_schedule_fired(self.conn, name, fired_at)


def options_from_schedule(schedule: JobSchedule, dedupe_key: str) -> EnqueueOptions:
    raw_backoff = schedule.options.get("backoff")
    backoff = None
    if isinstance(raw_backoff, dict):
        backoff = Backoff(
            type=str(raw_backoff.get("type", "exponential")),
            delay_seconds=int(raw_backoff.get("delay_seconds", 60)),
        )
    max_attempts = schedule.options.get("max_attempts")
    return EnqueueOptions(
        max_attempts=int(max_attempts) if max_attempts else None,
        backoff=backoff,
        priority=int(schedule.options.get("priority") or 0),
        dedupe_key=dedupe_key,
    )


def _check_queue_name(queue_name: str) -> None:
    if queue_name not in QUEUE_NAMES:
        raise ValidationFailed(f"unknown queue {queue_name}")
