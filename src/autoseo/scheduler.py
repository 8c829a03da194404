from __future__ import annotations

import logging
import uuid
from datetime import datetime
from typing import Any, Callable

from .config import Config, default_config
from .cron import previous_fire
from .models import (
    QUEUE_ANALYTICS_SYNC,
    QUEUE_ARTICLE_GENERATION,
    QUEUE_PUBLISHING,
    JobSchedule,
)
from .queue import EnqueueOptions, JobQueue, options_from_schedule
from .services.articles_service import list_due_scheduled
from .storage import release_lease, try_acquire_lease
from .utils import log_event, parse_iso, to_utc_iso, utc_now

DAILY_GENERATION = "daily-generation"
SCHEDULED_PUBLISH = "scheduled-publish"
ANALYTICS_SYNC = "analytics-sync"
SCHEDULER_LEASE = "scheduler"

logger = logging.getLogger("autoseo.scheduler")


def dedupe_key(queue_name: str, entity_id: str, window: str) -> str:
    return f"{queue_name}:{entity_id}:{window}"


def schedule_daily_generation(
    conn: Any, queue: JobQueue, now: datetime, window: str
) -> list[str]:
    """One generation job per onboarded project with a planned keyword due by ``now``."""
    cursor = conn.execute(
        """
        SELECT DISTINCT p.id
        FROM projects p
        JOIN keywords k ON k.project_id = p.id
        WHERE p.onboarding_complete = 1
          AND k.status = 'planned'
          AND k.planned_date IS NOT NULL
          AND k.planned_date <= ?
        ORDER BY p.id
        """,
        (to_utc_iso(now),),
    )
    job_ids = []
    for (project_id,) in cursor.fetchall():
        job_ids.append(
            queue.enqueue(
                QUEUE_ARTICLE_GENERATION,
                {"project_id": project_id},
                EnqueueOptions(dedupe_key=dedupe_key(QUEUE_ARTICLE_GENERATION, project_id, window)),
                job_name=DAILY_GENERATION,
            )
        )
    return job_ids


def schedule_publishing(conn: Any, queue: JobQueue, now: datetime) -> list[str]:
    """One publishing job per scheduled article whose ``scheduled_for`` has passed."""
    job_ids = []
    for article in list_due_scheduled(conn, to_utc_iso(now) or ""):
        job_ids.append(
            queue.enqueue(
                QUEUE_PUBLISHING,
                {"article_id": article.id, "project_id": article.project_id},
                EnqueueOptions(
                    dedupe_key=dedupe_key(QUEUE_PUBLISHING, article.id, article.scheduled_for or "")
                ),
                job_name=SCHEDULED_PUBLISH,
            )
        )
    return job_ids


def schedule_analytics_sync(
    conn: Any, queue: JobQueue, now: datetime, window: str
) -> list[str]:
    cursor = conn.execute(
        "SELECT id FROM projects WHERE onboarding_complete = 1 ORDER BY id"
    )
    job_ids = []
    for (project_id,) in cursor.fetchall():
        job_ids.append(
            queue.enqueue(
                QUEUE_ANALYTICS_SYNC,
                {"project_id": project_id},
                EnqueueOptions(dedupe_key=dedupe_key(QUEUE_ANALYTICS_SYNC, project_id, window)),
                job_name=ANALYTICS_SYNC,
            )
        )
    return job_ids


def ensure_builtin_schedules(queue: JobQueue, config: Config) -> None:
    queue.upsert_schedule(DAILY_GENERATION, QUEUE_ARTICLE_GENERATION, config.schedules.daily_generation)
    queue.upsert_schedule(SCHEDULED_PUBLISH, QUEUE_PUBLISHING, config.schedules.scheduled_publish)
    queue.upsert_schedule(ANALYTICS_SYNC, QUEUE_ANALYTICS_SYNC, config.schedules.analytics_sync)


def tick(
    conn: Any,
    queue: JobQueue,
    config: Config | None = None,
    now: datetime | None = None,
    holder: str | None = None,
) -> dict[str, Any]:
    """Fire every schedule whose latest cron occurrence has not been handled yet.

    Only one tick runs at a time across workers. Jobs carry dedupe keys built
    from the occurrence, so a tick that overlaps another one enqueues nothing
    new.
    """
    config = config or default_config()
    now = now or utc_now()
    holder = holder or f"scheduler-{uuid.uuid4().hex[:12]}"
    if not try_acquire_lease(conn, SCHEDULER_LEASE, holder, config.jobs.scheduler_lease_seconds):
        log_event(logger, logging.DEBUG, "scheduler_tick_skipped", reason="lease_held")
        return {"skipped": True, "fired": {}}
    fired: dict[str, list[str]] = {}
    try:
        ensure_builtin_schedules(queue, config)
        for schedule in queue.schedules():
            occurrence = previous_fire(schedule.pattern, now)
            if occurrence is None:
                continue
            if schedule.last_fired_at and parse_iso(schedule.last_fired_at) >= occurrence:
                continue
            window = occurrence.isoformat()
            fired[schedule.name] = _run_schedule(conn, queue, schedule, now, window)
            queue.mark_schedule_fired(schedule.name, window)
            log_event(
                logger,
                logging.INFO,
                "schedule_fired",
                name=schedule.name,
                window=window,
                jobs=len(fired[schedule.name]),
            )
    finally:
        release_lease(conn, SCHEDULER_LEASE, holder)
    return {"skipped": False, "fired": fired}


def _run_schedule(
    conn: Any, queue: JobQueue, schedule: JobSchedule, now: datetime, window: str
) -> list[str]:
    sweeps: dict[str, Callable[[], list[str]]] = {
        DAILY_GENERATION: lambda: schedule_daily_generation(conn, queue, now, window),
        SCHEDULED_PUBLISH: lambda: schedule_publishing(conn, queue, now),
        ANALYTICS_SYNC: lambda: schedule_analytics_sync(conn, queue, now, window),
    }
    sweep = sweeps.get(schedule.name)
    if sweep is not None:
        return sweep()
    options = options_from_schedule(
        schedule, dedupe_key(schedule.queue_name, schedule.name, window)
    )
    return [queue.enqueue(schedule.queue_name, dict(schedule.payload), options, job_name=schedule.name)]
