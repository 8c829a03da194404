from __future__ import annotations

import json
import uuid
from typing import Any

from .db import DBConn, connect_db
from .models import Job, JobSchedule
from .utils import json_dumps, json_loads, new_id, utc_now_iso, utc_now_iso_offset

JOB_COLUMNS = """
    id, queue_name, job_name, status, payload_json, result_json, attempts, max_attempts,
    backoff_type, backoff_delay_seconds, priority, dedupe_key, run_at, requested_at,
    started_at, finished_at, locked_by, locked_at, error, error_code
"""

TERMINAL_FAILURE_STATUSES = ("failed", "dead")


def init_db(path: str) -> DBConn:
    return connect_db(path)


def get_setting(conn: Any, key: str, default: object) -> object:
    cursor = conn.execute("SELECT value FROM settings WHERE key = ?", (key,))
    row = cursor.fetchone()
    if not row:
        return default
    try:
        return json.loads(row[0])
    except json.JSONDecodeError:
        return default


def set_setting(conn: Any, key: str, value: object) -> None:
    payload = json_dumps(value)
    now = utc_now_iso()
    conn.execute(
        """
        INSERT INTO settings (key, value, updated_at)
        VALUES (?, ?, ?)
        ON CONFLICT(key) DO UPDATE SET value = excluded.value, updated_at = excluded.updated_at
        """,
        (key, payload, now),
    )
    conn.commit()


def try_acquire_lease(conn: Any, lease_name: str, holder: str, ttl_seconds: int) -> bool:
    now = utc_now_iso()
    expires_at = utc_now_iso_offset(seconds=ttl_seconds)
    cursor = conn.execute(
        "INSERT OR IGNORE INTO leases (name, holder, expires_at) VALUES (?, ?, ?)",
        (lease_name, holder, expires_at),
    )
    if cursor.rowcount == 1:
        conn.commit()
        return True
    cursor = conn.execute(
        """
        UPDATE leases
        SET holder = ?, expires_at = ?
        WHERE name = ? AND (holder = ? OR expires_at <= ?)
        """,
        (holder, expires_at, lease_name, holder, now),
    )
    conn.commit()
    return cursor.rowcount == 1


def release_lease(conn: Any, lease_name: str, holder: str) -> bool:
    cursor = conn.execute(
        "DELETE FROM leases WHERE name = ? AND holder = ?",
        (lease_name, holder),
    )
    conn.commit()
    return cursor.rowcount == 1


def insert_job(
    conn: Any,
    queue_name: str,
    payload: dict[str, object] | None,
    *,
    job_name: str | None = None,
    max_attempts: int = 3,
    backoff_type: str = "exponential",
    backoff_delay_seconds: int = 60,
    priority: int = 0,
    dedupe_key: str | None = None,
    run_at: str | None = None,
) -> tuple[str, bool]:
    """Insert a queued job; returns ``(job_id, created)``.

    When ``dedupe_key`` collides with an existing job of the same queue the
    existing id is returned and nothing is written.
    """
    job_id = _new_job_id()
    now = utc_now_iso()
    cursor = conn.execute(
        f"""
        INSERT OR IGNORE INTO jobs ({JOB_COLUMNS})
        VALUES (?, ?, ?, 'queued', ?, NULL, 0, ?, ?, ?, ?, ?, ?, ?, NULL, NULL, NULL, NULL, NULL, NULL)
        """,
        (
            job_id,
            queue_name,
            job_name,
            json_dumps(payload or {}),
            max_attempts,
            backoff_type,
            backoff_delay_seconds,
            priority,
            dedupe_key,
            run_at or now,
            now,
        ),
    )
    conn.commit()
    if cursor.rowcount == 1:
        return job_id, True
    existing = find_job_by_dedupe_key(conn, queue_name, dedupe_key) if dedupe_key else None
    if existing is None:
        raise RuntimeError(f"job insert ignored without a dedupe match queue={queue_name}")
    return existing.id, False


def find_job_by_dedupe_key(conn: Any, queue_name: str, dedupe_key: str) -> Job | None:
    cursor = conn.execute(
        f"SELECT {JOB_COLUMNS} FROM jobs WHERE queue_name = ? AND dedupe_key = ?",
        (queue_name, dedupe_key),
    )
    row = cursor.fetchone()
    return _row_to_job(row) if row else None


def get_job(conn: Any, job_id: str) -> Job | None:
    cursor = conn.execute(f"SELECT {JOB_COLUMNS} FROM jobs WHERE id = ?", (job_id,))
    row = cursor.fetchone()
    return _row_to_job(row) if row else None


def list_jobs(
    conn: Any,
    limit: int = 50,
    queue_name: str | None = None,
    statuses: tuple[str, ...] | list[str] | None = None,
) -> list[Job]:
    clauses: list[str] = []
    params: list[object] = []
    if queue_name:
        clauses.append("queue_name = ?")
        params.append(queue_name)
    if statuses:
        placeholders = ",".join(["?"] * len(statuses))
        clauses.append(f"status IN ({placeholders})")
        params.extend(statuses)
    where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
    params.append(limit)
    cursor = conn.execute(
        f"""
        SELECT {JOB_COLUMNS}
        FROM jobs
        {where}
        ORDER BY requested_at DESC
        LIMIT ?
        """,
        tuple(params),
    )
    return [_row_to_job(row) for row in cursor.fetchall()]


def count_jobs(conn: Any, queue_name: str, status: str) -> int:
    row = conn.execute(
        "SELECT COUNT(*) FROM jobs WHERE queue_name = ? AND status = ?",
        (queue_name, status),
    ).fetchone()
    return int(row[0]) if row else 0


def claim_next_job(
    conn: Any,
    worker_id: str,
    queue_name: str,
    lock_timeout_seconds: int | None = None,
) -> Job | None:
    for _ in range(5):
        with conn.transaction():
            now = utc_now_iso()
            if lock_timeout_seconds is not None:
                _release_stale_locks(conn, queue_name, lock_timeout_seconds, now)
            row = conn.execute(
                """
                SELECT id FROM jobs
                WHERE queue_name = ? AND status = 'queued' AND run_at <= ?
                ORDER BY priority DESC, run_at ASC, requested_at ASC
                LIMIT 1
                """,
                (queue_name, now),
            ).fetchone()
            if not row:
                return None
            cursor = conn.execute(
                """
                UPDATE jobs
                SET status = 'running',
                    attempts = attempts + 1,
                    started_at = ?,
                    finished_at = NULL,
                    locked_by = ?,
                    locked_at = ?
                WHERE id = ? AND status = 'queued'
                """,
                (now, worker_id, now, row[0]),
            )
            if cursor.rowcount != 1:
                continue
            return get_job(conn, row[0])
    return None


def _release_stale_locks(conn: Any, queue_name: str, lock_timeout_seconds: int, now: str) -> None:
    cutoff = utc_now_iso_offset(seconds=-lock_timeout_seconds)
    conn.execute(
        """
        UPDATE jobs
        SET status = 'dead',
            finished_at = ?,
            locked_by = NULL,
            locked_at = NULL,
            error = 'stale_lock_exhausted',
            error_code = 'Exhausted'
        WHERE queue_name = ? AND status = 'running' AND locked_at IS NOT NULL
          AND locked_at < ? AND attempts >= max_attempts
        """,
        (now, queue_name, cutoff),
    )
    conn.execute(
        """
        UPDATE jobs
        SET status = 'queued',
            locked_by = NULL,
            locked_at = NULL,
            started_at = NULL,
            error = 'stale_lock_requeued'
        WHERE queue_name = ? AND status = 'running' AND locked_at IS NOT NULL AND locked_at < ?
        """,
        (queue_name, cutoff),
    )


def complete_job(conn: Any, job_id: str, result: dict[str, object] | None = None) -> bool:
    now = utc_now_iso()
    cursor = conn.execute(
        """
        UPDATE jobs
        SET status = 'succeeded', finished_at = ?, locked_by = NULL, locked_at = NULL,
            error = NULL, error_code = NULL, result_json = ?
        WHERE id = ? AND status = 'running'
        """,
        (now, json_dumps(result) if result is not None else None, job_id),
    )
    conn.commit()
    return cursor.rowcount == 1


def schedule_job_retry(
    conn: Any, job_id: str, run_at: str, error: str, error_code: str | None
) -> bool:
    cursor = conn.execute(
        """
        UPDATE jobs
        SET status = 'queued',
            run_at = ?,
            started_at = NULL,
            locked_by = NULL,
            locked_at = NULL,
            error = ?,
            error_code = ?
        WHERE id = ? AND status = 'running'
        """,
        (run_at, error, error_code, job_id),
    )
    conn.commit()
    return cursor.rowcount == 1


def finish_job_unsuccessfully(
    conn: Any, job_id: str, status: str, error: str, error_code: str | None
) -> bool:
    if status not in TERMINAL_FAILURE_STATUSES:
        raise ValueError(f"unsupported terminal status {status}")
    now = utc_now_iso()
    cursor = conn.execute(
        """
        UPDATE jobs
        SET status = ?, finished_at = ?, locked_by = NULL, locked_at = NULL,
            error = ?, error_code = ?
        WHERE id = ? AND status = 'running'
        """,
        (status, now, error, error_code, job_id),
    )
    conn.commit()
    return cursor.rowcount == 1


def requeue_terminal_job(conn: Any, job_id: str) -> bool:
    now = utc_now_iso()
    cursor = conn.execute(
        """
        UPDATE jobs
        SET status = 'queued',
            attempts = 0,
            run_at = ?,
            started_at = NULL,
            finished_at = NULL,
            locked_by = NULL,
            locked_at = NULL,
            error = NULL,
            error_code = NULL
        WHERE id = ? AND status IN ('failed', 'dead')
        """,
        (now, job_id),
    )
    conn.commit()
    return cursor.rowcount == 1


def cancel_job(conn: Any, job_id: str, reason: str = "canceled_by_admin") -> bool:
    now = utc_now_iso()
    cursor = conn.execute(
        """
        UPDATE jobs
        SET status = 'canceled', finished_at = ?, error = ?
        WHERE id = ? AND status = 'queued'
        """,
        (now, reason, job_id),
    )
    conn.commit()
    return cursor.rowcount == 1


def upsert_schedule(
    conn: Any,
    name: str,
    queue_name: str,
    pattern: str,
    payload: dict[str, object] | None = None,
    options: dict[str, object] | None = None,
) -> None:
    now = utc_now_iso()
    conn.execute(
        """
        INSERT INTO job_schedules
            (name, queue_name, pattern, payload_json, options_json, last_fired_at,
             created_at, updated_at)
        VALUES (?, ?, ?, ?, ?, NULL, ?, ?)
        ON CONFLICT(name) DO UPDATE SET
            queue_name = excluded.queue_name,
            pattern = excluded.pattern,
            payload_json = excluded.payload_json,
            options_json = excluded.options_json,
            updated_at = excluded.updated_at
        """,
        (name, queue_name, pattern, json_dumps(payload or {}), json_dumps(options or {}), now, now),
    )
    conn.commit()


def list_schedules(conn: Any) -> list[JobSchedule]:
    cursor = conn.execute(
        """
        SELECT name, queue_name, pattern, payload_json, options_json, last_fired_at
        FROM job_schedules
        ORDER BY name
        """
    )
    return [_row_to_schedule(row) for row in cursor.fetchall()]


def delete_schedule(conn: Any, name: str) -> bool:
    cursor = conn.execute("DELETE FROM job_schedules WHERE name = ?", (name,))
    conn.commit()
    return cursor.rowcount == 1


def mark_schedule_fired(conn: Any, name: str, fired_at: str) -> bool:
    """Record a cron occurrence; False when another tick already claimed it."""
    cursor = conn.execute(
        """
        UPDATE job_schedules
        SET last_fired_at = ?, updated_at = ?
        WHERE name = ? AND (last_fired_at IS NULL OR last_fired_at < ?)
        """,
        (fired_at, utc_now_iso(), name, fired_at),
    )
    conn.commit()
    return cursor.rowcount == 1


def get_publish_attempt(conn: Any, idempotency_key: str) -> dict[str, Any] | None:
    row = conn.execute(
        """
        SELECT idempotency_key, article_id, integration_id, job_id, status, attempts,
               remote_post_id, remote_url, error, holder, created_at, updated_at
        FROM publish_attempts
        WHERE idempotency_key = ?
        """,
        (idempotency_key,),
    ).fetchone()
    if not row:
        return None
    keys = [
        "idempotency_key",
        "article_id",
        "integration_id",
        "job_id",
        "status",
        "attempts",
        "remote_post_id",
        "remote_url",
        "error",
        "holder",
        "created_at",
        "updated_at",
    ]
    return dict(zip(keys, row))


def claim_publish_attempt(
    conn: Any,
    idempotency_key: str,
    article_id: str,
    integration_id: str,
    job_id: str | None,
    holder: str,
    claim_seconds: int,
    observed: dict[str, Any] | None,
) -> bool:
    """Mark the ledger row ``attempted`` under ``holder``.

    ``observed`` is the row as the caller last read it (``None`` when there
    was none); the claim fails if the row changed since. It also fails while
    the row is confirmed, or while another holder's attempt is younger than
    ``claim_seconds``. Rows released after an ambiguous outcome carry no
    holder and can be claimed at once.
    """
    now = utc_now_iso()
    if observed is None:
        cursor = conn.execute(
            """
            INSERT OR IGNORE INTO publish_attempts
                (idempotency_key, article_id, integration_id, job_id, status, attempts,
                 remote_post_id, remote_url, error, holder, created_at, updated_at)
            VALUES (?, ?, ?, ?, 'attempted', 1, NULL, NULL, NULL, ?, ?, ?)
            """,
            (idempotency_key, article_id, integration_id, job_id, holder, now, now),
        )
        conn.commit()
        return cursor.rowcount == 1
    stale_before = utc_now_iso_offset(seconds=-claim_seconds)
    cursor = conn.execute(
        """
        UPDATE publish_attempts
        SET job_id = ?, status = 'attempted', attempts = attempts + 1, error = NULL,
            holder = ?, updated_at = ?
        WHERE idempotency_key = ?
          AND attempts = ?
          AND updated_at = ?
          AND status != 'confirmed'
          AND (status != 'attempted' OR holder IS NULL OR updated_at <= ?)
        """,
        (
            job_id,
            holder,
            now,
            idempotency_key,
            observed["attempts"],
            observed["updated_at"],
            stale_before,
        ),
    )
    conn.commit()
    return cursor.rowcount == 1


def confirm_publish_attempt(
    conn: Any, idempotency_key: str, remote_post_id: str | None, remote_url: str | None
) -> None:
    conn.execute(
        """
        UPDATE publish_attempts
        SET status = 'confirmed', remote_post_id = ?, remote_url = ?, error = NULL,
            holder = NULL, updated_at = ?
        WHERE idempotency_key = ?
        """,
        (remote_post_id, remote_url, utc_now_iso(), idempotency_key),
    )
    conn.commit()


def fail_publish_attempt(conn: Any, idempotency_key: str, error: str) -> None:
    conn.execute(
        """
        UPDATE publish_attempts
        SET status = 'failed', error = ?, holder = NULL, updated_at = ?
        WHERE idempotency_key = ?
        """,
        (error, utc_now_iso(), idempotency_key),
    )
    conn.commit()


def release_publish_attempt(conn: Any, idempotency_key: str, error: str) -> None:
    """Leave the row ``attempted`` with no holder so the next caller reconciles it."""
    conn.execute(
        """
        UPDATE publish_attempts
        SET error = ?, holder = NULL, updated_at = ?
        WHERE idempotency_key = ? AND status = 'attempted'
        """,
        (error, utc_now_iso(), idempotency_key),
    )
    conn.commit()


def insert_analytics_snapshot(
    conn: Any,
    project_id: str,
    status: str,
    metrics: dict[str, object] | None,
    detail: dict[str, object] | None = None,
) -> str:
    snapshot_id = new_id()
    metrics = metrics or {}
    conn.execute(
        """
        INSERT INTO analytics_snapshots
            (id, project_id, synced_at, status, clicks, impressions, ctr, position, detail_json)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
        """,
        (
            snapshot_id,
            project_id,
            utc_now_iso(),
            status,
            metrics.get("clicks"),
            metrics.get("impressions"),
            metrics.get("ctr"),
            metrics.get("position"),
            json_dumps(detail) if detail else None,
        ),
    )
    conn.commit()
    return snapshot_id


def list_analytics_snapshots(conn: Any, project_id: str, limit: int = 30) -> list[dict[str, object]]:
    cursor = conn.execute(
        """
        SELECT id, synced_at, status, clicks, impressions, ctr, position, detail_json
        FROM analytics_snapshots
        WHERE project_id = ?
        ORDER BY synced_at DESC
        LIMIT ?
        """,
        (project_id, limit),
    )
    rows = []
    for row in cursor.fetchall():
        rows.append(
            {
                "id": row[0],
                "synced_at": row[1],
                "status": row[2],
                "clicks": row[3],
                "impressions": row[4],
                "ctr": row[5],
                "position": row[6],
                "detail": json_loads(row[7], {}),
            }
        )
    return rows


def _row_to_job(row: tuple) -> Job:
    (
        job_id,
        queue_name,
        job_name,
        status,
        payload_json,
        result_json,
        attempts,
        max_attempts,
        backoff_type,
        backoff_delay_seconds,
        priority,
        dedupe_key,
        run_at,
        requested_at,
        started_at,
        finished_at,
        locked_by,
        locked_at,
        error,
        error_code,
    ) = row
    return Job(
        id=job_id,
        queue_name=queue_name,
        job_name=job_name,
        status=status,
        payload=json_loads(payload_json, {}),
        result=json_loads(result_json, None),
        attempts=int(attempts),
        max_attempts=int(max_attempts),
        backoff_type=backoff_type,
        backoff_delay_seconds=int(backoff_delay_seconds),
        priority=int(priority),
        dedupe_key=dedupe_key,
        run_at=run_at,
        requested_at=requested_at,
        started_at=started_at,
        finished_at=finished_at,
        locked_by=locked_by,
        locked_at=locked_at,
        error=error,
        error_code=error_code,
    )


def _row_to_schedule(row: tuple) -> JobSchedule:
    name, queue_name, pattern, payload_json, options_json, last_fired_at = row
    return JobSchedule(
        name=name,
        queue_name=queue_name,
        pattern=pattern,
        payload=json_loads(payload_json, {}),
        options=json_loads(options_json, {}),
        last_fired_at=last_fired_at,
    )


def _new_job_id() -> str:
    return f"job_{uuid.uuid4().hex}"
