from __future__ import annotations

import logging
from typing import Any, Callable

from .utils import utc_now_iso

Migration = Callable[[Any], None]


def apply_migrations(conn: Any) -> None:
    # Schema changes go through new versions only; applied versions are never edited.
    logger = logging.getLogger("autoseo.migrations")
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS schema_migrations (
            version TEXT PRIMARY KEY,
            applied_at TEXT NOT NULL
        )
        """
    )
    with conn.transaction():
        applied = {
            row[0]
            for row in conn.execute("SELECT version FROM schema_migrations").fetchall()
        }
        for version, migration in _get_migrations():
            if version in applied:
                logger.debug("migration_skipped version=%s", version)
                continue
            migration(conn)
            conn.execute(
                "INSERT OR IGNORE INTO schema_migrations (version, applied_at) VALUES (?, ?)",
                (version, utc_now_iso()),
            )
            logger.info("migration_applied version=%s", version)


def _migration_initial_schema(conn: Any) -> None:
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS settings (
            key TEXT PRIMARY KEY,
            value TEXT NOT NULL,
            updated_at TEXT NOT NULL
        )
        """
    )
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS projects (
            id TEXT PRIMARY KEY,
            name TEXT NOT NULL,
            website_url TEXT NULL,
            language TEXT NOT NULL DEFAULT 'en',
            onboarding_complete INTEGER NOT NULL DEFAULT 0,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL
        )
        """
    )
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS keywords (
            id TEXT PRIMARY KEY,
            project_id TEXT NOT NULL REFERENCES projects(id) ON DELETE CASCADE,
            keyword TEXT NOT NULL,
            search_volume INTEGER NULL,
            difficulty INTEGER NULL,
            status TEXT NOT NULL DEFAULT 'unplanned',
            planned_date TEXT NULL,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL,
            UNIQUE(project_id, keyword)
        )
        """
    )
    conn.execute(
        """
        CREATE INDEX IF NOT EXISTS idx_keywords_due
        ON keywords(project_id, status, planned_date)
        """
    )
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS articles (
            id TEXT PRIMARY KEY,
            project_id TEXT NOT NULL REFERENCES projects(id) ON DELETE CASCADE,
            keyword_id TEXT NULL REFERENCES keywords(id) ON DELETE SET NULL,
            title TEXT NOT NULL,
            content TEXT NOT NULL,
            meta_title TEXT NULL,
            meta_description TEXT NULL,
            featured_image_url TEXT NULL,
            word_count INTEGER NOT NULL DEFAULT 0,
            heading_count INTEGER NOT NULL DEFAULT 0,
            paragraph_count INTEGER NOT NULL DEFAULT 0,
            internal_links INTEGER NOT NULL DEFAULT 0,
            external_links INTEGER NOT NULL DEFAULT 0,
            keyword_density REAL NOT NULL DEFAULT 0,
            seo_score INTEGER NOT NULL DEFAULT 0,
            status TEXT NOT NULL DEFAULT 'draft',
            scheduled_for TEXT NULL,
            published_at TEXT NULL,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL
        )
        """
    )
    conn.execute(
        """
        CREATE INDEX IF NOT EXISTS idx_articles_schedule
        ON articles(status, scheduled_for)
        """
    )
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS integrations (
            id TEXT PRIMARY KEY,
            project_id TEXT NOT NULL REFERENCES projects(id) ON DELETE CASCADE,
            platform TEXT NOT NULL,
            credentials_enc TEXT NULL,
            credentials_key_id TEXT NULL,
            credentials_version INTEGER NOT NULL DEFAULT 0,
            is_active INTEGER NOT NULL DEFAULT 1,
            integration_key TEXT NULL UNIQUE,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL,
            UNIQUE(project_id, platform)
        )
        """
    )
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS jobs (
            id TEXT PRIMARY KEY,
            queue_name TEXT NOT NULL,
            job_name TEXT NULL,
            status TEXT NOT NULL,
            payload_json TEXT NULL,
            result_json TEXT NULL,
            attempts INTEGER NOT NULL DEFAULT 0,
            max_attempts INTEGER NOT NULL DEFAULT 3,
            backoff_type TEXT NOT NULL DEFAULT 'exponential',
            backoff_delay_seconds INTEGER NOT NULL DEFAULT 60,
            priority INTEGER NOT NULL DEFAULT 0,
            dedupe_key TEXT NULL,
            run_at TEXT NOT NULL,
            requested_at TEXT NOT NULL,
            started_at TEXT NULL,
            finished_at TEXT NULL,
            locked_by TEXT NULL,
            locked_at TEXT NULL,
            error TEXT NULL,
            error_code TEXT NULL
        )
        """
    )
    conn.execute(
        """
        CREATE UNIQUE INDEX IF NOT EXISTS idx_jobs_dedupe
        ON jobs(queue_name, dedupe_key)
        """
    )
    conn.execute(
        """
        CREATE INDEX IF NOT EXISTS idx_jobs_claim
        ON jobs(queue_name, status, run_at)
        """
    )


def _migration_schedules_and_leases(conn: Any) -> None:
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS job_schedules (
            name TEXT PRIMARY KEY,
            queue_name TEXT NOT NULL,
            pattern TEXT NOT NULL,
            payload_json TEXT NULL,
            options_json TEXT NULL,
            last_fired_at TEXT NULL,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL
        )
        """
    )
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS leases (
            name TEXT PRIMARY KEY,
            holder TEXT NOT NULL,
            expires_at TEXT NOT NULL
        )
        """
    )


def _migration_publish_ledger_and_analytics(conn: Any) -> None:
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS publish_attempts (
            idempotency_key TEXT PRIMARY KEY,
            article_id TEXT NOT NULL REFERENCES articles(id) ON DELETE CASCADE,
            integration_id TEXT NOT NULL REFERENCES integrations(id) ON DELETE CASCADE,
            job_id TEXT NULL,
            status TEXT NOT NULL,
            attempts INTEGER NOT NULL DEFAULT 0,
            remote_post_id TEXT NULL,
            remote_url TEXT NULL,
            error TEXT NULL,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL
        )
        """
    )
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS analytics_snapshots (
            id TEXT PRIMARY KEY,
            project_id TEXT NOT NULL REFERENCES projects(id) ON DELETE CASCADE,
            synced_at TEXT NOT NULL,
            status TEXT NOT NULL,
            clicks INTEGER NULL,
            impressions INTEGER NULL,
            ctr REAL NULL,
            position REAL NULL,
            detail_json TEXT NULL
        )
        """
    )


def _migration_publish_attempt_holder(conn: Any) -> None:
    conn.execute("ALTER TABLE publish_attempts ADD COLUMN holder TEXT NULL")


def _get_migrations() -> list[tuple[str, Migration]]:
    return [
        ("001_initial_schema", _migration_initial_schema),
        ("002_schedules_and_leases", _migration_schedules_and_leases),
        ("003_publish_ledger_and_analytics", _migration_publish_ledger_and_analytics),
        ("004_publish_attempt_holder", _migration_publish_attempt_holder),
    ]
