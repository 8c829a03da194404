from __future__ import annotations

import argparse
import json
import logging
import sys

import yaml

from .config import (
    ConfigError,
    bootstrap_runtime_config,
    get_runtime_config,
    get_state_db_path,
    load_runtime_config,
    set_runtime_config,
)
from .errors import PipelineError
from .models import QUEUE_NAMES
from .queue import EnqueueOptions, JobQueue
from .scheduler import tick
from .services.keywords_service import create_keyword, generate_plan
from .storage import init_db
from .utils import configure_logging, log_event


def _setup_logging() -> logging.Logger:
    return configure_logging("autoseo.cli")


def _open(args: argparse.Namespace):
    path = args.db or get_state_db_path()
    conn = init_db(path)
    bootstrap_runtime_config(conn)
    return conn


def _cmd_db_migrate(args: argparse.Namespace, logger: logging.Logger) -> int:
    path = args.db or get_state_db_path()
    init_db(path).close()
    log_event(logger, logging.INFO, "db_migrated", path=path)
    return 0


def _cmd_config_show(args: argparse.Namespace, logger: logging.Logger) -> int:
    conn = _open(args)
    try:
        cfg = get_runtime_config(conn)
    finally:
        conn.close()
    sys.stdout.write(yaml.safe_dump(cfg, sort_keys=False))
    return 0


def _cmd_config_set(args: argparse.Namespace, logger: logging.Logger) -> int:
    try:
        with open(args.path, "r", encoding="utf-8") as handle:
            cfg = yaml.safe_load(handle) or {}
    except (OSError, yaml.YAMLError) as exc:
        log_event(logger, logging.ERROR, "config_error", error=str(exc))
        return 1
    if not isinstance(cfg, dict):
        log_event(logger, logging.ERROR, "config_error", error="config file must contain a mapping")
        return 1
    conn = _open(args)
    try:
        set_runtime_config(conn, cfg)
    except ConfigError as exc:
        log_event(logger, logging.ERROR, "config_error", error=str(exc))
        return 1
    finally:
        conn.close()
    log_event(logger, logging.INFO, "config_updated", path=args.path)
    return 0


def _cmd_keywords_import(args: argparse.Namespace, logger: logging.Logger) -> int:
    try:
        with open(args.path, "r", encoding="utf-8") as handle:
            data = yaml.safe_load(handle) or []
    except (OSError, yaml.YAMLError) as exc:
        log_event(logger, logging.ERROR, "keywords_import_error", error=str(exc))
        return 1
    if isinstance(data, dict):
        data = data.get("keywords") or []
    conn = _open(args)
    imported = 0
    skipped = 0
    try:
        for entry in data:
            payload = entry if isinstance(entry, dict) else {"keyword": entry}
            try:
                create_keyword(conn, args.project_id, payload)
                imported += 1
            except PipelineError as exc:
                skipped += 1
                log_event(
                    logger,
                    logging.WARNING,
                    "keyword_skipped",
                    keyword=payload.get("keyword"),
                    error_code=exc.code,
                    error=exc.message,
                )
        if args.plan:
            generate_plan(conn, args.project_id, start=args.start)
    except PipelineError as exc:
        log_event(logger, logging.ERROR, "keywords_import_error", error=exc.message)
        return 1
    finally:
        conn.close()
    log_event(
        logger,
        logging.INFO,
        "keywords_import_complete",
        project_id=args.project_id,
        imported=imported,
        skipped=skipped,
    )
    return 0


def _cmd_jobs_enqueue(args: argparse.Namespace, logger: logging.Logger) -> int:
    try:
        payload = json.loads(args.payload) if args.payload else {}
    except json.JSONDecodeError as exc:
        log_event(logger, logging.ERROR, "invalid_payload", error=str(exc))
        return 1
    conn = _open(args)
    try:
        queue = JobQueue(conn, load_runtime_config(conn))
        job_id = queue.enqueue(
            args.queue_name,
            payload,
            EnqueueOptions(
                priority=args.priority,
                delay_seconds=args.delay,
                dedupe_key=args.dedupe_key,
            ),
            job_name=args.name,
        )
    finally:
        conn.close()
    log_event(logger, logging.INFO, "job_enqueued", job_id=job_id, queue=args.queue_name)
    return 0


def _cmd_jobs_list(args: argparse.Namespace, logger: logging.Logger) -> int:
    conn = _open(args)
    try:
        queue = JobQueue(conn, load_runtime_config(conn))
        if args.dead:
            jobs = queue.list_dead(args.queue, args.limit)
        else:
            jobs = queue.list_jobs(args.limit, args.queue, args.status)
    finally:
        conn.close()
    for job in jobs:
        log_event(
            logger,
            logging.INFO,
            "job",
            job_id=job.id,
            queue=job.queue_name,
            status=job.status,
            attempts=job.attempts,
            max_attempts=job.max_attempts,
            run_at=job.run_at,
            error_code=job.error_code,
            error=job.error,
        )
    return 0


def _cmd_jobs_retry(args: argparse.Namespace, logger: logging.Logger) -> int:
    conn = _open(args)
    try:
        retried = JobQueue(conn, load_runtime_config(conn)).retry_dead(args.job_id)
    finally:
        conn.close()
    log_event(logger, logging.INFO, "job_retry", job_id=args.job_id, retried=retried)
    return 0 if retried else 1


def _cmd_scheduler_tick(args: argparse.Namespace, logger: logging.Logger) -> int:
    conn = _open(args)
    try:
        config = load_runtime_config(conn)
        outcome = tick(conn, JobQueue(conn, config), config)
    finally:
        conn.close()
    log_event(
        logger,
        logging.INFO,
        "scheduler_tick",
        skipped=outcome["skipped"],
        fired=json.dumps(outcome["fired"], sort_keys=True),
    )
    return 0


def _cmd_serve(args: argparse.Namespace, logger: logging.Logger) -> int:
    import uvicorn

    log_event(logger, logging.INFO, "api_starting", host=args.host, port=args.port)
    uvicorn.run("autoseo.api:app", host=args.host, port=args.port, proxy_headers=True)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="autoseo", description="AutoSEO CLI")
    parser.add_argument(
        "--db",
        dest="db",
        default=None,
        help="SQLite path (defaults to AUTOSEO_DATA_DIR/state.sqlite3; AUTOSEO_DB_URL selects Postgres)",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    db_parser = subparsers.add_parser("db", help="Database maintenance")
    db_subparsers = db_parser.add_subparsers(dest="db_command", required=True)
    db_migrate = db_subparsers.add_parser("migrate", help="Apply database migrations")
    db_migrate.set_defaults(func=_cmd_db_migrate)

    config_parser = subparsers.add_parser("config", help="Runtime configuration")
    config_subparsers = config_parser.add_subparsers(dest="config_command", required=True)
    config_show = config_subparsers.add_parser("show", help="Print runtime config as YAML")
    config_show.set_defaults(func=_cmd_config_show)
    config_set = config_subparsers.add_parser("set", help="Replace runtime config from a YAML file")
    config_set.add_argument("path", help="Path to a YAML config file")
    config_set.set_defaults(func=_cmd_config_set)

    keywords_parser = subparsers.add_parser("keywords", help="Keyword commands")
    keywords_subparsers = keywords_parser.add_subparsers(dest="keywords_command", required=True)
    keywords_import = keywords_subparsers.add_parser("import", help="Import keywords from YAML")
    keywords_import.add_argument("project_id")
    keywords_import.add_argument("path", help="YAML list of keywords or {keywords: [...]}")
    keywords_import.add_argument("--plan", action="store_true", help="Plan imported keywords")
    keywords_import.add_argument("--start", default=None, help="First planned day (ISO date)")
    keywords_import.set_defaults(func=_cmd_keywords_import)

    jobs_parser = subparsers.add_parser("jobs", help="Job queue commands")
    jobs_subparsers = jobs_parser.add_subparsers(dest="jobs_command", required=True)

    jobs_enqueue = jobs_subparsers.add_parser("enqueue", help="Enqueue a job")
    jobs_enqueue.add_argument("queue_name", choices=list(QUEUE_NAMES))
    jobs_enqueue.add_argument("--payload", default=None, help="JSON payload")
    jobs_enqueue.add_argument("--name", default=None, help="Job name")
    jobs_enqueue.add_argument("--priority", type=int, default=0)
    jobs_enqueue.add_argument("--delay", type=int, default=0, help="Delay in seconds")
    jobs_enqueue.add_argument("--dedupe-key", default=None)
    jobs_enqueue.set_defaults(func=_cmd_jobs_enqueue)

    jobs_list = jobs_subparsers.add_parser("list", help="List recent jobs")
    jobs_list.add_argument("--limit", type=int, default=20, help="Number of jobs to show")
    jobs_list.add_argument("--queue", default=None, choices=list(QUEUE_NAMES))
    jobs_list.add_argument("--status", default=None)
    jobs_list.add_argument("--dead", action="store_true", help="Only dead jobs")
    jobs_list.set_defaults(func=_cmd_jobs_list)

    jobs_dead = jobs_subparsers.add_parser("dead", help="List dead and failed jobs")
    jobs_dead.add_argument("--limit", type=int, default=20, help="Number of jobs to show")
    jobs_dead.add_argument("--queue", default=None, choices=list(QUEUE_NAMES))
    jobs_dead.set_defaults(func=_cmd_jobs_list, dead=True, status=None)

    jobs_retry = jobs_subparsers.add_parser("retry", help="Requeue a dead or failed job")
    jobs_retry.add_argument("job_id")
    jobs_retry.set_defaults(func=_cmd_jobs_retry)

    scheduler_parser = subparsers.add_parser("scheduler", help="Scheduler commands")
    scheduler_subparsers = scheduler_parser.add_subparsers(dest="scheduler_command", required=True)
    scheduler_tick = scheduler_subparsers.add_parser("tick", help="Fire due schedules now")
    scheduler_tick.set_defaults(func=_cmd_scheduler_tick)

    serve_parser = subparsers.add_parser("serve", help="Run the HTTP API")
    serve_parser.add_argument("--host", default="0.0.0.0")
    serve_parser.add_argument("--port", type=int, default=8000)
    serve_parser.set_defaults(func=_cmd_serve)

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    logger = _setup_logging()
    return args.func(args, logger)


if __name__ == "__main__":
    raise SystemExit(main())
