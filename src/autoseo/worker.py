from __future__ import annotations

import argparse
import logging
import os
import threading
import time
import uuid
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass
from typing import Any, Callable

from .config import Config, ConfigError, get_state_db_path, load_runtime_config
from .errors import PipelineError
from .models import QUEUE_ANALYTICS_SYNC, QUEUE_ARTICLE_GENERATION, QUEUE_NAMES, QUEUE_PUBLISHING, Job
from .pipelines.analytics_sync import AnalyticsClient, sync_analytics
from .pipelines.article_generation import generate_article
from .pipelines.publishing import publish_article
from .publishing.http import Transport
from .publishing.registry import AdapterRegistry, build_default_registry
from .publishing.service import PublishingService
from .queue import JobQueue
from .scheduler import tick
from .services.generation import ArticleGenerator, LlmArticleGenerator
from .storage import init_db
from .utils import configure_logging, log_event


@dataclass
class WorkerContext:
    config: Config
    registry: AdapterRegistry
    generator: ArticleGenerator | None = None
    analytics: AnalyticsClient | None = None
    http: Transport | None = None
    db_path: str | None = None

    def connect(self) -> Any:
        return init_db(self.db_path or get_state_db_path())


Handler = Callable[[Any, WorkerContext, Job, logging.Logger], "dict[str, Any]"]


def _setup_logging() -> logging.Logger:
    return configure_logging("autoseo.worker")


def build_context(db_path: str | None = None) -> WorkerContext:
    path = db_path or get_state_db_path()
    conn = init_db(path)
    try:
        config = load_runtime_config(conn)
    finally:
        conn.close()
    return WorkerContext(
        config=config,
        registry=build_default_registry(config.publishing),
        generator=LlmArticleGenerator(config.generation),
        db_path=path,
    )


def _handle_article_generation(
    conn: Any, context: WorkerContext, job: Job, logger: logging.Logger
) -> dict[str, Any]:
    if context.generator is None:
        raise PipelineError("no article generator configured")
    return generate_article(
        conn,
        dict(job.payload),
        context.generator,
        default_word_count=context.config.generation.target_word_count,
        logger=logger,
    )


def _handle_publishing(
    conn: Any, context: WorkerContext, job: Job, logger: logging.Logger
) -> dict[str, Any]:
    service = PublishingService(conn, context.registry, context.config.publishing, http=context.http)
    return publish_article(conn, dict(job.payload), service, job_id=job.id, logger=logger)


def _handle_analytics_sync(
    conn: Any, context: WorkerContext, job: Job, logger: logging.Logger
) -> dict[str, Any]:
    return sync_analytics(conn, dict(job.payload), context.analytics, logger=logger)


HANDLERS: dict[str, Handler] = {
    QUEUE_ARTICLE_GENERATION: _handle_article_generation,
    QUEUE_PUBLISHING: _handle_publishing,
    QUEUE_ANALYTICS_SYNC: _handle_analytics_sync,
}


def process_job(conn: Any, context: WorkerContext, job: Job, logger: logging.Logger) -> str:
    """Run one claimed job to completion and record its outcome; returns the job's new status."""
    queue = JobQueue(conn, context.config)
    log_event(
        logger,
        logging.INFO,
        "job_claimed",
        job_id=job.id,
        queue=job.queue_name,
        attempt=job.attempts,
        max_attempts=job.max_attempts,
    )
    try:
        result = HANDLERS[job.queue_name](conn, context, job, logger)
    except PipelineError as exc:
        status = queue.nack(job, exc.message, exc.code, retryable=exc.retryable)
        log_event(
            logger,
            logging.WARNING,
            "job_failed",
            job_id=job.id,
            queue=job.queue_name,
            error_code=exc.code,
            retryable=exc.retryable,
            status=status,
            error=exc.message,
        )
        return status
    except Exception as exc:  # noqa: BLE001
        status = queue.nack(job, str(exc), "InternalError", retryable=True)
        log_event(
            logger,
            logging.ERROR,
            "job_crashed",
            job_id=job.id,
            queue=job.queue_name,
            status=status,
            error=str(exc),
        )
        return status
    if queue.ack(job.id, result):
        log_event(logger, logging.INFO, "job_succeeded", job_id=job.id, queue=job.queue_name)
    else:
        log_event(logger, logging.ERROR, "job_complete_failed", job_id=job.id)
    return "succeeded"


def _process_claimed_job_thread(context: WorkerContext, job: Job) -> str:
    logger = _setup_logging()
    conn = context.connect()
    try:
        return process_job(conn, context, job, logger)
    finally:
        conn.close()


def _maybe_tick(conn: Any, context: WorkerContext, worker_id: str, logger: logging.Logger) -> None:
    try:
        tick(conn, JobQueue(conn, context.config), context.config, holder=worker_id)
    except PipelineError as exc:
        log_event(logger, logging.ERROR, "scheduler_tick_failed", error=exc.message)


def run_once(
    worker_id: str,
    queues: list[str] | None = None,
    context: WorkerContext | None = None,
    with_scheduler: bool = True,
) -> int:
    """Claim and run at most one job per queue; returns how many jobs ran."""
    logger = _setup_logging()
    try:
        context = context or build_context()
    except ConfigError as exc:
        log_event(logger, logging.ERROR, "config_error", error=str(exc))
        return 0
    conn = context.connect()
    processed = 0
    try:
        if with_scheduler:
            _maybe_tick(conn, context, worker_id, logger)
        queue = JobQueue(conn, context.config)
        for queue_name in queues or list(QUEUE_NAMES):
            job = queue.claim(queue_name, worker_id)
            if job is None:
                continue
            process_job(conn, context, job, logger)
            processed += 1
    finally:
        conn.close()
    return processed


def run_loop(
    worker_id: str,
    sleep_seconds: float,
    queues: list[str] | None = None,
    context: WorkerContext | None = None,
    with_scheduler: bool = True,
    stop: threading.Event | None = None,
) -> int:
    """Keep up to each queue's ``concurrency`` jobs in flight until ``stop`` is set."""
    logger = _setup_logging()
    try:
        context = context or build_context()
    except ConfigError as exc:
        log_event(logger, logging.ERROR, "config_error", error=str(exc))
        return 1
    queue_names = queues or list(QUEUE_NAMES)
    executors = {
        name: ThreadPoolExecutor(
            max_workers=context.config.queue(name).concurrency, thread_name_prefix=name
        )
        for name in queue_names
    }
    in_flight: dict[str, set[Future]] = {name: set() for name in queue_names}
    log_event(logger, logging.INFO, "worker_started", worker_id=worker_id, queues=",".join(queue_names))
    try:
        while stop is None or not stop.is_set():
            conn = context.connect()
            try:
                if with_scheduler:
                    _maybe_tick(conn, context, worker_id, logger)
                queue = JobQueue(conn, context.config)
                for name in queue_names:
                    capacity = context.config.queue(name).concurrency
                    while len(in_flight[name]) < capacity:
                        job = queue.claim(name, worker_id)
                        if job is None:
                            break
                        in_flight[name].add(
                            executors[name].submit(_process_claimed_job_thread, context, job)
                        )
            finally:
                conn.close()
            pending = set().union(*in_flight.values())
            if not pending:
                time.sleep(sleep_seconds)
                continue
            done, _ = wait(pending, timeout=sleep_seconds, return_when=FIRST_COMPLETED)
            for future in done:
                for futures in in_flight.values():
                    futures.discard(future)
                try:
                    future.result()
                except Exception as exc:  # noqa: BLE001
                    log_event(logger, logging.ERROR, "job_thread_error", error=str(exc))
    finally:
        for executor in executors.values():
            executor.shutdown(wait=True)
    log_event(logger, logging.INFO, "worker_stopped", worker_id=worker_id)
    return 0


def _parse_queues(value: str | None) -> list[str] | None:
    if not value:
        return None
    items = [item.strip() for item in value.split(",") if item.strip()]
    unknown = [item for item in items if item not in QUEUE_NAMES]
    if unknown:
        raise SystemExit(f"unknown queue(s): {', '.join(unknown)}")
    return items or None


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="autoseo-worker")
    parser.add_argument("--once", action="store_true", help="Run at most one job per queue and exit")
    parser.add_argument("--sleep", type=int, default=5, help="Sleep seconds between polls")
    parser.add_argument(
        "--worker-id",
        default=os.environ.get("HOSTNAME") or f"worker-{uuid.uuid4().hex[:8]}",
    )
    parser.add_argument(
        "--queues",
        default=os.environ.get("AUTOSEO_WORKER_QUEUES", ""),
        help="Comma-separated queue names (default: all)",
    )
    return parser


def main() -> int:
    parser = build_parser()
    args = parser.parse_args()
    queues = _parse_queues(args.queues)
    if args.once:
        run_once(args.worker_id, queues)
        return 0
    return run_loop(args.worker_id, args.sleep, queues)


if __name__ == "__main__":
    raise SystemExit(main())
