from __future__ import annotations

import json
import os
from dataclasses import dataclass
from typing import Any

from .models import QUEUE_NAMES
from .storage import get_setting, set_setting


class ConfigError(ValueError):
    pass


@dataclass(frozen=True)
class AppConfig:
    name: str
    base_url: str
    timezone: str


@dataclass(frozen=True)
class BackoffConfig:
    type: str
    delay_seconds: int


@dataclass(frozen=True)
class QueueConfig:
    name: str
    concurrency: int
    max_attempts: int
    backoff: BackoffConfig


@dataclass(frozen=True)
class JobsConfig:
    lock_timeout_seconds: int
    poll_seconds: int
    scheduler_lease_seconds: int


@dataclass(frozen=True)
class SchedulesConfig:
    daily_generation: str
    scheduled_publish: str
    analytics_sync: str


@dataclass(frozen=True)
class GenerationConfig:
    target_word_count: int
    base_url: str
    model: str
    timeout_seconds: int
    temperature: float


@dataclass(frozen=True)
class PublishingConfig:
    http_timeout_seconds: int
    user_agent: str
    shopify_api_version: str
    webflow_api_base: str
    token_refresh_skew_seconds: int
    refresh_lease_seconds: int
    oauth_token_urls: dict[str, str]


@dataclass(frozen=True)
class HooksConfig:
    auto_publish_enabled: bool
    auto_publish_timeout_seconds: int


@dataclass(frozen=True)
class Config:
    app: AppConfig
    queues: dict[str, QueueConfig]
    jobs: JobsConfig
    schedules: SchedulesConfig
    generation: GenerationConfig
    publishing: PublishingConfig
    hooks: HooksConfig

    def queue(self, name: str) -> QueueConfig:
        try:
            return self.queues[name]
        except KeyError as exc:
            raise ConfigError(f"unknown queue {name}") from exc


DEFAULT_CONFIG: dict[str, Any] = {
    "app": {
        "name": "AutoSEO",
        "base_url": "http://localhost:8000",
        "timezone": "UTC",
    },
    "queues": {
        "article_generation": {
            "concurrency": 3,
            "max_attempts": 3,
            "backoff": {"type": "exponential", "delay_seconds": 60},
        },
        "publishing": {
            "concurrency": 5,
            "max_attempts": 5,
            "backoff": {"type": "exponential", "delay_seconds": 30},
        },
        "analytics_sync": {
            "concurrency": 2,
            "max_attempts": 3,
            "backoff": {"type": "fixed", "delay_seconds": 300},
        },
    },
    "jobs": {
        "lock_timeout_seconds": 900,
        "poll_seconds": 5,
        "scheduler_lease_seconds": 55,
    },
    "schedules": {
        "daily_generation": "0 9 * * *",
        "scheduled_publish": "*/5 * * * *",
        "analytics_sync": "0 2 * * *",
    },
    "generation": {
        "target_word_count": 2000,
        "base_url": "https://api.openai.com/v1",
        "model": "gpt-4o",
        "timeout_seconds": 120,
        "temperature": 0.7,
    },
    "publishing": {
        "http_timeout_seconds": 30,
        "user_agent": "AutoSEO/0.1",
        "shopify_api_version": "2024-01",
        "webflow_api_base": "https://api.webflow.com",
        "token_refresh_skew_seconds": 60,
        "refresh_lease_seconds": 30,
        "oauth_token_urls": {
            "wordpress": "{base_url}/api/integrations/wordpress/oauth/token",
            "webflow": "https://api.webflow.com/oauth/access_token",
            "shopify": "",
        },
    },
    "hooks": {
        "auto_publish_enabled": True,
        "auto_publish_timeout_seconds": 30,
    },
}

CONFIG_KEY = "config.runtime"
BACKOFF_TYPES = ("fixed", "exponential")


def get_state_db_path() -> str:
    data_dir = os.environ.get("AUTOSEO_DATA_DIR", "/data")
    return os.path.join(data_dir, "state.sqlite3")


def bootstrap_runtime_config(conn) -> dict[str, Any]:
    cfg = get_setting(conn, CONFIG_KEY, None)
    if cfg is None:
        set_setting(conn, CONFIG_KEY, _deep_copy(DEFAULT_CONFIG))
        cfg = get_setting(conn, CONFIG_KEY, None)
    if not isinstance(cfg, dict):
        raise ConfigError("config.runtime must be a JSON object")
    return cfg


def get_runtime_config(conn) -> dict[str, Any]:
    cfg = bootstrap_runtime_config(conn)
    errors = validate_runtime_config(cfg)
    if errors:
        raise ConfigError("Invalid config.runtime: " + "; ".join(errors))
    return cfg


def set_runtime_config(conn, cfg: dict[str, Any]) -> None:
    errors = validate_runtime_config(cfg)
    if errors:
        raise ConfigError("Invalid config.runtime: " + "; ".join(errors))
    set_setting(conn, CONFIG_KEY, _deep_copy(cfg))


def load_runtime_config(conn) -> Config:
    cfg = get_runtime_config(conn)
    return build_config(cfg)


def validate_runtime_config(cfg: dict[str, Any]) -> list[str]:
    errors: list[str] = []
    _validate_dict(cfg, DEFAULT_CONFIG, "config.runtime", errors)
    if errors:
        return errors
    for queue_name, queue_cfg in cfg["queues"].items():
        path = f"config.runtime.queues.{queue_name}"
        if int(queue_cfg["concurrency"]) < 1:
            errors.append(f"{path}.concurrency must be >= 1")
        if int(queue_cfg["max_attempts"]) < 1:
            errors.append(f"{path}.max_attempts must be >= 1")
        if queue_cfg["backoff"]["type"] not in BACKOFF_TYPES:
            errors.append(f"{path}.backoff.type must be one of {', '.join(BACKOFF_TYPES)}")
        if int(queue_cfg["backoff"]["delay_seconds"]) < 0:
            errors.append(f"{path}.backoff.delay_seconds must be >= 0")
    return errors


def _validate_dict(value: dict[str, Any], schema: dict[str, Any], path: str, errors: list[str]) -> None:
    if not isinstance(value, dict):
        errors.append(f"{path} must be an object")
        return
    for key in schema.keys():
        if key not in value:
            errors.append(f"missing {path}.{key}")
    for key in value.keys():
        if key not in schema:
            errors.append(f"unknown {path}.{key}")
    for key, default in schema.items():
        if key not in value:
            continue
        _validate_value(value[key], default, f"{path}.{key}", errors)


def _validate_value(value: Any, default: Any, path: str, errors: list[str]) -> None:
    if isinstance(default, dict):
        if not isinstance(value, dict):
            errors.append(f"{path} must be an object")
            return
        _validate_dict(value, default, path, errors)
        return
    if isinstance(default, list):
        if not isinstance(value, list):
            errors.append(f"{path} must be a list")
        return
    if isinstance(default, bool):
        if not isinstance(value, bool):
            errors.append(f"{path} must be a boolean")
        return
    if isinstance(default, int):
        if not isinstance(value, int) or isinstance(value, bool):
            errors.append(f"{path} must be an integer")
        return
    if isinstance(default, float):
        if not isinstance(value, (int, float)) or isinstance(value, bool):
            errors.append(f"{path} must be a number")
        return
    if isinstance(default, str):
        if not isinstance(value, str):
            errors.append(f"{path} must be a string")
        return


def build_config(cfg: dict[str, Any]) -> Config:
    app_cfg = cfg.get("app") or {}
    queues_cfg = cfg.get("queues") or {}
    jobs_cfg = cfg.get("jobs") or {}
    schedules_cfg = cfg.get("schedules") or {}
    generation_cfg = cfg.get("generation") or {}
    publishing_cfg = cfg.get("publishing") or {}
    hooks_cfg = cfg.get("hooks") or {}

    app = AppConfig(
        name=str(app_cfg.get("name")),
        base_url=str(app_cfg.get("base_url")).rstrip("/"),
        timezone=str(app_cfg.get("timezone")),
    )

    queues: dict[str, QueueConfig] = {}
    for name in QUEUE_NAMES:
        queue_cfg = queues_cfg.get(name) or {}
        backoff_cfg = queue_cfg.get("backoff") or {}
        queues[name] = QueueConfig(
            name=name,
            concurrency=int(queue_cfg.get("concurrency")),
            max_attempts=int(queue_cfg.get("max_attempts")),
            backoff=BackoffConfig(
                type=str(backoff_cfg.get("type")),
                delay_seconds=int(backoff_cfg.get("delay_seconds")),
            ),
        )

    jobs = JobsConfig(
        lock_timeout_seconds=int(jobs_cfg.get("lock_timeout_seconds")),
        poll_seconds=int(jobs_cfg.get("poll_seconds")),
        scheduler_lease_seconds=int(jobs_cfg.get("scheduler_lease_seconds")),
    )

    schedules = SchedulesConfig(
        daily_generation=str(schedules_cfg.get("daily_generation")),
        scheduled_publish=str(schedules_cfg.get("scheduled_publish")),
        analytics_sync=str(schedules_cfg.get("analytics_sync")),
    )

    generation = GenerationConfig(
        target_word_count=int(generation_cfg.get("target_word_count")),
        base_url=str(generation_cfg.get("base_url")),
        model=str(generation_cfg.get("model")),
        timeout_seconds=int(generation_cfg.get("timeout_seconds")),
        temperature=float(generation_cfg.get("temperature")),
    )

    token_urls = {
        str(platform): str(url).replace("{base_url}", app.base_url)
        for platform, url in (publishing_cfg.get("oauth_token_urls") or {}).items()
    }
    publishing = PublishingConfig(
        http_timeout_seconds=int(publishing_cfg.get("http_timeout_seconds")),
        user_agent=str(publishing_cfg.get("user_agent")),
        shopify_api_version=str(publishing_cfg.get("shopify_api_version")),
        webflow_api_base=str(publishing_cfg.get("webflow_api_base")).rstrip("/"),
        token_refresh_skew_seconds=int(publishing_cfg.get("token_refresh_skew_seconds")),
        refresh_lease_seconds=int(publishing_cfg.get("refresh_lease_seconds")),
        oauth_token_urls=token_urls,
    )

    hooks = HooksConfig(
        auto_publish_enabled=bool(hooks_cfg.get("auto_publish_enabled")),
        auto_publish_timeout_seconds=int(hooks_cfg.get("auto_publish_timeout_seconds")),
    )

    return Config(
        app=app,
        queues=queues,
        jobs=jobs,
        schedules=schedules,
        generation=generation,
        publishing=publishing,
        hooks=hooks,
    )


def default_config() -> Config:
    return build_config(_deep_copy(DEFAULT_CONFIG))


def _deep_copy(value: dict[str, Any]) -> dict[str, Any]:
    return json.loads(json.dumps(value))
