from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

from .errors import ValidationFailed


class Platform(str, Enum):
    WORDPRESS = "wordpress"
    SHOPIFY = "shopify"
    WEBFLOW = "webflow"

    @classmethod
    def parse(cls, value: object) -> "Platform":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value or "").strip().lower())
        except ValueError as exc:
            raise ValidationFailed(f"unsupported platform {value!r}") from exc


class KeywordStatus(str, Enum):
    UNPLANNED = "unplanned"
    PLANNED = "planned"
    USED = "used"


class ArticleStatus(str, Enum):
    DRAFT = "draft"
    SCHEDULED = "scheduled"
    PUBLISHED = "published"


QUEUE_ARTICLE_GENERATION = "article_generation"
QUEUE_PUBLISHING = "publishing"
QUEUE_ANALYTICS_SYNC = "analytics_sync"
QUEUE_NAMES = (QUEUE_ARTICLE_GENERATION, QUEUE_PUBLISHING, QUEUE_ANALYTICS_SYNC)


@dataclass(frozen=True)
class Project:
    id: str
    name: str
    website_url: str | None
    language: str
    onboarding_complete: bool
    created_at: str
    updated_at: str


@dataclass(frozen=True)
class Keyword:
    id: str
    project_id: str
    keyword: str
    search_volume: int | None
    difficulty: int | None
    status: KeywordStatus
    planned_date: str | None
    created_at: str
    updated_at: str


@dataclass(frozen=True)
class Article:
    id: str
    project_id: str
    keyword_id: str | None
    title: str
    content: str
    meta_title: str | None
    meta_description: str | None
    featured_image_url: str | None
    word_count: int
    heading_count: int
    paragraph_count: int
    internal_links: int
    external_links: int
    keyword_density: float
    seo_score: int
    status: ArticleStatus
    scheduled_for: str | None
    published_at: str | None
    created_at: str
    updated_at: str


@dataclass(frozen=True)
class Integration:
    id: str
    project_id: str
    platform: Platform
    is_active: bool
    integration_key: str | None
    credentials_version: int
    created_at: str
    updated_at: str


@dataclass(frozen=True)
class Job:
    id: str
    queue_name: str
    job_name: str | None
    status: str
    payload: dict[str, object]
    result: dict[str, object] | None
    attempts: int
    max_attempts: int
    backoff_type: str
    backoff_delay_seconds: int
    priority: int
    dedupe_key: str | None
    run_at: str
    requested_at: str
    started_at: str | None
    finished_at: str | None
    locked_by: str | None
    locked_at: str | None
    error: str | None
    error_code: str | None


@dataclass(frozen=True)
class JobSchedule:
    name: str
    queue_name: str
    pattern: str
    payload: dict[str, object]
    options: dict[str, object]
    last_fired_at: str | None


@dataclass(frozen=True)
class ResolutionHint:
    integration_id: str | None = None
    platform: Platform | None = None


@dataclass(frozen=True)
class PublishRequest:
    title: str
    content: str
    status: str
    slug: str
    meta_title: str | None = None
    meta_description: str | None = None
    featured_image_url: str | None = None


@dataclass(frozen=True)
class PublishResult:
    success: bool
    url: str | None = None
    post_id: str | None = None
    error: str | None = None
    error_code: str | None = None
    retryable: bool = False
    deduplicated: bool = False
    integration_id: str | None = None
    platform: str | None = None
    warnings: list[str] = field(default_factory=list)

    @classmethod
    def failed(cls, error: str, code: str, *, retryable: bool = False) -> "PublishResult":
        return cls(success=False, error=error, error_code=code, retryable=retryable)


@dataclass(frozen=True)
class ArticleStatusChanged:
    article_id: str
    project_id: str
    from_status: ArticleStatus
    to_status: ArticleStatus
    initiated_by: str
    occurred_at: str
