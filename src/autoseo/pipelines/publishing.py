from __future__ import annotations

import logging
from typing import Any

from ..errors import ValidationFailed, error_from_code
from ..models import ArticleStatus, Platform, ResolutionHint
from ..publishing.service import PublishingService, is_confirmed
from ..services.articles_service import mark_published, require_article
from ..utils import log_event


def publish_article(
    conn: Any,
    payload: dict[str, Any],
    service: PublishingService,
    *,
    job_id: str | None = None,
    logger: logging.Logger | None = None,
) -> dict[str, Any]:
    logger = logger or logging.getLogger("autoseo.pipelines.publishing")
    article_id = str(payload.get("article_id") or "").strip()
    project_id = str(payload.get("project_id") or "").strip()
    if not article_id or not project_id:
        raise ValidationFailed("article_id and project_id are required")
    article = require_article(conn, article_id, project_id)
    hint = ResolutionHint(
        integration_id=payload.get("integration_id") or None,
        platform=Platform.parse(payload["platform"]) if payload.get("platform") else None,
    )
    if (
        article.status is ArticleStatus.PUBLISHED
        and hint.integration_id
        and is_confirmed(conn, article_id, hint.integration_id)
    ):
        log_event(logger, logging.INFO, "publish_skipped", article_id=article_id, reason="confirmed")
        return {"article_id": article_id, "skipped": True}

    result = service.publish(article_id, project_id, hint, job_id=job_id)
    if not result.success:
        raise error_from_code(
            result.error_code, result.error or "publish failed", retryable=result.retryable
        )
    change = mark_published(conn, article_id)
    return {
        "article_id": article_id,
        "integration_id": result.integration_id,
        "platform": result.platform,
        "url": result.url,
        "post_id": result.post_id,
        "deduplicated": result.deduplicated,
        "warnings": list(result.warnings),
        "published_at": change.published_at,
    }
