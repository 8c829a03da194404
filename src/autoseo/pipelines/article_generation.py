from __future__ import annotations

import logging
from typing import Any

from ..errors import AlreadyUsed, NotFound, ValidationFailed
from ..models import Keyword, KeywordStatus
from ..services.articles_service import insert_article, list_articles, require_article
from ..services.generation import ArticleGenerator, GenerationRequest
from ..services.keywords_service import find_keyword_by_text, next_due_keyword, require_keyword
from ..services.projects_service import require_project
from ..state import check_keyword_transition
from ..utils import log_event, utc_now_iso


def generate_article(
    conn: Any,
    payload: dict[str, Any],
    generator: ArticleGenerator,
    *,
    default_word_count: int = 2000,
    logger: logging.Logger | None = None,
) -> dict[str, Any]:
    """Generate one draft article for a project.

    The keyword comes from, in order: ``keyword`` text, ``keyword_id``, or the
    project's earliest due planned keyword. The article insert and the keyword
    moving to ``used`` commit together; nothing is written when generation
    fails.
    """
    logger = logger or logging.getLogger("autoseo.pipelines.article_generation")
    project_id = str(payload.get("project_id") or "").strip()
    if not project_id:
        raise ValidationFailed("project_id is required")
    project = require_project(conn, project_id)
    keyword_text, keyword = _select_keyword(conn, project_id, payload)

    request = GenerationRequest(
        keyword=keyword_text,
        project_name=project.name,
        website_url=project.website_url,
        language=project.language,
        target_word_count=int(payload.get("target_word_count") or default_word_count),
        existing_articles=[article.title for article in list_articles(conn, project_id, limit=20)],
    )
    log_event(
        logger,
        logging.INFO,
        "article_generation_started",
        project_id=project_id,
        keyword=keyword_text,
        keyword_id=keyword.id if keyword else None,
    )
    generated = generator.generate(request)
    if not (generated.content or "").strip():
        raise ValidationFailed("generator returned an empty article")

    with conn.transaction():
        if keyword is not None:
            _consume_keyword(conn, keyword)
        article_id = insert_article(
            conn,
            project_id,
            generated.title or keyword_text,
            generated.content,
            keyword_id=keyword.id if keyword else None,
            keyword_text=keyword_text,
            meta_title=generated.meta_title,
            meta_description=generated.meta_description,
        )
    article = require_article(conn, article_id)
    log_event(
        logger,
        logging.INFO,
        "article_generated",
        project_id=project_id,
        article_id=article_id,
        keyword_id=keyword.id if keyword else None,
        word_count=article.word_count,
        seo_score=article.seo_score,
    )
    return {
        "article_id": article_id,
        "keyword_id": keyword.id if keyword else None,
        "keyword": keyword_text,
        "word_count": article.word_count,
        "seo_score": article.seo_score,
    }


def _select_keyword(
    conn: Any, project_id: str, payload: dict[str, Any]
) -> tuple[str, Keyword | None]:
    text = " ".join(str(payload.get("keyword") or "").split())
    if text:
        record = find_keyword_by_text(conn, project_id, text)
        if record is not None and record.status is KeywordStatus.USED:
            raise AlreadyUsed(f"keyword {text!r} has already been used")
        return text, record
    keyword_id = str(payload.get("keyword_id") or "").strip()
    if keyword_id:
        record = require_keyword(conn, keyword_id, project_id)
        if record.status is KeywordStatus.USED:
            raise AlreadyUsed(f"keyword {keyword_id} has already been used")
        return record.keyword, record
    record = next_due_keyword(conn, project_id)
    if record is None:
        raise NotFound(f"no planned keyword is due for project {project_id}")
    return record.keyword, record


def _consume_keyword(conn: Any, keyword: Keyword) -> None:
    transition = check_keyword_transition(keyword.status, KeywordStatus.USED)
    if not transition.applied:
        raise AlreadyUsed(f"keyword {keyword.id} has already been used")
    cursor = conn.execute(
        """
        UPDATE keywords
        SET status = ?, updated_at = ?
        WHERE id = ? AND status = ?
        """,
        (KeywordStatus.USED.value, utc_now_iso(), keyword.id, keyword.status.value),
    )
    if cursor.rowcount != 1:
        raise AlreadyUsed(f"keyword {keyword.id} was used by a concurrent generation")
