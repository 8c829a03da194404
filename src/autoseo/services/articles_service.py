from __future__ import annotations

import logging
from concurrent.futures import Future
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from ..errors import NotFound, ValidationFailed
from ..models import Article, ArticleStatus, ArticleStatusChanged
from ..seo import SeoAnalysis, analyze_seo
from ..state import (
    INITIATED_BY_SYSTEM,
    INITIATED_BY_USER,
    ArticleStateChange,
    apply_article_transition,
    check_article_transition,
)
from ..utils import log_event, new_id, utc_now_iso
from .projects_service import require_project

if TYPE_CHECKING:
    from ..hooks import HookOutcome, PostCommitHooks

ARTICLE_COLUMNS = (
    "id, project_id, keyword_id, title, content, meta_title, meta_description, "
    "featured_image_url, word_count, heading_count, paragraph_count, internal_links, "
    "external_links, keyword_density, seo_score, status, scheduled_for, published_at, "
    "created_at, updated_at"
)
EDITABLE_FIELDS = ("title", "content", "meta_title", "meta_description", "featured_image_url")

logger = logging.getLogger("autoseo.articles")


@dataclass
class ArticleUpdate:
    article: Article
    change: ArticleStateChange | None = None
    hook_outcomes: list["HookOutcome"] = field(default_factory=list)
    pending_hooks: list[Future] = field(default_factory=list)


def get_article(conn: Any, article_id: str) -> Article | None:
    row = conn.execute(
        f"SELECT {ARTICLE_COLUMNS} FROM articles WHERE id = ?", (article_id,)
    ).fetchone()
    return _row_to_article(row) if row else None


def require_article(conn: Any, article_id: str, project_id: str | None = None) -> Article:
    article = get_article(conn, article_id)
    if article is None or (project_id and article.project_id != project_id):
        raise NotFound(f"article {article_id} not found")
    return article


def list_articles(
    conn: Any,
    project_id: str,
    status: ArticleStatus | str | None = None,
    limit: int = 100,
) -> list[Article]:
    sql = f"SELECT {ARTICLE_COLUMNS} FROM articles WHERE project_id = ?"
    params: list[object] = [project_id]
    if status:
        sql += " AND status = ?"
        params.append(ArticleStatus(status).value)
    sql += " ORDER BY created_at DESC LIMIT ?"
    params.append(limit)
    return [_row_to_article(row) for row in conn.execute(sql, tuple(params)).fetchall()]


def list_due_scheduled(conn: Any, now: str) -> list[Article]:
    cursor = conn.execute(
        f"""
        SELECT {ARTICLE_COLUMNS}
        FROM articles
        WHERE status = ? AND scheduled_for IS NOT NULL AND scheduled_for <= ?
        ORDER BY scheduled_for, id
        """,
        (ArticleStatus.SCHEDULED.value, now),
    )
    return [_row_to_article(row) for row in cursor.fetchall()]


def insert_article(
    conn: Any,
    project_id: str,
    title: str,
    content: str,
    *,
    keyword_id: str | None = None,
    keyword_text: str | None = None,
    meta_title: str | None = None,
    meta_description: str | None = None,
    featured_image_url: str | None = None,
) -> str:
    """Insert a draft article with its SEO metrics; safe inside ``conn.transaction()``."""
    title = (title or "").strip()
    if not title:
        raise ValidationFailed("title is required")
    analysis = analyze_seo(content or "", meta_title, meta_description, keyword_text)
    article_id = new_id()
    now = utc_now_iso()
    conn.execute(
        f"""
        INSERT INTO articles ({ARTICLE_COLUMNS})
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, NULL, NULL, ?, ?)
        """,
        (
            article_id,
            project_id,
            keyword_id,
            title,
            content or "",
            meta_title,
            meta_description,
            featured_image_url,
            analysis.word_count,
            analysis.heading_count,
            analysis.paragraph_count,
            analysis.internal_links,
            analysis.external_links,
            analysis.keyword_density,
            analysis.score,
            ArticleStatus.DRAFT.value,
            now,
            now,
        ),
    )
    conn.commit()
    return article_id


def create_article(conn: Any, project_id: str, payload: dict[str, Any]) -> Article:
    require_project(conn, project_id)
    keyword_id = payload.get("keyword_id") or None
    keyword_text = _keyword_text(conn, keyword_id)
    article_id = insert_article(
        conn,
        project_id,
        str(payload.get("title") or ""),
        str(payload.get("content") or ""),
        keyword_id=keyword_id,
        keyword_text=keyword_text,
        meta_title=payload.get("meta_title"),
        meta_description=payload.get("meta_description"),
        featured_image_url=payload.get("featured_image_url"),
    )
    return require_article(conn, article_id)


def update_article(
    conn: Any,
    article_id: str,
    changes: dict[str, Any],
    *,
    initiated_by: str = INITIATED_BY_USER,
    project_id: str | None = None,
    hooks: "PostCommitHooks | None" = None,
    hook_timeout: float | None = None,
) -> ArticleUpdate:
    """Apply an edit, then run post-commit hooks for any status change.

    The requested transition is checked before anything is written; field
    edits and the status change then commit together or not at all. Hook
    failures are reported in the returned outcomes and never undo the edit.
    With ``hook_timeout`` the call waits for the hooks, otherwise their
    futures are returned in ``pending_hooks``.
    """
    current = require_article(conn, article_id, project_id)
    edits = {name: changes[name] for name in EDITABLE_FIELDS if name in changes}
    if "title" in edits and not str(edits["title"] or "").strip():
        raise ValidationFailed("title cannot be empty")

    target = changes.get("status")
    if target is None and changes.get("scheduled_for") and current.status is ArticleStatus.SCHEDULED:
        target = ArticleStatus.SCHEDULED.value
    if target is not None:
        check_article_transition(
            current.status,
            target,
            current_scheduled_for=current.scheduled_for,
            current_published_at=current.published_at,
            scheduled_for=changes.get("scheduled_for"),
            published_at=changes.get("published_at"),
        )

    change: ArticleStateChange | None = None
    with conn.transaction():
        if edits:
            _write_fields(conn, current, edits)
        if target is not None:
            change = apply_article_transition(
                conn,
                article_id,
                target,
                scheduled_for=changes.get("scheduled_for"),
                published_at=changes.get("published_at"),
                project_id=current.project_id,
            )
    if change is not None and change.applied:
        log_event(
            logger,
            logging.INFO,
            "article_status_changed",
            article_id=article_id,
            from_status=change.from_status.value,
            to_status=change.to_status.value,
            initiated_by=initiated_by,
        )

    update = ArticleUpdate(article=require_article(conn, article_id), change=change)
    if hooks is not None and change is not None and change.applied:
        event = ArticleStatusChanged(
            article_id=article_id,
            project_id=current.project_id,
            from_status=change.from_status,
            to_status=change.to_status,
            initiated_by=initiated_by,
            occurred_at=utc_now_iso(),
        )
        if hook_timeout is None:
            update.pending_hooks = hooks.dispatch(event)
        else:
            update.hook_outcomes = hooks.dispatch_and_wait(event, timeout=hook_timeout)
    return update


def mark_published(
    conn: Any, article_id: str, published_at: str | None = None
) -> ArticleStateChange:
    """Machine-initiated publish; never triggers auto-publish hooks."""
    change = apply_article_transition(
        conn, article_id, ArticleStatus.PUBLISHED, published_at=published_at
    )
    if change.applied:
        log_event(
            logger,
            logging.INFO,
            "article_status_changed",
            article_id=article_id,
            from_status=change.from_status.value,
            to_status=change.to_status.value,
            initiated_by=INITIATED_BY_SYSTEM,
        )
    return change


def delete_article(conn: Any, article_id: str, project_id: str | None = None) -> None:
    require_article(conn, article_id, project_id)
    with conn.transaction():
        conn.execute("DELETE FROM publish_attempts WHERE article_id = ?", (article_id,))
        conn.execute("DELETE FROM articles WHERE id = ?", (article_id,))


def article_to_dict(article: Article) -> dict[str, Any]:
    return {
        "id": article.id,
        "project_id": article.project_id,
        "keyword_id": article.keyword_id,
        "title": article.title,
        "content": article.content,
        "meta_title": article.meta_title,
        "meta_description": article.meta_description,
        "featured_image_url": article.featured_image_url,
        "word_count": article.word_count,
        "heading_count": article.heading_count,
        "paragraph_count": article.paragraph_count,
        "internal_links": article.internal_links,
        "external_links": article.external_links,
        "keyword_density": article.keyword_density,
        "seo_score": article.seo_score,
        "status": article.status.value,
        "scheduled_for": article.scheduled_for,
        "published_at": article.published_at,
        "created_at": article.created_at,
        "updated_at": article.updated_at,
    }


def _write_fields(conn: Any, current: Article, edits: dict[str, Any]) -> None:
    merged = {name: getattr(current, name) for name in EDITABLE_FIELDS}
    merged.update(edits)
    analysis: SeoAnalysis = analyze_seo(
        merged["content"] or "",
        merged["meta_title"],
        merged["meta_description"],
        _keyword_text(conn, current.keyword_id),
    )
    conn.execute(
        """
        UPDATE articles
        SET title = ?, content = ?, meta_title = ?, meta_description = ?,
            featured_image_url = ?, word_count = ?, heading_count = ?,
            paragraph_count = ?, internal_links = ?, external_links = ?,
            keyword_density = ?, seo_score = ?, updated_at = ?
        WHERE id = ?
        """,
        (
            str(merged["title"]).strip(),
            merged["content"] or "",
            merged["meta_title"],
            merged["meta_description"],
            merged["featured_image_url"],
            analysis.word_count,
            analysis.heading_count,
            analysis.paragraph_count,
            analysis.internal_links,
            analysis.external_links,
            analysis.keyword_density,
            analysis.score,
            utc_now_iso(),
            current.id,
        ),
    )
    conn.commit()


def _keyword_text(conn: Any, keyword_id: str | None) -> str | None:
    if not keyword_id:
        return None
    row = conn.execute("SELECT keyword FROM keywords WHERE id = ?", (keyword_id,)).fetchone()
    return row[0] if row else None


def _row_to_article(row: tuple) -> Article:
    (
        article_id,
        project_id,
        keyword_id,
        title,
        content,
        meta_title,
        meta_description,
        featured_image_url,
        word_count,
        heading_count,
        paragraph_count,
        internal_links,
        external_links,
        keyword_density,
        seo_score,
        status,
        scheduled_for,
        published_at,
        created_at,
        updated_at,
    ) = row
    return Article(
        id=article_id,
        project_id=project_id,
        keyword_id=keyword_id,
        title=title,
        content=content,
        meta_title=meta_title,
        meta_description=meta_description,
        featured_image_url=featured_image_url,
        word_count=int(word_count or 0),
        heading_count=int(heading_count or 0),
        paragraph_count=int(paragraph_count or 0),
        internal_links=int(internal_links or 0),
        external_links=int(external_links or 0),
        keyword_density=float(keyword_density or 0),
        seo_score=int(seo_score or 0),
        status=ArticleStatus(status),
        scheduled_for=scheduled_for,
        published_at=published_at,
        created_at=created_at,
        updated_at=updated_at,
    )
