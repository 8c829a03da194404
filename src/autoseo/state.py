"""Keyword and article lifecycles.

Keywords move ``unplanned -> planned -> used`` (or straight to ``used``) and
never leave ``used``; a planned keyword can be re-dated. Articles move
``draft -> scheduled -> published`` (or ``draft -> published``) and never
leave ``published``. ``published_at`` is set exactly when an article is
published; ``scheduled_for`` only while it is scheduled.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any

from .errors import InvalidTransition, NotFound, ValidationFailed
from .models import ArticleStatus, KeywordStatus
from .utils import to_utc_iso, utc_now_iso

KEYWORD_TRANSITIONS: dict[KeywordStatus, frozenset[KeywordStatus]] = {
    KeywordStatus.UNPLANNED: frozenset({KeywordStatus.PLANNED, KeywordStatus.USED}),
    KeywordStatus.PLANNED: frozenset({KeywordStatus.USED}),
    KeywordStatus.USED: frozenset(),
}

ARTICLE_TRANSITIONS: dict[ArticleStatus, frozenset[ArticleStatus]] = {
    ArticleStatus.DRAFT: frozenset({ArticleStatus.SCHEDULED, ArticleStatus.PUBLISHED}),
    ArticleStatus.SCHEDULED: frozenset({ArticleStatus.PUBLISHED}),
    ArticleStatus.PUBLISHED: frozenset(),
}

INITIATED_BY_USER = "user"
INITIATED_BY_SYSTEM = "system"


@dataclass(frozen=True)
class TransitionResult:
    applied: bool
    from_status: KeywordStatus
    to_status: KeywordStatus
    planned_date: str | None
    reason: str | None = None


@dataclass(frozen=True)
class ArticleStateChange:
    applied: bool
    from_status: ArticleStatus
    to_status: ArticleStatus
    scheduled_for: str | None
    published_at: str | None
    reason: str | None = None


def check_keyword_transition(
    current: KeywordStatus | str,
    target: KeywordStatus | str,
    planned_date: datetime | str | None = None,
    current_planned_date: str | None = None,
) -> TransitionResult:
    current = _keyword_status(current)
    target = _keyword_status(target)
    if current is KeywordStatus.USED:
        return TransitionResult(False, current, current, current_planned_date, "keyword_used")
    if current is target:
        if current is KeywordStatus.PLANNED and planned_date:
            return TransitionResult(False, current, target, to_utc_iso(planned_date), "replanned")
        return TransitionResult(False, current, target, current_planned_date, "unchanged")
    if target not in KEYWORD_TRANSITIONS[current]:
        raise InvalidTransition(f"keyword cannot move from {current.value} to {target.value}")
    if target is KeywordStatus.PLANNED:
        normalized = to_utc_iso(planned_date)
        if not normalized:
            raise ValidationFailed("planned_date is required to plan a keyword")
        return TransitionResult(True, current, target, normalized)
    return TransitionResult(True, current, target, current_planned_date)


def check_article_transition(
    current: ArticleStatus | str,
    target: ArticleStatus | str,
    *,
    current_scheduled_for: str | None = None,
    current_published_at: str | None = None,
    scheduled_for: datetime | str | None = None,
    published_at: datetime | str | None = None,
) -> ArticleStateChange:
    current = _article_status(current)
    target = _article_status(target)
    if current is target:
        if current is ArticleStatus.SCHEDULED and scheduled_for:
            return ArticleStateChange(
                False, current, target, to_utc_iso(scheduled_for), None, "rescheduled"
            )
        return ArticleStateChange(
            False, current, target, current_scheduled_for, current_published_at, "unchanged"
        )
    if target not in ARTICLE_TRANSITIONS[current]:
        raise InvalidTransition(f"article cannot move from {current.value} to {target.value}")
    if target is ArticleStatus.SCHEDULED:
        normalized = to_utc_iso(scheduled_for)
        if not normalized:
            raise ValidationFailed("scheduled_for is required to schedule an article")
        return ArticleStateChange(True, current, target, normalized, None)
    return ArticleStateChange(
        True, current, target, None, to_utc_iso(published_at) or utc_now_iso()
    )


def should_auto_publish(
    from_status: ArticleStatus | str, to_status: ArticleStatus | str, initiated_by: str
) -> bool:
    if initiated_by != INITIATED_BY_USER:
        return False
    return _article_status(to_status) is ArticleStatus.PUBLISHED and _article_status(
        from_status
    ) in (ArticleStatus.DRAFT, ArticleStatus.SCHEDULED)


def apply_keyword_transition(
    conn: Any,
    keyword_id: str,
    target: KeywordStatus | str,
    planned_date: datetime | str | None = None,
    project_id: str | None = None,
) -> TransitionResult:
    """Persist a keyword transition with a compare-and-set on the current status."""
    for _ in range(3):
        row = conn.execute(
            "SELECT project_id, status, planned_date FROM keywords WHERE id = ?",
            (keyword_id,),
        ).fetchone()
        if not row or (project_id and row[0] != project_id):
            raise NotFound(f"keyword {keyword_id} not found")
        result = check_keyword_transition(row[1], target, planned_date, row[2])
        if not result.applied and result.reason != "replanned":
            return result
        cursor = conn.execute(
            """
            UPDATE keywords
            SET status = ?, planned_date = ?, updated_at = ?
            WHERE id = ? AND status = ?
            """,
            (
                result.to_status.value,
                result.planned_date,
                utc_now_iso(),
                keyword_id,
                result.from_status.value,
            ),
        )
        conn.commit()
        if cursor.rowcount == 1:
            return result
    raise InvalidTransition(f"keyword {keyword_id} changed concurrently")


def apply_article_transition(
    conn: Any,
    article_id: str,
    target: ArticleStatus | str,
    *,
    scheduled_for: datetime | str | None = None,
    published_at: datetime | str | None = None,
    project_id: str | None = None,
) -> ArticleStateChange:
    for _ in range(3):
        row = conn.execute(
            "SELECT project_id, status, scheduled_for, published_at FROM articles WHERE id = ?",
            (article_id,),
        ).fetchone()
        if not row or (project_id and row[0] != project_id):
            raise NotFound(f"article {article_id} not found")
        change = check_article_transition(
            row[1],
            target,
            current_scheduled_for=row[2],
            current_published_at=row[3],
            scheduled_for=scheduled_for,
            published_at=published_at,
        )
        if not change.applied and change.reason != "rescheduled":
            return change
        cursor = conn.execute(
            """
            UPDATE articles
            SET status = ?, scheduled_for = ?, published_at = ?, updated_at = ?
            WHERE id = ? AND status = ?
            """,
            (
                change.to_status.value,
                change.scheduled_for,
                change.published_at,
                utc_now_iso(),
                article_id,
                change.from_status.value,
            ),
        )
        conn.commit()
        if cursor.rowcount == 1:
            return change
    raise InvalidTransition(f"article {article_id} changed concurrently")


def _keyword_status(value: KeywordStatus | str) -> KeywordStatus:
    try:
        return KeywordStatus(value)
    except ValueError as exc:
        raise ValidationFailed(f"unknown keyword status {value!r}") from exc


def _article_status(value: ArticleStatus | str) -> ArticleStatus:
    try:
        return ArticleStatus(value)
    except ValueError as exc:
        raise ValidationFailed(f"unknown article status {value!r}") from exc
