from __future__ import annotations

import logging
from datetime import datetime, time, timedelta, timezone
from typing import Any

from ..errors import AlreadyUsed, NotFound, ValidationFailed
from ..models import Keyword, KeywordStatus
from ..state import TransitionResult, apply_keyword_transition
from ..utils import log_event, new_id, parse_iso, utc_now, utc_now_iso
from .projects_service import require_project

KEYWORD_COLUMNS = (
    "id, project_id, keyword, search_volume, difficulty, status, planned_date, "
    "created_at, updated_at"
)
PLAN_HOUR_UTC = 9

logger = logging.getLogger("autoseo.keywords")


def create_keyword(conn: Any, project_id: str, payload: dict[str, Any]) -> Keyword:
    require_project(conn, project_id)
    text = " ".join(str(payload.get("keyword") or "").split())
    if not text:
        raise ValidationFailed("keyword is required")
    if find_keyword_by_text(conn, project_id, text) is not None:
        raise ValidationFailed(f"keyword {text!r} already exists in this project")
    keyword_id = new_id()
    now = utc_now_iso()
    conn.execute(
        f"""
        INSERT INTO keywords ({KEYWORD_COLUMNS})
        VALUES (?, ?, ?, ?, ?, ?, NULL, ?, ?)
        """,
        (
            keyword_id,
            project_id,
            text,
            _optional_int(payload.get("search_volume")),
            _optional_int(payload.get("difficulty")),
            KeywordStatus.UNPLANNED.value,
            now,
            now,
        ),
    )
    conn.commit()
    if payload.get("planned_date"):
        plan_keyword(conn, keyword_id, payload["planned_date"], project_id=project_id)
    return require_keyword(conn, keyword_id)


def get_keyword(conn: Any, keyword_id: str) -> Keyword | None:
    row = conn.execute(
        f"SELECT {KEYWORD_COLUMNS} FROM keywords WHERE id = ?", (keyword_id,)
    ).fetchone()
    return _row_to_keyword(row) if row else None


def require_keyword(conn: Any, keyword_id: str, project_id: str | None = None) -> Keyword:
    keyword = get_keyword(conn, keyword_id)
    if keyword is None or (project_id and keyword.project_id != project_id):
        raise NotFound(f"keyword {keyword_id} not found")
    return keyword


def find_keyword_by_text(conn: Any, project_id: str, text: str) -> Keyword | None:
    row = conn.execute(
        f"SELECT {KEYWORD_COLUMNS} FROM keywords WHERE project_id = ? AND keyword = ?",
        (project_id, text),
    ).fetchone()
    return _row_to_keyword(row) if row else None


def list_keywords(
    conn: Any, project_id: str, status: KeywordStatus | str | None = None
) -> list[Keyword]:
    sql = f"SELECT {KEYWORD_COLUMNS} FROM keywords WHERE project_id = ?"
    params: list[object] = [project_id]
    if status:
        sql += " AND status = ?"
        params.append(KeywordStatus(status).value)
    sql += " ORDER BY COALESCE(planned_date, created_at), created_at"
    return [_row_to_keyword(row) for row in conn.execute(sql, tuple(params)).fetchall()]


def next_due_keyword(conn: Any, project_id: str, now: str | None = None) -> Keyword | None:
    """Earliest planned keyword whose planned date has arrived."""
    row = conn.execute(
        f"""
        SELECT {KEYWORD_COLUMNS}
        FROM keywords
        WHERE project_id = ? AND status = ? AND planned_date IS NOT NULL AND planned_date <= ?
        ORDER BY planned_date, created_at
        LIMIT 1
        """,
        (project_id, KeywordStatus.PLANNED.value, now or utc_now_iso()),
    ).fetchone()
    return _row_to_keyword(row) if row else None


def plan_keyword(
    conn: Any,
    keyword_id: str,
    planned_date: datetime | str,
    project_id: str | None = None,
) -> TransitionResult:
    result = apply_keyword_transition(
        conn, keyword_id, KeywordStatus.PLANNED, planned_date, project_id=project_id
    )
    if result.reason == "keyword_used":
        raise AlreadyUsed(f"keyword {keyword_id} has already been used")
    return result


def generate_plan(
    conn: Any,
    project_id: str,
    keyword_ids: list[str] | None = None,
    start: datetime | str | None = None,
    replace_existing: bool = False,
) -> list[Keyword]:
    """Assign one keyword per day at 09:00 UTC, starting from ``start``.

    Only unplanned keywords are taken unless ``replace_existing`` is set, in
    which case already planned ones are re-dated as well. Used keywords are
    never touched.
    """
    require_project(conn, project_id)
    first_day = _plan_start(start)
    if keyword_ids:
        candidates = [require_keyword(conn, keyword_id, project_id) for keyword_id in keyword_ids]
    else:
        candidates = list_keywords(conn, project_id)
    planned_ids: list[str] = []
    day = 0
    with conn.transaction():
        for keyword in candidates:
            if keyword.status is KeywordStatus.USED:
                continue
            if keyword.status is KeywordStatus.PLANNED and not replace_existing:
                continue
            when = (first_day + timedelta(days=day)).isoformat()
            cursor = conn.execute(
                """
                UPDATE keywords
                SET status = ?, planned_date = ?, updated_at = ?
                WHERE id = ? AND status = ?
                """,
                (
                    KeywordStatus.PLANNED.value,
                    when,
                    utc_now_iso(),
                    keyword.id,
                    keyword.status.value,
                ),
            )
            if cursor.rowcount == 1:
                day += 1
                planned_ids.append(keyword.id)
    log_event(
        logger,
        logging.INFO,
        "keyword_plan_generated",
        project_id=project_id,
        planned=len(planned_ids),
        start=first_day.isoformat(),
    )
    return [require_keyword(conn, keyword_id) for keyword_id in planned_ids]


def delete_keyword(conn: Any, keyword_id: str, project_id: str | None = None) -> None:
    require_keyword(conn, keyword_id, project_id)
    conn.execute("DELETE FROM keywords WHERE id = ?", (keyword_id,))
    conn.commit()


def keyword_to_dict(keyword: Keyword) -> dict[str, Any]:
    return {
        "id": keyword.id,
        "project_id": keyword.project_id,
        "keyword": keyword.keyword,
        "search_volume": keyword.search_volume,
        "difficulty": keyword.difficulty,
        "status": keyword.status.value,
        "planned_date": keyword.planned_date,
        "created_at": keyword.created_at,
        "updated_at": keyword.updated_at,
    }


def _plan_start(start: datetime | str | None) -> datetime:
    if start is None:
        moment = utc_now()
        day = moment.date()
        if moment.hour >= PLAN_HOUR_UTC:
            day += timedelta(days=1)
    else:
        moment = parse_iso(start) if isinstance(start, str) else start
        if moment.tzinfo is None:
            moment = moment.replace(tzinfo=timezone.utc)
        day = moment.astimezone(timezone.utc).date()
    return datetime.combine(day, time(PLAN_HOUR_UTC), tzinfo=timezone.utc)


def _optional_int(value: Any) -> int | None:
    if value is None or value == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise ValidationFailed(f"expected an integer, got {value!r}") from exc


def _row_to_keyword(row: tuple) -> Keyword:
    (
        keyword_id,
        project_id,
        text,
        search_volume,
        difficulty,
        status,
        planned_date,
        created_at,
        updated_at,
    ) = row
    return Keyword(
        id=keyword_id,
        project_id=project_id,
        keyword=text,
        search_volume=search_volume,
        difficulty=difficulty,
        status=KeywordStatus(status),
        planned_date=planned_date,
        created_at=created_at,
        updated_at=updated_at,
    )
