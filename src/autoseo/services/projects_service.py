from __future__ import annotations

from typing import Any

from ..errors import NotFound, ValidationFailed
from ..models import Project
from ..utils import new_id, utc_now_iso

PROJECT_COLUMNS = "id, name, website_url, language, onboarding_complete, created_at, updated_at"


def create_project(conn: Any, payload: dict[str, Any]) -> Project:
    name = str(payload.get("name") or "").strip()
    if not name:
        raise ValidationFailed("name is required")
    project_id = str(payload.get("id") or new_id())
    website_url = str(payload.get("website_url") or "").strip() or None
    language = str(payload.get("language") or "en").strip()
    onboarding_complete = bool(payload.get("onboarding_complete", False))
    now = utc_now_iso()
    conn.execute(
        f"""
        INSERT INTO projects ({PROJECT_COLUMNS})
        VALUES (?, ?, ?, ?, ?, ?, ?)
        """,
        (project_id, name, website_url, language, 1 if onboarding_complete else 0, now, now),
    )
    conn.commit()
    return require_project(conn, project_id)


def get_project(conn: Any, project_id: str) -> Project | None:
    row = conn.execute(
        f"SELECT {PROJECT_COLUMNS} FROM projects WHERE id = ?", (project_id,)
    ).fetchone()
    return _row_to_project(row) if row else None


def require_project(conn: Any, project_id: str) -> Project:
    project = get_project(conn, project_id)
    if project is None:
        raise NotFound(f"project {project_id} not found")
    return project


def list_projects(conn: Any, onboarded_only: bool = False) -> list[Project]:
    where = "WHERE onboarding_complete = 1" if onboarded_only else ""
    cursor = conn.execute(f"SELECT {PROJECT_COLUMNS} FROM projects {where} ORDER BY created_at, id")
    return [_row_to_project(row) for row in cursor.fetchall()]


def update_project(conn: Any, project_id: str, payload: dict[str, Any]) -> Project:
    current = require_project(conn, project_id)
    name = str(payload.get("name") or current.name).strip()
    website_url = payload.get("website_url", current.website_url)
    language = str(payload.get("language") or current.language).strip()
    onboarding_complete = bool(payload.get("onboarding_complete", current.onboarding_complete))
    conn.execute(
        """
        UPDATE projects
        SET name = ?, website_url = ?, language = ?, onboarding_complete = ?, updated_at = ?
        WHERE id = ?
        """,
        (
            name,
            str(website_url).strip() or None if website_url else None,
            language,
            1 if onboarding_complete else 0,
            utc_now_iso(),
            project_id,
        ),
    )
    conn.commit()
    return require_project(conn, project_id)


def complete_onboarding(conn: Any, project_id: str) -> Project:
    return update_project(conn, project_id, {"onboarding_complete": True})


def delete_project(conn: Any, project_id: str) -> None:
    require_project(conn, project_id)
    with conn.transaction():
        conn.execute(
            """
            DELETE FROM publish_attempts
            WHERE article_id IN (SELECT id FROM articles WHERE project_id = ?)
            """,
            (project_id,),
        )
        conn.execute("DELETE FROM analytics_snapshots WHERE project_id = ?", (project_id,))
        conn.execute("DELETE FROM articles WHERE project_id = ?", (project_id,))
        conn.execute("DELETE FROM keywords WHERE project_id = ?", (project_id,))
        conn.execute("DELETE FROM integrations WHERE project_id = ?", (project_id,))
        conn.execute("DELETE FROM projects WHERE id = ?", (project_id,))


def _row_to_project(row: tuple) -> Project:
    project_id, name, website_url, language, onboarding_complete, created_at, updated_at = row
    return Project(
        id=project_id,
        name=name,
        website_url=website_url,
        language=language,
        onboarding_complete=bool(onboarding_complete),
        created_at=created_at,
        updated_at=updated_at,
    )
