from __future__ import annotations

import logging
import re
import secrets
from typing import Any

from ..errors import NoIntegrationConfigured, NotFound, ValidationFailed
from ..models import Integration, Platform, ResolutionHint
from ..publishing.auth import normalize_credentials
from ..utils import log_event, new_id, utc_now_iso
from .credential_store import CredentialStore, redact_credentials
from .projects_service import require_project

INTEGRATION_KEY_PREFIX = "rk_"
INTEGRATION_KEY_PATTERN = re.compile(r"^rk_[0-9a-f]{48}$")

INTEGRATION_COLUMNS = (
    "id, project_id, platform, is_active, integration_key, credentials_version, "
    "created_at, updated_at"
)

logger = logging.getLogger("autoseo.integrations")


def generate_integration_key() -> str:
    return INTEGRATION_KEY_PREFIX + secrets.token_hex(24)


def create_or_update_integration(
    conn: Any,
    project_id: str,
    platform: Platform | str,
    credentials: dict[str, Any] | None = None,
    is_active: bool = True,
) -> Integration:
    """Upsert the project's integration for ``platform``.

    New integrations get a fresh integration key. Existing ones keep theirs;
    when ``credentials`` is given they replace the stored map.
    """
    require_project(conn, project_id)
    platform = Platform.parse(platform)
    if credentials is not None:
        normalize_credentials(credentials)
    existing = _find_by_platform(conn, project_id, platform)
    now = utc_now_iso()
    if existing is None:
        integration_id = new_id()
        conn.execute(
            """
            INSERT INTO integrations
                (id, project_id, platform, credentials_enc, credentials_key_id,
                 credentials_version, is_active, integration_key, created_at, updated_at)
            VALUES (?, ?, ?, NULL, NULL, 0, ?, ?, ?, ?)
            """,
            (
                integration_id,
                project_id,
                platform.value,
                1 if is_active else 0,
                generate_integration_key(),
                now,
                now,
            ),
        )
        conn.commit()
        log_event(
            logger,
            logging.INFO,
            "integration_created",
            integration_id=integration_id,
            project_id=project_id,
            platform=platform.value,
        )
    else:
        integration_id = existing.id
        conn.execute(
            "UPDATE integrations SET is_active = ?, updated_at = ? WHERE id = ?",
            (1 if is_active else 0, now, integration_id),
        )
        conn.commit()
    if credentials is not None:
        CredentialStore(conn).save(integration_id, credentials)
    return require_integration(conn, integration_id)


def get_integration(conn: Any, integration_id: str) -> Integration | None:
    row = conn.execute(
        f"SELECT {INTEGRATION_COLUMNS} FROM integrations WHERE id = ?", (integration_id,)
    ).fetchone()
    return _row_to_integration(row) if row else None


def require_integration(conn: Any, integration_id: str, project_id: str | None = None) -> Integration:
    integration = get_integration(conn, integration_id)
    if integration is None or (project_id and integration.project_id != project_id):
        raise NotFound(f"integration {integration_id} not found")
    return integration


def list_integrations(
    conn: Any, project_id: str, active_only: bool = False
) -> list[Integration]:
    sql = f"SELECT {INTEGRATION_COLUMNS} FROM integrations WHERE project_id = ?"
    if active_only:
        sql += " AND is_active = 1"
    sql += " ORDER BY created_at, id"
    return [_row_to_integration(row) for row in conn.execute(sql, (project_id,)).fetchall()]


def list_integrations_by_platform(
    conn: Any, platform: Platform | str, active_only: bool = False
) -> list[Integration]:
    sql = f"SELECT {INTEGRATION_COLUMNS} FROM integrations WHERE platform = ?"
    if active_only:
        sql += " AND is_active = 1"
    sql += " ORDER BY created_at, id"
    params = (Platform.parse(platform).value,)
    return [_row_to_integration(row) for row in conn.execute(sql, params).fetchall()]


def set_integration_active(conn: Any, integration_id: str, is_active: bool) -> Integration:
    require_integration(conn, integration_id)
    conn.execute(
        "UPDATE integrations SET is_active = ?, updated_at = ? WHERE id = ?",
        (1 if is_active else 0, utc_now_iso(), integration_id),
    )
    conn.commit()
    return require_integration(conn, integration_id)


def delete_integration(conn: Any, integration_id: str, project_id: str | None = None) -> None:
    require_integration(conn, integration_id, project_id)
    with conn.transaction():
        conn.execute("DELETE FROM publish_attempts WHERE integration_id = ?", (integration_id,))
        conn.execute("DELETE FROM integrations WHERE id = ?", (integration_id,))
    log_event(logger, logging.INFO, "integration_deleted", integration_id=integration_id)


def regenerate_integration_key(conn: Any, integration_id: str) -> str:
    require_integration(conn, integration_id)
    key = generate_integration_key()
    conn.execute(
        "UPDATE integrations SET integration_key = ?, updated_at = ? WHERE id = ?",
        (key, utc_now_iso(), integration_id),
    )
    conn.commit()
    log_event(logger, logging.INFO, "integration_key_regenerated", integration_id=integration_id)
    return key


def validate_integration_key(conn: Any, key: str) -> Integration:
    """Return the active integration owning ``key``; raises ``NotFound`` otherwise."""
    key = (key or "").strip()
    if not INTEGRATION_KEY_PATTERN.match(key):
        raise ValidationFailed("malformed integration key")
    row = conn.execute(
        f"""
        SELECT {INTEGRATION_COLUMNS}
        FROM integrations
        WHERE integration_key = ? AND is_active = 1
        """,
        (key,),
    ).fetchone()
    if not row:
        raise NotFound("integration key not recognised")
    return _row_to_integration(row)


def resolve_integration(
    conn: Any, project_id: str, hint: ResolutionHint | None = None
) -> Integration:
    """Pick the integration a publish should go to.

    An explicit id wins even when inactive (the caller reports that rather
    than silently falling back); then an explicit platform among active
    integrations; then the oldest active integration of the project.
    """
    hint = hint or ResolutionHint()
    if hint.integration_id:
        return require_integration(conn, hint.integration_id, project_id)
    active = list_integrations(conn, project_id, active_only=True)
    if hint.platform:
        platform = Platform.parse(hint.platform)
        for integration in active:
            if integration.platform is platform:
                return integration
        raise NoIntegrationConfigured(
            f"no active {platform.value} integration for project {project_id}"
        )
    if active:
        return active[0]
    raise NoIntegrationConfigured(f"no active integration for project {project_id}")


def integration_to_dict(
    integration: Integration, credentials: dict[str, str] | None = None
) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "id": integration.id,
        "project_id": integration.project_id,
        "platform": integration.platform.value,
        "is_active": integration.is_active,
        "integration_key": integration.integration_key,
        "credentials_version": integration.credentials_version,
        "created_at": integration.created_at,
        "updated_at": integration.updated_at,
    }
    if credentials is not None:
        shown = dict(credentials)
        shown.pop("integration_key", None)
        payload["credentials"] = redact_credentials(shown)
    return payload


def _find_by_platform(conn: Any, project_id: str, platform: Platform) -> Integration | None:
    row = conn.execute(
        f"SELECT {INTEGRATION_COLUMNS} FROM integrations WHERE project_id = ? AND platform = ?",
        (project_id, platform.value),
    ).fetchone()
    return _row_to_integration(row) if row else None


def _row_to_integration(row: tuple) -> Integration:
    (
        integration_id,
        project_id,
        platform,
        is_active,
        integration_key,
        credentials_version,
        created_at,
        updated_at,
    ) = row
    return Integration(
        id=integration_id,
        project_id=project_id,
        platform=Platform.parse(platform),
        is_active=bool(is_active),
        integration_key=integration_key,
        credentials_version=int(credentials_version or 0),
        created_at=created_at,
        updated_at=updated_at,
    )
