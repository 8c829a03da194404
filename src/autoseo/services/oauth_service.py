from __future__ import annotations

import hmac
import logging
import secrets
from datetime import timedelta
from typing import Any

from ..errors import AuthExpired, ValidationFailed
from ..models import Platform
from ..utils import log_event, utc_now
from .credential_store import CredentialStore
from .integrations_service import list_integrations_by_platform

TOKEN_TTL_SECONDS = 3600

logger = logging.getLogger("autoseo.oauth")


def refresh_grant(conn: Any, refresh_token: str) -> dict[str, Any]:
    """Rotate the tokens of the active WordPress integration holding ``refresh_token``.

    This is the token endpoint the companion plugin calls; both tokens are
    replaced so a refresh token works only once.
    """
    refresh_token = (refresh_token or "").strip()
    if not refresh_token:
        raise ValidationFailed("refresh_token is required")
    store = CredentialStore(conn)
    for integration in list_integrations_by_platform(conn, Platform.WORDPRESS, active_only=True):
        credentials, version = store.load(integration.id)
        stored = credentials.get("refresh_token") or ""
        if not stored or not hmac.compare_digest(stored, refresh_token):
            continue
        access_token = secrets.token_hex(32)
        new_refresh_token = secrets.token_hex(32)
        updated = dict(credentials)
        updated["access_token"] = access_token
        updated["refresh_token"] = new_refresh_token
        updated["expires_at"] = (utc_now() + timedelta(seconds=TOKEN_TTL_SECONDS)).isoformat()
        if store.save(integration.id, updated, expected_version=version) is None:
            raise AuthExpired("refresh token was already used")
        log_event(logger, logging.INFO, "oauth_tokens_rotated", integration_id=integration.id)
        return {
            "access_token": access_token,
            "refresh_token": new_refresh_token,
            "token_type": "Bearer",
            "expires_in": TOKEN_TTL_SECONDS,
        }
    log_event(logger, logging.WARNING, "oauth_refresh_rejected")
    raise AuthExpired("invalid refresh token")
