from __future__ import annotations

import logging
import threading
import time
import uuid
from typing import Any, Callable

from ..errors import AuthExpired, NotFound
from ..publishing.auth import OAuthAuth, TokenGrant, normalize_credentials
from ..security.secrets import decrypt_secret, encrypt_secret
from ..storage import release_lease, try_acquire_lease
from ..utils import json_dumps, json_loads, log_event, utc_now_iso

SECRET_FIELDS = ("access_token", "refresh_token", "password", "integration_key")

_REFRESH_LOCKS: dict[str, threading.Lock] = {}
_REFRESH_LOCKS_GUARD = threading.Lock()


class CredentialStore:
    """Encrypted per-integration credential maps.

    Writes use a compare-and-set on ``credentials_version`` so a refresh can
    never overwrite a newer token written by another worker.
    """

    def __init__(self, conn: Any, holder: str | None = None, lease_seconds: int = 30) -> None:
        self.conn = conn
        self.holder = holder or f"store-{uuid.uuid4().hex[:12]}"
        self.lease_seconds = lease_seconds
        self.logger = logging.getLogger("autoseo.credentials")

    def load(self, integration_id: str) -> tuple[dict[str, str], int]:
        row = self.conn.execute(
            """
            SELECT credentials_enc, credentials_version, integration_key
            FROM integrations
            WHERE id = ?
            """,
            (integration_id,),
        ).fetchone()
        if not row:
            raise NotFound(f"integration {integration_id} not found")
        blob, version, integration_key = row
        raw = json_loads(decrypt_secret(blob, _aad(integration_id)), {}) if blob else {}
        credentials = normalize_credentials(raw)
        if integration_key:
            credentials["integration_key"] = integration_key
        return credentials, int(version)

    def save(
        self,
        integration_id: str,
        credentials: dict[str, Any],
        expected_version: int | None = None,
    ) -> int | None:
        """Persist credentials; returns the new version, or None if ``expected_version`` lost."""
        payload = normalize_credentials(credentials)
        payload.pop("integration_key", None)
        key_id, blob = encrypt_secret(json_dumps(payload), _aad(integration_id))
        params: list[object] = [blob, key_id, utc_now_iso(), integration_id]
        version_clause = ""
        if expected_version is not None:
            version_clause = " AND credentials_version = ?"
            params.append(expected_version)
        cursor = self.conn.execute(
            f"""
            UPDATE integrations
            SET credentials_enc = ?, credentials_key_id = ?,
                credentials_version = credentials_version + 1, updated_at = ?
            WHERE id = ?{version_clause}
            """,
            tuple(params),
        )
        self.conn.commit()
        if cursor.rowcount != 1:
            if expected_version is None:
                raise NotFound(f"integration {integration_id} not found")
            return None
        row = self.conn.execute(
            "SELECT credentials_version FROM integrations WHERE id = ?", (integration_id,)
        ).fetchone()
        return int(row[0]) if row else None

    def refresh_oauth(
        self,
        integration_id: str,
        refresher: Callable[[str], TokenGrant],
        skew_seconds: int = 60,
    ) -> dict[str, str]:
        """Single-flight token refresh for one integration.

        Holds an in-process lock and a database lease while refreshing, and
        re-reads the credentials once both are held: if another worker already
        stored a fresh token it is returned without calling ``refresher``.
        """
        with _lock_for(integration_id):
            lease_name = f"oauth-refresh:{integration_id}"
            self._acquire_lease(lease_name)
            try:
                credentials, version = self.load(integration_id)
                access_token = credentials.get("access_token")
                if access_token:
                    current = OAuthAuth(
                        access_token=access_token,
                        refresh_token=credentials.get("refresh_token"),
                        expires_at=credentials.get("expires_at"),
                    )
                    if not current.is_expired(skew_seconds=skew_seconds):
                        return credentials
                refresh_token = credentials.get("refresh_token")
                if not refresh_token:
                    raise AuthExpired("access token expired and no refresh token is stored")
                grant = refresher(refresh_token)
                updated = dict(credentials)
                updated["access_token"] = grant.access_token
                if grant.refresh_token:
                    updated["refresh_token"] = grant.refresh_token
                updated["expires_at"] = grant.expires_at
                new_version = self.save(integration_id, updated, expected_version=version)
                if new_version is None:
                    log_event(
                        self.logger,
                        logging.WARNING,
                        "credentials_refresh_lost_race",
                        integration_id=integration_id,
                    )
                    credentials, _ = self.load(integration_id)
                    return credentials
                log_event(
                    self.logger,
                    logging.INFO,
                    "credentials_refreshed",
                    integration_id=integration_id,
                    version=new_version,
                    expires_at=grant.expires_at,
                )
                return updated
            finally:
                release_lease(self.conn, lease_name, self.holder)

    def _acquire_lease(self, lease_name: str) -> None:
        deadline = time.monotonic() + self.lease_seconds
        while True:
            if try_acquire_lease(self.conn, lease_name, self.holder, self.lease_seconds):
                return
            if time.monotonic() >= deadline:
                busy = AuthExpired("token refresh already in progress elsewhere")
                busy.retryable = True
                raise busy
            time.sleep(0.2)


def redact_credentials(credentials: dict[str, str]) -> dict[str, str]:
    redacted: dict[str, str] = {}
    for key, value in credentials.items():
        if key in SECRET_FIELDS:
            redacted[key] = f"...{value[-4:]}" if len(value) > 4 else "****"
        else:
            redacted[key] = value
    return redacted


def _lock_for(integration_id: str) -> threading.Lock:
    with _REFRESH_LOCKS_GUARD:
        lock = _REFRESH_LOCKS.get(integration_id)
        if lock is None:
            lock = threading.Lock()
            _REFRESH_LOCKS[integration_id] = lock
        return lock


def _aad(integration_id: str) -> bytes:
    return f"integration:{integration_id}".encode("utf-8")
