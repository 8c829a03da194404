"""Authentication strategies for platform adapters.

The strategy is decided once, when credentials are loaded, in priority order:
a platform-issued static key, then an OAuth access token, then basic
credentials. Each adapter declares which strategies it can speak.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Union

from ..errors import AuthExpired, TransportError, ValidationFailed
from ..utils import parse_iso, to_utc_iso, utc_now
from .http import Transport

STATIC_KEY = "static_key"
OAUTH = "oauth"
BASIC = "basic"

DEFAULT_TOKEN_TTL_SECONDS = 3600

_EPOCH_RE = re.compile(r"\d+(\.\d+)?")

_ALIASES = {
    "accessToken": "access_token",
    "refreshToken": "refresh_token",
    "expiresAt": "expires_at",
    "integrationKey": "integration_key",
    "siteUrl": "url",
    "site_url": "url",
    "blog_id": "blogId",
    "site_id": "siteId",
    "collection_id": "collectionId",
    "tokenUrl": "token_url",
}


@dataclass(frozen=True)
class StaticKeyAuth:
    key: str
    kind: str = STATIC_KEY


@dataclass(frozen=True)
class OAuthAuth:
    access_token: str
    refresh_token: str | None = None
    expires_at: str | None = None
    kind: str = OAUTH

    def is_expired(self, now: datetime | None = None, skew_seconds: int = 0) -> bool:
        if not self.expires_at:
            return False
        moment = now or utc_now()
        return parse_iso(self.expires_at) <= moment + timedelta(seconds=skew_seconds)


@dataclass(frozen=True)
class BasicAuth:
    username: str
    password: str
    kind: str = BASIC


Auth = Union[StaticKeyAuth, OAuthAuth, BasicAuth]


@dataclass(frozen=True)
class TokenGrant:
    access_token: str
    refresh_token: str | None
    expires_at: str


def normalize_credentials(raw: dict[str, Any] | None) -> dict[str, str]:
    normalized: dict[str, str] = {}
    for key, value in (raw or {}).items():
        if value is None:
            continue
        text = str(value).strip()
        if not text:
            continue
        normalized[_ALIASES.get(key, key)] = text
    if "expires_at" in normalized:
        normalized["expires_at"] = normalize_expiry(normalized["expires_at"])
    return normalized


def normalize_expiry(value: str) -> str:
    """Token expiry as a UTC ISO timestamp.

    Accepts ISO 8601 strings and numeric Unix epochs, in seconds or, above
    1e11, milliseconds.
    """
    text = value.strip()
    try:
        if _EPOCH_RE.fullmatch(text):
            seconds = float(text)
            if seconds >= 1e11:
                seconds /= 1000
            return datetime.fromtimestamp(seconds, tz=timezone.utc).isoformat()
        normalized = to_utc_iso(text)
    except (OverflowError, OSError, ValueError) as exc:
        raise ValidationFailed(f"expires_at is not a valid timestamp: {value!r}") from exc
    if not normalized:
        raise ValidationFailed("expires_at is empty")
    return normalized


def resolve_auth(credentials: dict[str, str], supported: tuple[str, ...]) -> Auth:
    if STATIC_KEY in supported and credentials.get("integration_key"):
        return StaticKeyAuth(key=credentials["integration_key"])
    if OAUTH in supported and credentials.get("access_token"):
        return OAuthAuth(
            access_token=credentials["access_token"],
            refresh_token=credentials.get("refresh_token"),
            expires_at=credentials.get("expires_at"),
        )
    if BASIC in supported and credentials.get("username") and credentials.get("password"):
        return BasicAuth(username=credentials["username"], password=credentials["password"])
    raise ValidationFailed(
        "no usable credentials for this platform",
        details={"supported": list(supported), "present": sorted(credentials)},
    )


def refresh_oauth_token(
    http: Transport,
    token_url: str,
    refresh_token: str,
    *,
    client_id: str | None = None,
    client_secret: str | None = None,
    timeout: float | None = None,
) -> TokenGrant:
    body: dict[str, str] = {"grant_type": "refresh_token", "refresh_token": refresh_token}
    if client_id:
        body["client_id"] = client_id
    if client_secret:
        body["client_secret"] = client_secret
    try:
        response = http.request("POST", token_url, json_body=body, timeout=timeout)
    except TransportError as exc:
        expired = AuthExpired(f"token refresh failed: {exc}")
        expired.retryable = True
        raise expired from exc
    payload = response.json()
    if not response.ok or not isinstance(payload, dict) or not payload.get("access_token"):
        raise AuthExpired(
            f"token refresh rejected with HTTP {response.status}",
            details={"body": response.body[:500]},
        )
    expires_in = int(payload.get("expires_in") or DEFAULT_TOKEN_TTL_SECONDS)
    expires_at = (utc_now() + timedelta(seconds=expires_in)).isoformat()
    return TokenGrant(
        access_token=str(payload["access_token"]),
        refresh_token=str(payload.get("refresh_token") or refresh_token),
        expires_at=expires_at,
    )
