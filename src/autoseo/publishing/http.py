from __future__ import annotations

import base64
import json
import socket
import urllib.error
import urllib.parse
import urllib.request
from dataclasses import dataclass, field
from typing import Any, Protocol

from ..errors import TransportError


@dataclass(frozen=True)
class HttpResponse:
    status: int
    body: str
    headers: dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    def json(self) -> Any:
        if not self.body:
            return None
        try:
            return json.loads(self.body)
        except json.JSONDecodeError:
            return None


class Transport(Protocol):
    def request(
        self,
        method: str,
        url: str,
        *,
        headers: dict[str, str] | None = None,
        json_body: Any = None,
        timeout: float | None = None,
    ) -> HttpResponse: ...


class HttpClient:
    """Blocking JSON-over-HTTP client built on urllib.

    Non-2xx responses are returned, not raised; network failures and timeouts
    raise ``TransportError`` because the remote outcome is unknown.
    """

    def __init__(self, user_agent: str = "AutoSEO/0.1", timeout: float = 30) -> None:
        self.user_agent = user_agent
        self.timeout = timeout

    def request(
        self,
        method: str,
        url: str,
        *,
        headers: dict[str, str] | None = None,
        json_body: Any = None,
        timeout: float | None = None,
    ) -> HttpResponse:
        data = json.dumps(json_body).encode("utf-8") if json_body is not None else None
        request = urllib.request.Request(url, data=data, method=method.upper())
        request.add_header("Accept", "application/json")
        request.add_header("User-Agent", self.user_agent)
        if data is not None:
            request.add_header("Content-Type", "application/json")
        for key, value in (headers or {}).items():
            request.add_header(key, value)
        try:
            with urllib.request.urlopen(request, timeout=timeout or self.timeout) as response:
                raw = response.read().decode("utf-8", errors="replace")
                return HttpResponse(
                    status=response.status, body=raw, headers=dict(response.headers.items())
                )
        except urllib.error.HTTPError as exc:
            raw = exc.read().decode("utf-8", errors="replace")
            headers = dict(exc.headers.items()) if exc.headers else {}
            return HttpResponse(status=exc.code, body=raw, headers=headers)
        except (urllib.error.URLError, socket.timeout, TimeoutError, ConnectionError) as exc:
            raise TransportError(f"network_error: {exc}") from exc


def basic_auth_header(username: str, password: str) -> str:
    token = base64.b64encode(f"{username}:{password}".encode("utf-8")).decode("ascii")
    return f"Basic {token}"


def join_url(base: str, path: str) -> str:
    return base.rstrip("/") + path


def with_query(url: str, **params: object) -> str:
    query = urllib.parse.urlencode({key: value for key, value in params.items() if value is not None})
    return f"{url}?{query}" if query else url


def error_message(response: HttpResponse) -> str:
    payload = response.json()
    if isinstance(payload, dict):
        for key in ("message", "error_description", "error", "errors", "msg"):
            value = payload.get(key)
            if value:
                return value if isinstance(value, str) else json.dumps(value)
    return response.body[:500] or f"HTTP {response.status}"
