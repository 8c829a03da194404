from __future__ import annotations

import base64
import json
import threading
from dataclasses import dataclass, field
from typing import Any

import pytest

from autoseo.config import default_config
from autoseo.errors import TransportError
from autoseo.publishing.http import HttpResponse
from autoseo.publishing.registry import build_default_registry
from autoseo.services.generation import GeneratedArticle, GenerationRequest
from autoseo.services.integrations_service import create_or_update_integration
from autoseo.services.projects_service import create_project
from autoseo.storage import init_db


@dataclass
class Call:
    method: str
    url: str
    headers: dict[str, str]
    body: Any


@dataclass
class Route:
    method: str
    fragment: str
    status: int = 200
    body: Any = None
    error: Exception | None = None
    remaining: int = -1
    hold: threading.Event | None = None


class FakeTransport:
    """Records requests and answers them from routes matched by method and URL fragment."""

    def __init__(self) -> None:
        self.calls: list[Call] = []
        self.routes: list[Route] = []
        self.held = threading.Event()

    def add(
        self,
        method: str,
        fragment: str,
        body: Any = None,
        *,
        status: int = 200,
        error: Exception | None = None,
        times: int = -1,
        hold: threading.Event | None = None,
    ) -> None:
        """Add a route. With ``hold`` the request blocks until that event is set."""
        self.routes.append(Route(method, fragment, status, body, error, times, hold))

    def request(
        self,
        method: str,
        url: str,
        *,
        headers: dict[str, str] | None = None,
        json_body: Any = None,
        timeout: float | None = None,
    ) -> HttpResponse:
        self.calls.append(Call(method, url, dict(headers or {}), json_body))
        for route in self.routes:
            if route.method != method or route.fragment not in url or route.remaining == 0:
                continue
            if route.remaining > 0:
                route.remaining -= 1
            if route.hold is not None:
                self.held.set()
                route.hold.wait(5)
            if route.error is not None:
                raise route.error
            raw = route.body if isinstance(route.body, str) else json.dumps(route.body)
            return HttpResponse(status=route.status, body=raw if route.body is not None else "")
        return HttpResponse(status=404, body=json.dumps({"message": f"no route for {method} {url}"}))

    def matching(self, method: str, fragment: str) -> list[Call]:
        return [call for call in self.calls if call.method == method and fragment in call.url]


@dataclass
class FakeGenerator:
    title: str = "The Best CRM Tools"
    fail_with: Exception | None = None
    requests: list[GenerationRequest] = field(default_factory=list)

    def generate(self, request: GenerationRequest) -> GeneratedArticle:
        self.requests.append(request)
        if self.fail_with is not None:
            raise self.fail_with
        content = (
            f"# {self.title}\n\n"
            f"Choosing the right {request.keyword} matters for growing teams.\n\n"
            "## Why it matters\n\n"
            f"A good {request.keyword} keeps every customer conversation in one place.\n\n"
            "See our [pricing guide](/pricing) for details.\n"
        )
        return GeneratedArticle(
            title=self.title,
            content=content,
            meta_title=f"{self.title} for 2026",
            meta_description=f"Compare {request.keyword} options.",
            headings=["Why it matters"],
        )


@pytest.fixture(autouse=True)
def master_key(monkeypatch):
    key = base64.urlsafe_b64encode(b"a" * 32).decode("utf-8")
    monkeypatch.setenv("AUTOSEO_MASTER_KEY", key)
    monkeypatch.setenv("AUTOSEO_KEY_ID", "v1")
    monkeypatch.delenv("AUTOSEO_DB_URL", raising=False)
    monkeypatch.delenv("AUTOSEO_ADMIN_TOKEN", raising=False)


@pytest.fixture
def db_path(tmp_path, monkeypatch):
    data_dir = tmp_path / "data"
    monkeypatch.setenv("AUTOSEO_DATA_DIR", str(data_dir))
    return str(data_dir / "state.sqlite3")


@pytest.fixture
def conn(db_path):
    conn = init_db(db_path)
    yield conn
    conn.close()


@pytest.fixture
def config():
    return default_config()


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def registry(config, transport):
    return build_default_registry(config.publishing, transport)


@pytest.fixture
def generator():
    return FakeGenerator()


@pytest.fixture
def project(conn):
    return create_project(
        conn,
        {"name": "Acme", "website_url": "https://acme.test", "onboarding_complete": True},
    )


@pytest.fixture
def wordpress(conn, project):
    return create_or_update_integration(
        conn, project.id, "wordpress", {"url": "https://blog.acme.test"}
    )


@pytest.fixture
def timeout_error():
    return TransportError("network_error: timed out")
