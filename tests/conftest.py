"""
Test configuration and fixtures for the SEO Signal Hub API.

Provider keys are cleared before the app is imported so that no test reaches a
real third-party API, and the renderer is disabled so no browser is started.
"""

import os
from typing import Callable, Dict, Generator

import httpx
import pytest
from fastapi.testclient import TestClient

for _key in (
    "PSI_API_KEY",
    "OPENPAGERANK_API_KEY",
    "SERPER_API_KEY",
    "DATAFORSEO_LOGIN",
    "DATAFORSEO_PASSWORD",
    "RAPIDAPI_KEY",
    "PERPLEXITY_API_KEY",
):
    os.environ[_key] = ""
os.environ["RENDER_ENABLED"] = "false"
os.environ["LOG_TO_FILE"] = "false"


@pytest.fixture(scope="session")
def test_app():
    """Create FastAPI test application."""
    from app.main import app

    return app


@pytest.fixture(scope="function")
def client(test_app) -> Generator[TestClient, None, None]:
    """
    Create a test client for making HTTP requests.
    Dependency overrides are cleared after every test.
    """
    with TestClient(test_app) as test_client:
        yield test_client
    test_app.dependency_overrides.clear()


class FakeClock:
    """Manually advanced replacement for ``time.time``."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


def route_handler(routes: Dict[str, object]) -> Callable[[httpx.Request], httpx.Response]:
    """
    Build a MockTransport handler from ``{url: body}``.

    ``body`` may be a string (served as text/html or XML), a dict (JSON), or
    an ``httpx.Response``. Unknown URLs get a 404.
    """

    def handler(request: httpx.Request) -> httpx.Response:
        url = str(request.url.copy_with(query=None))
        body = routes.get(str(request.url), routes.get(url))
        if body is None:
            return httpx.Response(404, text="not found")
        if isinstance(body, httpx.Response):
            return body
        if isinstance(body, dict):
            return httpx.Response(200, json=body)
        content_type = "application/xml" if url.endswith(".xml") else "text/html; charset=utf-8"
        return httpx.Response(200, text=body, headers={"content-type": content_type})

    return handler


@pytest.fixture
def mock_http():
    """Factory for an ``httpx.AsyncClient`` served from a routing table."""
    clients = []

    def _make(routes: Dict[str, object]) -> httpx.AsyncClient:
        c = httpx.AsyncClient(transport=httpx.MockTransport(route_handler(routes)), follow_redirects=True)
        clients.append(c)
        return c

    return _make
