"""
Test Configuration and Fixtures

Central configuration for pytest including:
- A controllable clock for the security store
- In-memory storage and a loaded SecurityStore
- A scripted remote rental API (httpx.MockTransport)
- A portal TestClient wired to both

Usage:
    All fixtures defined here are automatically available to all tests.
"""

import json
import os
import sys
from datetime import datetime, timedelta, timezone

import httpx
import pytest

# Ensure project root is in path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))


# ==================== Clock ====================

class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start=None):
        self.now = start or datetime(2024, 1, 15, 12, 0, 0, tzinfo=timezone.utc)

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


# ==================== Storage / Store ====================

@pytest.fixture
def memory_storage():
    from rental_portal.services.storage import MemoryStorage
    return MemoryStorage()


@pytest.fixture
def security_store(memory_storage, clock):
    """A loaded SecurityStore on in-memory storage with the default policy."""
    from rental_portal.services.security_store import SecurityStore

    store = SecurityStore(memory_storage, clock=clock)
    store.load()
    return store


# ==================== Remote API ====================

class MockRentalApi:
    """Scripted stand-in for the remote rental API.

    responses map (METHOD, path) to (status, body) or to an exception
    instance raised as a transport failure. Unscripted routes answer 404.
    """

    def __init__(self):
        self.responses = {}
        self.requests = []

    def respond(self, method, path, status=200, body=None, text=None):
        self.responses[(method, path)] = (status, body, text)

    def fail(self, method, path, message="connection refused"):
        self.responses[(method, path)] = httpx.ConnectError(message)

    def calls(self, method=None, path=None):
        return [
            r for r in self.requests
            if (method is None or r["method"] == method) and (path is None or r["path"] == path)
        ]

    def handler(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content) if request.content else None
        self.requests.append({
            "method": request.method,
            "path": request.url.path,
            "json": body,
            "authorization": request.headers.get("authorization"),
        })

        scripted = self.responses.get((request.method, request.url.path))
        if scripted is None:
            return httpx.Response(404, json={"message": "Not found"})
        if isinstance(scripted, Exception):
            raise scripted

        status, payload, text = scripted
        if text is not None:
            return httpx.Response(status, text=text)
        return httpx.Response(status, json=payload if payload is not None else {})

    def client(self):
        from rental_portal.services.rental_api_client import RentalApiClient
        return RentalApiClient("http://api.test", transport=httpx.MockTransport(self.handler))


@pytest.fixture
def mock_api():
    return MockRentalApi()


@pytest.fixture
def api_client(mock_api):
    return mock_api.client()


@pytest.fixture
def auth_session():
    """A signed-out caller session."""
    from rental_portal.services.auth_session import AuthSession
    return AuthSession()


# ==================== Portal App ====================

@pytest.fixture
def portal_app(mock_api, memory_storage):
    """Portal FastAPI app on memory storage and the scripted API."""
    from config.loader import PortalConfig
    from main import create_app
    from rental_portal.api import limiter

    limiter.reset()
    return create_app(
        config=PortalConfig(),
        storage=memory_storage,
        api_client=mock_api.client(),
        configure_logging=False
    )


@pytest.fixture
def portal_client(portal_app):
    """TestClient with the lifespan running (store loaded, ticker started)."""
    from fastapi.testclient import TestClient

    with TestClient(portal_app, follow_redirects=False) as client:
        yield client


# ==================== Sample Data ====================

STRONG_PASSWORD = "Rental#2024xy"


@pytest.fixture
def strong_password():
    return STRONG_PASSWORD


@pytest.fixture
def login_success_body():
    return {
        "token": "tok-123",
        "user": {"id": 7, "email": "rider@example.com", "role": "user", "fullName": "Rider One"},
    }
