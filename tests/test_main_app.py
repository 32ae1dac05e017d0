"""
Main Application Tests

Tests for main.py application setup and endpoints.
"""

from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient


class TestHealthEndpoint:
    """Tests for GET /health."""

    def test_health(self, portal_client):
        response = portal_client.get("/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["security_store_ready"] is True
        assert "timestamp" in data

    def test_request_id_header(self, portal_client):
        response = portal_client.get("/health", headers={"X-Request-ID": "abc"})
        assert response.headers["X-Request-ID"] == "abc"


class TestLifespan:
    """Startup and shutdown wiring."""

    def test_store_configured_and_ticker_running(self, portal_app):
        from rental_portal.services.security_store import get_security_store

        with TestClient(portal_app):
            assert get_security_store() is portal_app.state.security_store
            assert portal_app.state.security_store.is_ready is True
            assert portal_app.state.ticker.running is True

        assert portal_app.state.ticker.running is False

    def test_store_released_on_shutdown(self, portal_app):
        from rental_portal.services.security_store import (
            SecurityStoreNotConfiguredError,
            get_security_store,
        )

        with TestClient(portal_app):
            pass

        with pytest.raises(SecurityStoreNotConfiguredError):
            get_security_store()

    def test_store_loads_existing_state(self, mock_api):
        import json

        from config.loader import PortalConfig
        from main import create_app
        from rental_portal.services.storage import MemoryStorage

        storage = MemoryStorage({
            "accountLockouts": json.dumps({"version": 1, "data": {"a@b.com": "2999-01-01T00:00:00.000Z"}}),
        })
        app = create_app(PortalConfig(), storage, mock_api.client(), configure_logging=False)

        with TestClient(app) as client:
            data = client.get("/api/portal/security/lockout", params={"email": "a@b.com"}).json()["data"]

        assert data["locked"] is True


class TestCreateApp:

    def test_memory_backend_from_config(self, tmp_path):
        from config.loader import PortalConfig
        from main import build_storage
        from rental_portal.services.storage import JsonFileStorage, MemoryStorage

        path = tmp_path / "portal.yaml"
        path.write_text("storage:\n  backend: memory\n")
        assert isinstance(build_storage(PortalConfig(str(path))), MemoryStorage)

        path.write_text(f"storage:\n  backend: file\n  path: {tmp_path / 'store.json'}\n")
        assert isinstance(build_storage(PortalConfig(str(path))), JsonFileStorage)

    def test_state_wiring(self, portal_app, mock_api):
        assert portal_app.state.api_client.base_url == "http://api.test"
        assert portal_app.state.limiter is not None

    def test_cors_preflight(self, portal_client):
        response = portal_client.options(
            "/api/portal/login",
            headers={
                "Origin": "http://localhost:5173",
                "Access-Control-Request-Method": "POST",
            },
        )

        assert response.status_code == 200
        assert response.headers["access-control-allow-origin"] == "http://localhost:5173"

    def test_unhandled_exception_handler(self, portal_app):
        @portal_app.get("/boom")
        async def boom():
            raise RuntimeError("kaboom")

        with TestClient(portal_app, raise_server_exceptions=False) as client:
            response = client.get("/boom")

        assert response.status_code == 500
        assert response.json() == {"success": False, "error": "Internal server error"}

    def test_session_warning_subscriber(self, portal_app):
        with TestClient(portal_app):
            ticker = portal_app.state.ticker
            with patch.object(portal_app.state.security_store, "expiring_sessions", return_value={}) as expiring:
                ticker.tick()

        expiring.assert_called()
