"""
Portal Account Route Tests

Envelope, status codes and state changes of the /api/portal endpoints,
driven through the FastAPI TestClient against a scripted rental API.
"""

import os
from unittest.mock import patch

import pytest

LOGIN_PATH = "/api/users/login"


def _login(client, email="rider@example.com", password="pw"):
    return client.post("/api/portal/login", json={"email": email, "password": password})


class TestLoginEndpoint:
    """Tests for POST /api/portal/login."""

    def test_success(self, portal_client, mock_api, login_success_body):
        mock_api.respond("POST", LOGIN_PATH, 200, login_success_body)

        response = _login(portal_client)

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["message"] == "Login successful!"
        assert body["data"]["token"] == "tok-123"
        assert body["data"]["redirect"] == {"to": "/home", "state": {}}
        assert portal_client.cookies.get("token") == "tok-123"
        assert portal_client.cookies.get("userRole") == "user"

    def test_failure_envelope(self, portal_client, mock_api):
        mock_api.respond("POST", LOGIN_PATH, 401, {"message": "Invalid credentials"})

        response = _login(portal_client)

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is False
        assert body["error"] == "Invalid credentials. 4 attempts remaining."
        assert body["data"]["remainingAttempts"] == 4
        assert body["data"]["status"] == "failed"

    def test_missing_fields(self, portal_client, mock_api):
        response = portal_client.post("/api/portal/login", json={})

        assert response.json()["error"] == "All fields are required."
        assert mock_api.requests == []

    def test_lockout_then_locked(self, portal_client, mock_api):
        mock_api.respond("POST", LOGIN_PATH, 401, {"message": "Invalid credentials"})

        for _ in range(5):
            last = _login(portal_client)
        assert last.json()["data"]["status"] == "account-locked"

        locked = _login(portal_client).json()
        assert locked["data"]["status"] == "locked"
        assert locked["data"]["remainingTime"] == 5

    def test_expired_password_redirect(self, portal_client, mock_api):
        mock_api.respond("POST", LOGIN_PATH, 403, {"message": "Password expired", "passwordExpired": True})

        data = _login(portal_client).json()["data"]

        assert data["redirect"]["to"] == "/forgot-password"
        assert data["redirect"]["state"]["expired"] is True
        assert data["toast"]["title"] == "Password Expired"

    def test_unexpected_error_is_sanitized(self, portal_client):
        with patch("rental_portal.api.auth_routes.LoginFlow.login", side_effect=RuntimeError("db path /secret")):
            response = _login(portal_client)

        assert response.status_code == 500
        assert "secret" not in response.text

    def test_rate_limited(self, portal_client):
        for _ in range(20):
            assert portal_client.post("/api/portal/login", json={}).status_code == 200

        assert portal_client.post("/api/portal/login", json={}).status_code == 429


class TestLogoutEndpoint:

    def test_logout_clears_session(self, portal_client, mock_api, login_success_body):
        mock_api.respond("POST", LOGIN_PATH, 200, login_success_body)
        mock_api.respond("POST", "/api/users/logout", 200, {})
        _login(portal_client)

        body = portal_client.post("/api/portal/logout").json()

        assert body["success"] is True
        assert body["data"]["redirect"]["to"] == "/login"
        assert portal_client.cookies.get("token") is None
        assert mock_api.calls("POST", "/api/users/logout")[0]["authorization"] == "Bearer tok-123"


class TestCallerIsolation:
    """One browser's login never leaks into another caller's requests."""

    @pytest.fixture
    def anonymous(self, portal_app):
        from fastapi.testclient import TestClient
        return TestClient(portal_app, follow_redirects=False)

    @pytest.fixture
    def signed_in(self, portal_client, mock_api, login_success_body):
        mock_api.respond("POST", LOGIN_PATH, 200, login_success_body)
        mock_api.respond("GET", "/api/users/password-status", 200, {
            "lastPasswordChange": "2024-01-01", "daysUntilExpiry": 3, "showWarning": True,
        })
        _login(portal_client)
        return portal_client

    def test_password_status_needs_own_credentials(self, signed_in, anonymous, mock_api):
        data = anonymous.get("/api/portal/password-status").json()["data"]

        assert data["status"] is None
        assert data["card"] is None
        assert mock_api.calls("GET", "/api/users/password-status") == []

        mine = signed_in.get("/api/portal/password-status").json()["data"]
        assert mine["status"]["daysUntilExpiry"] == 3
        assert mock_api.calls("GET", "/api/users/password-status")[0]["authorization"] == "Bearer tok-123"

    def test_session_reports_only_the_caller(self, signed_in, anonymous):
        data = anonymous.get("/api/portal/session").json()["data"]

        assert data["authenticated"] is False
        assert data["role"] is None
        assert data["active"] is False

    def test_anonymous_logout_leaves_other_session(self, signed_in, anonymous, mock_api):
        anonymous.post("/api/portal/logout")

        assert mock_api.calls("POST", "/api/users/logout") == []
        data = signed_in.get("/api/portal/session").json()["data"]
        assert data["authenticated"] is True
        assert data["active"] is True

    def test_anonymous_change_password_goes_to_login(self, signed_in, anonymous, mock_api, strong_password):
        body = anonymous.post("/api/portal/change-password", json={
            "currentPassword": "Old#12345",
            "newPassword": strong_password,
            "confirmPassword": strong_password,
        }).json()

        assert body["data"]["redirect"]["to"] == "/login"
        assert mock_api.calls("PUT", "/api/users/change-password") == []


class TestPasswordEndpoints:
    """Change, forgot and reset password."""

    def test_change_password_requires_login(self, portal_client, strong_password):
        body = portal_client.post("/api/portal/change-password", json={
            "currentPassword": "Old#12345",
            "newPassword": strong_password,
            "confirmPassword": strong_password,
        }).json()

        assert body["success"] is False
        assert body["data"]["redirect"]["to"] == "/login"

    def test_change_password_after_login(self, portal_client, mock_api, login_success_body, strong_password):
        mock_api.respond("POST", LOGIN_PATH, 200, login_success_body)
        mock_api.respond("PUT", "/api/users/change-password", 400, {"message": "Cannot reuse a recent password"})
        _login(portal_client)

        body = portal_client.post("/api/portal/change-password", json={
            "currentPassword": "Old#12345",
            "newPassword": strong_password,
            "confirmPassword": strong_password,
        }).json()

        assert body["data"]["fieldErrors"] == {"newPassword": "Cannot reuse a recent password"}
        assert mock_api.calls("PUT", "/api/users/change-password")[0]["authorization"] == "Bearer tok-123"

    def test_forgot_password_flow(self, portal_client, mock_api, strong_password):
        mock_api.respond("POST", "/api/users/forgot-password", 200, {})
        mock_api.respond("POST", "/api/users/verify-reset-otp", 200, {})
        mock_api.respond("POST", "/api/users/reset-password", 200, {})

        sent = portal_client.post("/api/portal/forgot-password", json={"email": "a@b.com"}).json()
        assert sent["data"]["redirect"]["to"] == "/verify-reset-otp"

        verified = portal_client.post("/api/portal/verify-reset-otp", json={"email": "a@b.com", "otp": "1234"}).json()
        assert verified["data"]["redirect"]["to"] == "/reset-password"

        reset = portal_client.post("/api/portal/reset-password", json={
            "email": "a@b.com",
            "newPassword": strong_password,
            "confirmPassword": strong_password,
        }).json()
        assert reset["success"] is True
        assert reset["message"] == "Password reset successful! Please log in."

    def test_resend_reset_otp(self, portal_client, mock_api):
        mock_api.respond("POST", "/api/users/forgot-password", 200, {})

        body = portal_client.post("/api/portal/resend-reset-otp", json={"email": "a@b.com"}).json()

        assert body["message"] == "OTP resent to your email!"

    def test_reset_without_email(self, portal_client, strong_password):
        body = portal_client.post("/api/portal/reset-password", json={
            "newPassword": strong_password,
            "confirmPassword": strong_password,
        }).json()

        assert body["error"] == "Something went wrong. Email not found in state."


class TestRegistrationEndpoints:

    def test_register(self, portal_client, mock_api, strong_password):
        mock_api.respond("POST", "/api/users/register", 201, {})

        body = portal_client.post("/api/portal/register", json={
            "fullName": "Rider One",
            "phone": "9800000000",
            "address": "Pokhara",
            "email": "rider@example.com",
            "password": strong_password,
            "confirmPassword": strong_password,
            "captchaToken": "ok",
        }).json()

        assert body["success"] is True
        assert body["data"]["redirect"]["to"] == "/verify-otp"
        assert mock_api.calls("POST", "/api/users/register")[0]["json"]["fullName"] == "Rider One"

    def test_verify_and_resend(self, portal_client, mock_api):
        mock_api.respond("POST", "/api/users/verify-otp", 200, {})
        mock_api.respond("POST", "/api/users/resend-otp", 200, {})

        verified = portal_client.post("/api/portal/verify-otp", json={"email": "a@b.com", "otp": "1234"}).json()
        resent = portal_client.post("/api/portal/resend-otp", json={"email": "a@b.com"}).json()

        assert verified["message"] == "Account Created Successfully!"
        assert resent["message"] == "OTP resent successfully!"


class TestPasswordTools:

    def test_assess_strong(self, portal_client, strong_password):
        data = portal_client.post("/api/portal/password/assess", json={"password": strong_password}).json()["data"]

        assert data["isValid"] is True
        assert data["violations"] == []
        assert data["strength"]["score"] == 6
        assert data["suggestions"] == []
        assert data["entropy"] > 0

    def test_assess_weak(self, portal_client):
        data = portal_client.post("/api/portal/password/assess", json={"password": "aaa"}).json()["data"]

        assert data["isValid"] is False
        assert data["violations"][0] == "Password must be at least 8 characters long"

    def test_password_status(self, portal_client, mock_api):
        mock_api.respond("GET", "/api/users/password-status", 200, {
            "daysUntilExpiry": 2, "showWarning": True, "isExpired": False,
        })

        data = portal_client.get(
            "/api/portal/password-status", headers={"Authorization": "Bearer tok"}
        ).json()["data"]

        assert data["loading"] is False
        assert data["banner"]["kind"] == "warning"
        assert data["banner"]["urgency"] == "high"
        assert data["card"]["badge"] == "Expires Soon"

    def test_password_status_signed_out(self, portal_client, mock_api):
        data = portal_client.get("/api/portal/password-status").json()["data"]

        assert data["status"] is None
        assert data["banner"] is None
        assert data["card"] is None
        assert mock_api.requests == []


class TestSecurityState:

    def test_lockout_status(self, portal_client, mock_api):
        mock_api.respond("POST", LOGIN_PATH, 401, {"message": "Invalid credentials"})
        _login(portal_client)
        _login(portal_client)

        data = portal_client.get("/api/portal/security/lockout", params={"email": "rider@example.com"}).json()["data"]

        assert data["ready"] is True
        assert data["locked"] is False
        assert data["remainingAttempts"] == 3
        assert data["notice"]["kind"] == "attempts"

    def test_lockout_requires_email(self, portal_client):
        assert portal_client.get("/api/portal/security/lockout").status_code == 422

    def test_session_activity_signed_out(self, portal_client):
        before = portal_client.get("/api/portal/session").json()["data"]
        assert before["authenticated"] is False
        assert before["role"] is None
        assert before["active"] is False

        body = portal_client.post("/api/portal/session/activity").json()
        assert body["success"] is False
        assert body["data"] == {"active": False}

    def test_session_activity_after_login(self, portal_client, mock_api, login_success_body):
        mock_api.respond("POST", LOGIN_PATH, 200, login_success_body)
        _login(portal_client)

        session = portal_client.get("/api/portal/session").json()["data"]
        assert session["authenticated"] is True
        assert session["role"] == "user"
        assert session["active"] is True

        body = portal_client.post("/api/portal/session/activity").json()
        assert body["data"] == {"active": True}

    def test_security_events(self, portal_client, mock_api):
        mock_api.respond("POST", LOGIN_PATH, 401, {"message": "Invalid credentials"})
        _login(portal_client)

        data = portal_client.get("/api/portal/security/events", params={"limit": 1}).json()["data"]

        assert data["count"] == 1
        assert data["events"][0]["event"] == "LOGIN_FAILED"
        assert data["events"][0]["ip"] == "client-side"

    @pytest.mark.parametrize("limit", [0, 101])
    def test_security_events_limit_bounds(self, portal_client, limit):
        response = portal_client.get("/api/portal/security/events", params={"limit": limit})
        assert response.status_code == 422

    def test_debug_hidden_by_default(self, portal_client, mock_api):
        mock_api.respond("POST", LOGIN_PATH, 401, {"message": "Invalid credentials"})
        _login(portal_client)

        response = portal_client.get("/api/portal/security/debug")

        assert response.status_code == 404
        assert "rider@example.com" not in response.text

    def test_debug_when_enabled(self, mock_api, memory_storage):
        from fastapi.testclient import TestClient

        from config.loader import PortalConfig
        from main import create_app

        with patch.dict(os.environ, {"PORTAL_SECURITY_DEBUG": "true"}):
            config = PortalConfig()
        app = create_app(config, memory_storage, mock_api.client(), configure_logging=False)

        with TestClient(app) as client:
            data = client.get("/api/portal/security/debug").json()["data"]

        assert data["isLoaded"] is True
        assert set(data["storage"]) == {"loginAttempts", "accountLockouts", "passwordHistory"}
