"""
Password Status Tracker Tests
"""

import asyncio

import pytest

STATUS_BODY = {
    "lastPasswordChange": "2024-01-05T10:00:00.000Z",
    "passwordExpiresAt": "2024-04-04T10:00:00.000Z",
    "daysUntilExpiry": 5,
    "isExpired": False,
    "showWarning": True,
    "mustChangePassword": False,
}


class TestPasswordStatusModel:
    """Tests for the PasswordStatus model."""

    def test_parses_server_fields(self):
        from rental_portal.services.password_status import PasswordStatus

        status = PasswordStatus.model_validate(STATUS_BODY)
        assert status.days_until_expiry == 5
        assert status.show_warning is True
        assert status.requires_action is False

    def test_requires_action(self):
        from rental_portal.services.password_status import PasswordStatus

        assert PasswordStatus.model_validate({"isExpired": True}).requires_action is True
        assert PasswordStatus.model_validate({"mustChangePassword": True}).requires_action is True

    def test_round_trips_aliases(self):
        from rental_portal.services.password_status import PasswordStatus

        dumped = PasswordStatus.model_validate(STATUS_BODY).model_dump(by_alias=True)
        assert dumped["daysUntilExpiry"] == 5


class TestPasswordStatusTracker:
    """Tests for PasswordStatusTracker.fetch."""

    def test_initially_loading(self, api_client):
        from rental_portal.services.password_status import PasswordStatusTracker

        tracker = PasswordStatusTracker(api_client, lambda: "tok")
        assert tracker.loading is True
        assert tracker.status is None

    @pytest.mark.asyncio
    async def test_no_token_makes_no_request(self, mock_api, api_client):
        from rental_portal.services.password_status import PasswordStatusTracker

        tracker = PasswordStatusTracker(api_client, lambda: None)
        result = await tracker.fetch()

        assert result is None
        assert tracker.loading is False
        assert tracker.status is None
        assert mock_api.requests == []

    @pytest.mark.asyncio
    async def test_success(self, mock_api, api_client):
        from rental_portal.services.password_status import PasswordStatusTracker

        mock_api.respond("GET", "/api/users/password-status", 200, STATUS_BODY)
        tracker = PasswordStatusTracker(api_client, lambda: "tok")

        status = await tracker.fetch()

        assert status is tracker.status
        assert status.days_until_expiry == 5
        assert tracker.loading is False
        assert tracker.error is None

    @pytest.mark.asyncio
    async def test_server_error_message(self, mock_api, api_client):
        from rental_portal.services.password_status import PasswordStatusTracker

        mock_api.respond("GET", "/api/users/password-status", 401, {"message": "Token expired"})
        tracker = PasswordStatusTracker(api_client, lambda: "tok")

        await tracker.fetch()

        assert tracker.error == "Token expired"
        assert tracker.loading is False

    @pytest.mark.asyncio
    async def test_server_error_default_message(self, mock_api, api_client):
        from rental_portal.services.password_status import PasswordStatusTracker

        mock_api.respond("GET", "/api/users/password-status", 500, {})
        tracker = PasswordStatusTracker(api_client, lambda: "tok")

        await tracker.fetch()

        assert tracker.error == "Failed to fetch password status"

    @pytest.mark.asyncio
    async def test_network_error(self, mock_api, api_client):
        from rental_portal.services.password_status import PasswordStatusTracker

        mock_api.fail("GET", "/api/users/password-status")
        tracker = PasswordStatusTracker(api_client, lambda: "tok")

        await tracker.fetch()

        assert tracker.error == "Network error while fetching password status"

    @pytest.mark.asyncio
    async def test_malformed_body(self, mock_api, api_client):
        from rental_portal.services.password_status import PasswordStatusTracker

        mock_api.respond("GET", "/api/users/password-status", 200, {"daysUntilExpiry": "soon"})
        tracker = PasswordStatusTracker(api_client, lambda: "tok")

        assert await tracker.fetch() is None
        assert tracker.error == "Failed to fetch password status"

    @pytest.mark.asyncio
    async def test_closed_tracker_discards_response(self, api_client):
        from rental_portal.services.password_status import PasswordStatusTracker

        release = asyncio.Event()

        async def slow_status(token):
            await release.wait()
            return True, STATUS_BODY

        tracker = PasswordStatusTracker(api_client, lambda: "tok")
        api_client.get_password_status = slow_status

        pending = asyncio.ensure_future(tracker.fetch())
        await asyncio.sleep(0)
        tracker.close()
        release.set()

        assert await pending is None
        assert tracker.status is None
        assert await tracker.fetch() is None

    @pytest.mark.asyncio
    async def test_stale_response_is_discarded(self, api_client):
        from rental_portal.services.password_status import PasswordStatusTracker

        first_release = asyncio.Event()
        calls = []

        async def scripted_status(token):
            calls.append(token)
            if len(calls) == 1:
                await first_release.wait()
                return True, {**STATUS_BODY, "daysUntilExpiry": 1}
            return True, {**STATUS_BODY, "daysUntilExpiry": 30}

        tracker = PasswordStatusTracker(api_client, lambda: "tok")
        api_client.get_password_status = scripted_status

        first = asyncio.ensure_future(tracker.fetch())
        await asyncio.sleep(0)
        second = await tracker.refetch()
        first_release.set()

        assert await first is None
        assert second.days_until_expiry == 30
        assert tracker.status.days_until_expiry == 30

    @pytest.mark.asyncio
    async def test_snapshot(self, mock_api, api_client):
        from rental_portal.services.password_status import PasswordStatusTracker

        mock_api.respond("GET", "/api/users/password-status", 200, STATUS_BODY)
        tracker = PasswordStatusTracker(api_client, lambda: "tok")
        await tracker.fetch()

        snapshot = tracker.snapshot()
        assert snapshot["loading"] is False
        assert snapshot["error"] is None
        assert snapshot["status"]["showWarning"] is True
