"""
Password Status Tracker

Fetches the signed-in user's password metadata from the remote API
(GET /api/users/password-status) and exposes it as {status, loading, error}.

The server's fields are trusted verbatim; nothing about expiry is computed
locally. Responses that arrive after a newer fetch started, or after the
tracker was closed, are dropped.
"""

import logging
from typing import Any, Callable, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from rental_portal.services.rental_api_client import RentalApiClient

logger = logging.getLogger(__name__)

DEFAULT_STATUS_ERROR = "Failed to fetch password status"
NETWORK_STATUS_ERROR = "Network error while fetching password status"


class PasswordStatus(BaseModel):
    """Server-computed password status."""
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    last_password_change: Optional[str] = Field(default=None, alias="lastPasswordChange")
    password_expires_at: Optional[str] = Field(default=None, alias="passwordExpiresAt")
    days_until_expiry: Optional[int] = Field(default=None, alias="daysUntilExpiry")
    is_expired: bool = Field(default=False, alias="isExpired")
    show_warning: bool = Field(default=False, alias="showWarning")
    must_change_password: bool = Field(default=False, alias="mustChangePassword")

    @property
    def requires_action(self) -> bool:
        return self.is_expired or self.must_change_password


class PasswordStatusTracker:
    """
    Holds the latest password status for one principal.

    token_provider returns the current bearer token, or None when signed out.
    """

    def __init__(self, api_client: RentalApiClient, token_provider: Callable[[], Optional[str]]):
        self.api_client = api_client
        self.token_provider = token_provider

        self.status: Optional[PasswordStatus] = None
        self.loading = True
        self.error: Optional[str] = None

        self._generation = 0
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    async def fetch(self) -> Optional[PasswordStatus]:
        """
        Load the status from the server.

        Returns:
            The new status, or None when signed out, failed, or superseded
        """
        if self._closed:
            return None

        self._generation += 1
        generation = self._generation

        self.loading = True
        self.error = None

        token = self.token_provider()
        if not token:
            self.status = None
            self.loading = False
            return None

        success, data = await self.api_client.get_password_status(token)

        if self._closed or generation != self._generation:
            logger.debug("Discarding stale password status response")
            return None

        if success:
            try:
                self.status = PasswordStatus.model_validate(data)
            except ValidationError as e:
                logger.error(f"Malformed password status response: {e}")
                self.error = DEFAULT_STATUS_ERROR
        elif data.get("network_error"):
            self.error = NETWORK_STATUS_ERROR
        else:
            self.error = data.get("message") or DEFAULT_STATUS_ERROR

        self.loading = False
        return self.status if self.error is None else None

    async def refetch(self) -> Optional[PasswordStatus]:
        return await self.fetch()

    def close(self) -> None:
        """Stop accepting results; in-flight responses are discarded."""
        self._closed = True

    def snapshot(self) -> Dict[str, Any]:
        return {
            "status": self.status.model_dump(by_alias=True) if self.status else None,
            "loading": self.loading,
            "error": self.error,
        }
