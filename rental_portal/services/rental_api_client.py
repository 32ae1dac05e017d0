"""
Rental API Client

Async client for the remote vehicle-rental REST API (account endpoints).

Every call returns a (success, data) tuple and never raises:
- 2xx:               (True, response body)
- non-2xx:           (False, body with "message" and "status_code")
- transport failure: (False, {"message": NETWORK_ERROR_MESSAGE, "network_error": True})

No retries and no client-side timeout unless configured; the remote API's
own behaviour governs.

Configuration via config/portal.yaml (api section) or environment:
- RENTAL_API_URL: Base URL (default: http://localhost:3000)
- RENTAL_API_TIMEOUT: Request timeout in seconds (default: none)
"""

import logging
from typing import Any, Dict, Optional, Tuple

import httpx

logger = logging.getLogger(__name__)

NETWORK_ERROR_MESSAGE = "Unable to reach the server. Please check your connection."

ApiResult = Tuple[bool, Dict[str, Any]]


class RentalApiClient:
    """Client for the /api/users account endpoints."""

    def __init__(
        self,
        base_url: str = "http://localhost:3000",
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        """
        Args:
            base_url: Remote API root, without trailing slash
            timeout: Seconds before giving up on a request; None disables the timeout
            transport: Optional httpx transport (tests inject httpx.MockTransport)
        """
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport

        logger.info(f"Rental API client initialized: url={self.base_url}, timeout={self.timeout}")

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            timeout=httpx.Timeout(self.timeout),
            transport=self._transport,
        )

    @staticmethod
    def _parse_body(response: httpx.Response) -> Dict[str, Any]:
        content_type = response.headers.get("content-type", "")
        if "application/json" in content_type:
            try:
                body = response.json()
            except ValueError:
                return {"message": response.text}
            return body if isinstance(body, dict) else {"data": body}
        return {"message": response.text} if response.text else {}

    async def _request(
        self,
        method: str,
        path: str,
        default_error: str,
        payload: Optional[Dict[str, Any]] = None,
        token: Optional[str] = None
    ) -> ApiResult:
        headers = {"Content-Type": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"

        try:
            async with self._client() as client:
                response = await client.request(method, path, json=payload, headers=headers)
        except httpx.HTTPError as e:
            logger.error(f"Rental API {method} {path} failed: {e}")
            return False, {"message": NETWORK_ERROR_MESSAGE, "network_error": True}

        body = self._parse_body(response)

        if response.is_success:
            return True, body

        logger.warning(f"Rental API {method} {path} returned {response.status_code}")
        body["message"] = body.get("message") or default_error
        body["status_code"] = response.status_code
        return False, body

    # ==================== Authentication ====================

    async def login(self, email: str, password: str) -> ApiResult:
        """
        Authenticate with email and password.

        Success body: {token, user, requireMFA?, passwordWarning?}.
        Rejections may carry passwordExpired / mustChangePassword.
        """
        return await self._request(
            "POST", "/api/users/login", "Login failed",
            payload={"email": email, "password": password}
        )

    async def logout(self, token: str) -> ApiResult:
        return await self._request("POST", "/api/users/logout", "Logout failed", token=token)

    async def get_password_status(self, token: str) -> ApiResult:
        return await self._request(
            "GET", "/api/users/password-status", "Failed to fetch password status", token=token
        )

    # ==================== Password Lifecycle ====================

    async def change_password(
        self,
        token: str,
        current_password: str,
        new_password: str,
        confirm_password: str
    ) -> ApiResult:
        return await self._request(
            "PUT", "/api/users/change-password", "Failed to change password",
            payload={
                "currentPassword": current_password,
                "newPassword": new_password,
                "confirmPassword": confirm_password,
            },
            token=token
        )

    async def forgot_password(self, email: str) -> ApiResult:
        return await self._request(
            "POST", "/api/users/forgot-password", "Error sending OTP",
            payload={"email": email}
        )

    async def verify_reset_otp(self, email: str, otp: str) -> ApiResult:
        return await self._request(
            "POST", "/api/users/verify-reset-otp", "OTP verification failed",
            payload={"email": email, "otp": otp}
        )

    async def reset_password(self, email: str, new_password: str, confirm_password: str) -> ApiResult:
        return await self._request(
            "POST", "/api/users/reset-password", "Password reset failed",
            payload={"email": email, "newPassword": new_password, "confirmPassword": confirm_password}
        )

    # ==================== Registration ====================

    async def register(self, form: Dict[str, Any]) -> ApiResult:
        """Register a new customer. form uses the API's field names."""
        return await self._request("POST", "/api/users/register", "Registration failed.", payload=form)

    async def verify_otp(self, email: str, otp: str) -> ApiResult:
        return await self._request(
            "POST", "/api/users/verify-otp", "Invalid OTP",
            payload={"email": email, "otp": otp}
        )

    async def resend_otp(self, email: str) -> ApiResult:
        return await self._request(
            "POST", "/api/users/resend-otp", "Failed to resend OTP",
            payload={"email": email}
        )
