"""
Login Flow

Orchestrates a login submission around the security store:

    lockout check -> remote login -> attempt bookkeeping -> session save

Rejections caused by an expired password send the user to the reset flow
without counting as a failed attempt. Network failures are not counted
either.
"""

import logging
from typing import Optional

from rental_portal.services.rental_api_client import RentalApiClient
from rental_portal.services.security_store import SecurityStore
from rental_portal.services.auth_session import AuthSession
from rental_portal.utils.password_notices import build_expired_toast, build_warning_toast
from rental_portal.utils.response_models import FlowResult, Redirect
from rental_portal.utils.structured_logger import set_account_email

logger = logging.getLogger(__name__)

ADMIN_HOME = "/admin/dashboard"
USER_HOME = "/home"


class LoginFlow:
    """Login submission handler."""

    def __init__(self, store: SecurityStore, api_client: RentalApiClient, session: AuthSession):
        self.store = store
        self.api_client = api_client
        self.session = session

    async def login(self, email: str, password: str, user_agent: Optional[str] = None) -> FlowResult:
        """
        Attempt to sign in.

        Args:
            email: Account email, used as-is (case-sensitive) for bookkeeping
            password: Password
            user_agent: Caller's user agent, recorded on security events

        Returns:
            FlowResult whose status is one of: invalid, not-ready, locked,
            password-expired, failed, account-locked, error, success
        """
        if not email or not password:
            return FlowResult.failure("All fields are required.", status="invalid")

        if not self.store.is_ready:
            return FlowResult.failure("Loading security data, please wait...", status="not-ready")

        set_account_email(email)
        store = self.store

        lock = store.is_account_locked(email)
        if lock.locked:
            store.log_security_event("LOGIN_ATTEMPT_LOCKED_ACCOUNT", {"email": email}, user_agent)
            return FlowResult.failure(
                f"Account is locked. Try again in {lock.remaining_time} minutes.",
                status="locked",
                data={"remainingTime": lock.remaining_time},
            )

        store.log_security_event("LOGIN_ATTEMPT", {"email": email}, user_agent)

        success, data = await self.api_client.login(email, password)

        if not success and data.get("network_error"):
            store.log_security_event("LOGIN_ERROR", {"email": email, "error": data.get("message")}, user_agent)
            return FlowResult.failure("Server error. Try again later.", status="error")

        if not success:
            return self._rejected(email, data, user_agent)

        return self._signed_in(email, data, user_agent)

    def _rejected(self, email: str, data: dict, user_agent: Optional[str]) -> FlowResult:
        store = self.store
        message = data.get("message")

        if data.get("passwordExpired") or data.get("mustChangePassword"):
            store.log_security_event(
                "LOGIN_BLOCKED_PASSWORD_EXPIRED",
                {"email": email, "reason": message},
                user_agent
            )
            return FlowResult.failure(
                message or "Your password has expired.",
                status="password-expired",
                redirect=Redirect(
                    to="/forgot-password",
                    state={"message": message, "email": email, "expired": True}
                ),
                toast=build_expired_toast(message),
            )

        remaining_before = store.get_remaining_attempts(email)
        account_locked = store.record_failed_login(email)

        store.log_security_event(
            "LOGIN_FAILED",
            {"email": email, "reason": message or "Invalid credentials", "accountLocked": account_locked},
            user_agent
        )

        if account_locked:
            duration = store.settings.lockout_duration
            return FlowResult.failure(
                f"Too many failed attempts. Account has been locked for {duration} minutes.",
                status="account-locked",
                data={"remainingTime": duration},
            )

        remaining = max(0, remaining_before - 1)
        return FlowResult.failure(
            f"{message or 'Login failed'}. {remaining} attempts remaining.",
            status="failed",
            data={"remainingAttempts": remaining},
        )

    def _signed_in(self, email: str, data: dict, user_agent: Optional[str]) -> FlowResult:
        store = self.store
        user = data.get("user") or {}

        token = data.get("token")
        if not token:
            logger.error("Login response carried no token")
            return FlowResult.failure("Server error. Try again later.", status="error")

        store.clear_failed_attempts(email)
        store.log_security_event("LOGIN_SUCCESS", {"email": email, "role": user.get("role")}, user_agent)

        # Keep the email the caller signed in with when the user record omits it
        self.session.save(token, {**user, "email": user.get("email") or email})
        store.update_activity(self.session.key)

        role = user.get("role") or "user"
        return FlowResult(
            success=True,
            message="Login successful!",
            status="success",
            redirect=Redirect(to=ADMIN_HOME if role == "admin" else USER_HOME),
            toast=build_warning_toast(data.get("passwordWarning")),
            data={
                "user": user,
                "token": data.get("token"),
                "requireMFA": bool(data.get("requireMFA")),
            },
        )

    async def logout(self) -> FlowResult:
        """Sign out remotely (best effort) and always clear the local session."""
        token = self.session.get_token()
        success, data = (True, {})
        if token:
            success, data = await self.api_client.logout(token)

        self.store.end_session(self.session.key)
        self.session.clear()
        self.store.log_security_event("LOGOUT", {"remoteSuccess": success})

        if not success:
            return FlowResult(
                success=False,
                message=data.get("message") or "Logout failed",
                status="error",
                redirect=Redirect(to="/login"),
            )
        return FlowResult(
            success=True,
            message="Logged out successfully",
            status="success",
            redirect=Redirect(to="/login"),
        )
