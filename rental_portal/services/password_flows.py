"""
Password Lifecycle Flows

- ChangePasswordFlow: signed-in change (PUT /api/users/change-password)
- ForgotPasswordFlow: request and verify the reset OTP
- ResetPasswordFlow: set a new password after OTP verification

Local checks run before any request so obviously bad input never reaches
the remote API. On success the new password's fingerprint is added to the
local history.
"""

import logging
from typing import Optional

from rental_portal.services.rental_api_client import RentalApiClient
from rental_portal.services.security_store import SecurityStore
from rental_portal.services.auth_session import AuthSession
from rental_portal.utils.password_policy import password_fingerprint, validate_password
from rental_portal.utils.response_models import FlowResult, Redirect

logger = logging.getLogger(__name__)

OTP_LENGTH = 4


def classify_change_error(message: str) -> str:
    """Form field a change-password rejection belongs to."""
    lowered = message.lower()
    if "reuse" in lowered:
        return "newPassword"
    if "current password" in lowered or "incorrect" in lowered:
        return "currentPassword"
    return "general"


def _first_violation(store: SecurityStore, password: str) -> Optional[str]:
    violations = validate_password(password, store.settings)
    return violations[0] if violations else None


# ==================== Change Password ====================

class ChangePasswordFlow:
    """Change the calling user's password using that caller's own session."""

    def __init__(self, store: SecurityStore, api_client: RentalApiClient, session: AuthSession):
        self.store = store
        self.api_client = api_client
        self.session = session

    async def submit(self, current_password: str, new_password: str, confirm_password: str) -> FlowResult:
        if not current_password or not new_password or not confirm_password:
            return FlowResult.failure("All fields are required.", status="invalid", field="general")

        violation = _first_violation(self.store, new_password)
        if violation:
            return FlowResult.failure(violation, status="invalid", field="newPassword")

        if new_password != confirm_password:
            return FlowResult.failure("Passwords do not match.", status="invalid", field="confirmPassword")

        if new_password == current_password:
            return FlowResult.failure(
                "New password cannot be the same as current password.",
                status="invalid",
                field="newPassword"
            )

        token = self.session.get_token()
        if not token:
            return FlowResult.failure(
                "Please log in to change your password.",
                status="unauthenticated",
                redirect=Redirect(to="/login"),
            )

        success, data = await self.api_client.change_password(
            token, current_password, new_password, confirm_password
        )

        if not success and data.get("network_error"):
            return FlowResult.failure(
                "Failed to change password. Please try again.",
                status="error",
                field="general"
            )

        if not success:
            message = data.get("message") or "Failed to change password"
            return FlowResult.failure(message, status="rejected", field=classify_change_error(message))

        # Account the server changed wins over the caller's email cookie
        email = (data.get("user") or {}).get("email") or data.get("email") or self.session.get_email()
        if email:
            self.store.add_password_to_history(email, password_fingerprint(email, new_password))
        else:
            logger.warning("Password changed but no stored email; history not updated")

        return FlowResult(
            success=True,
            message=data.get("message") or "Password changed successfully!",
            status="success",
            redirect=Redirect(to="/home"),
        )


# ==================== Forgot Password ====================

class ForgotPasswordFlow:
    """Request and verify the password-reset OTP."""

    def __init__(self, api_client: RentalApiClient):
        self.api_client = api_client

    async def request_otp(self, email: str) -> FlowResult:
        if not email:
            return FlowResult.failure("Email is required", status="invalid", field="email")

        success, data = await self.api_client.forgot_password(email)
        if not success:
            return FlowResult.failure(data.get("message") or "Error sending OTP", status="error")

        return FlowResult(
            success=True,
            message=data.get("message") or "OTP sent to your email",
            status="success",
            redirect=Redirect(to="/verify-reset-otp", state={"email": email}),
        )

    async def verify_otp(self, email: str, otp: str) -> FlowResult:
        if not otp or len(otp) != OTP_LENGTH:
            return FlowResult.failure("Enter complete OTP", status="invalid", field="otp")

        if not email:
            return FlowResult.failure("Email not found. Please go back and try again.", status="invalid")

        success, data = await self.api_client.verify_reset_otp(email, otp)
        if not success:
            return FlowResult.failure(data.get("message") or "OTP verification failed", status="error")

        return FlowResult(
            success=True,
            message="OTP verified! Set a new password.",
            status="success",
            redirect=Redirect(to="/reset-password", state={"email": email}),
        )

    async def resend_otp(self, email: str) -> FlowResult:
        if not email:
            return FlowResult.failure("Email not found. Please go back and try again.", status="invalid")

        success, data = await self.api_client.forgot_password(email)
        if not success:
            return FlowResult.failure(data.get("message") or "Failed to resend OTP", status="error")

        return FlowResult(success=True, message="OTP resent to your email!", status="success")


# ==================== Reset Password ====================

class ResetPasswordFlow:
    """Set a new password for an email whose reset OTP was verified."""

    def __init__(self, store: SecurityStore, api_client: RentalApiClient):
        self.store = store
        self.api_client = api_client

    async def submit(self, email: Optional[str], new_password: str, confirm_password: str) -> FlowResult:
        if not new_password or not confirm_password:
            return FlowResult.failure("All fields are required.", status="invalid")

        violation = _first_violation(self.store, new_password)
        if violation:
            return FlowResult.failure(violation, status="invalid", field="newPassword")

        if new_password != confirm_password:
            return FlowResult.failure("Passwords do not match.", status="invalid", field="confirmPassword")

        if not email:
            return FlowResult.failure("Something went wrong. Email not found in state.", status="invalid")

        store = self.store
        store.log_security_event("PASSWORD_RESET_ATTEMPT", {"email": email})

        success, data = await self.api_client.reset_password(email, new_password, confirm_password)

        if not success:
            message = data.get("message") or "Something went wrong."
            if data.get("network_error"):
                store.log_security_event("PASSWORD_RESET_ERROR", {"email": email, "error": message})
            else:
                store.log_security_event("PASSWORD_RESET_FAILED", {"email": email, "reason": message})
            return FlowResult.failure(message, status="error")

        store.log_security_event("PASSWORD_RESET_SUCCESS", {"email": email})
        store.add_password_to_history(email, password_fingerprint(email, new_password))

        return FlowResult(
            success=True,
            message="Password reset successful! Please log in.",
            status="success",
            redirect=Redirect(to="/login", state={"success": "Password reset successful! Please log in."}),
        )
