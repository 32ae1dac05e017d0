"""
Registration Flow

Customer sign-up followed by email OTP verification. Input is sanitized
(script tags and angle brackets stripped) before validation, then checked
against the password policy and a minimum strength score of 4.
"""

import logging
import re
from typing import Any, Dict, Tuple

from rental_portal.services.rental_api_client import RentalApiClient
from rental_portal.services.security_store import SecurityStore
from rental_portal.utils.password_policy import assess_password_strength, validate_password
from rental_portal.utils.response_models import FlowResult, Redirect

logger = logging.getLogger(__name__)

REQUIRED_FIELDS = ("fullName", "phone", "address", "email", "password", "confirmPassword")
SANITIZED_FIELDS = REQUIRED_FIELDS
MIN_STRENGTH_SCORE = 4
OTP_LENGTH = 4

_SCRIPT_TAG = re.compile(r'</?script.*?>', re.IGNORECASE)
_ANGLE_BRACKET = re.compile(r'[<>]')


def sanitize_field(value: str) -> Tuple[str, bool]:
    """
    Strip script tags and angle brackets, then one trailing slash.

    Returns:
        (cleaned value, whether any markup was removed)
    """
    removed = False

    if _SCRIPT_TAG.search(value):
        value = _SCRIPT_TAG.sub('', value)
        removed = True

    if _ANGLE_BRACKET.search(value):
        value = _ANGLE_BRACKET.sub('', value)
        removed = True

    if value.endswith('/'):
        value = value[:-1]

    return value, removed


def sanitize_form(form: Dict[str, Any]) -> Tuple[Dict[str, Any], bool]:
    cleaned = dict(form)
    removed_any = False
    for name in SANITIZED_FIELDS:
        value = cleaned.get(name)
        if isinstance(value, str):
            cleaned[name], removed = sanitize_field(value)
            removed_any = removed_any or removed
    return cleaned, removed_any


class RegistrationFlow:
    """Sign-up and OTP verification."""

    def __init__(self, store: SecurityStore, api_client: RentalApiClient):
        self.store = store
        self.api_client = api_client

    async def register(self, form: Dict[str, Any]) -> FlowResult:
        """
        Register a new customer.

        Args:
            form: fullName, phone, address, email, password, confirmPassword
                and captchaToken

        Returns:
            FlowResult redirecting to /verify-otp on success
        """
        form, removed = sanitize_form(form)
        toast = None
        if removed:
            toast = {
                "type": "warning",
                "message": "Invalid characters (e.g., <, >, script tags) have been removed.",
                "auto_close_ms": 3000,
            }

        if any(not form.get(name) for name in REQUIRED_FIELDS):
            return FlowResult.failure("All fields are required.", status="invalid", toast=toast)

        password = form["password"]
        policy = self.store.settings

        violations = validate_password(password, policy)
        if violations:
            return FlowResult.failure(violations[0], status="invalid", field="password", toast=toast)

        if password != form["confirmPassword"]:
            return FlowResult.failure("Passwords do not match.", status="invalid", field="confirmPassword", toast=toast)

        if assess_password_strength(password, policy).score < MIN_STRENGTH_SCORE:
            return FlowResult.failure(
                "Password is too weak. Please choose a stronger password.",
                status="invalid",
                field="password",
                toast=toast
            )

        if not form.get("captchaToken"):
            return FlowResult.failure("Please verify that you are not a robot.", status="invalid", toast=toast)

        payload = {name: form[name] for name in REQUIRED_FIELDS}
        payload["captchaToken"] = form["captchaToken"]

        success, data = await self.api_client.register(payload)

        if not success and data.get("network_error"):
            return FlowResult.failure("Server error. Try again later.", status="error")

        if not success:
            return FlowResult.failure(data.get("message") or "Registration failed.", status="rejected")

        email = form["email"]
        logger.info(f"Registration submitted for {email}")

        return FlowResult(
            success=True,
            message="Registration successful! Please check your email for verification.",
            status="success",
            redirect=Redirect(
                to="/verify-otp",
                state={"email": email, "success": "Registered successfully! Please verify OTP."}
            ),
        )

    async def verify_otp(self, email: str, otp: str) -> FlowResult:
        if not email or not otp or len(otp) != OTP_LENGTH:
            return FlowResult.failure("Please enter the complete OTP", status="invalid", field="otp")

        success, data = await self.api_client.verify_otp(email, otp)

        if not success and data.get("network_error"):
            return FlowResult.failure("Server error.", status="error")

        if not success:
            return FlowResult.failure(data.get("message") or "Invalid OTP", status="rejected")

        return FlowResult(
            success=True,
            message="Account Created Successfully!",
            status="success",
            redirect=Redirect(to="/login", state={"success": "Account Created Successfully!"}),
        )

    async def resend_otp(self, email: str) -> FlowResult:
        if not email:
            return FlowResult.failure("Email not found!", status="invalid")

        success, data = await self.api_client.resend_otp(email)

        if not success and data.get("network_error"):
            return FlowResult.failure("Server error.", status="error")

        if not success:
            return FlowResult.failure(data.get("message") or "Failed to resend OTP", status="rejected")

        return FlowResult(success=True, message=data.get("message") or "OTP resent successfully!", status="success")
