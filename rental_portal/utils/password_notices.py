"""
Password Notices - Data records behind banners, cards and toasts

Turns password status and lockout state into plain records the page shell
renders. No markup and no styling here, only what to say, how urgent it is
and where the action button leads.
"""

from typing import Any, Dict, Optional

from pydantic import BaseModel

from rental_portal.services.password_status import PasswordStatus, PasswordStatusTracker
from rental_portal.services.security_store import SecurityStore, parse_timestamp
from rental_portal.utils.password_policy import PASSWORD_POLICY, PasswordPolicy, get_days_until_expiry

CHANGE_PASSWORD_ROUTE = "/change-password"
FORGOT_PASSWORD_ROUTE = "/forgot-password"

_TOAST_AUTO_CLOSE_MS = {"high": 10000, "medium": 8000, "low": 6000}


def urgency_for(days_until_expiry: int) -> str:
    if days_until_expiry <= 3:
        return "high"
    if days_until_expiry <= 7:
        return "medium"
    return "low"


def _plural_days(days: int) -> str:
    return f"{days} day{'' if days == 1 else 's'}"


# ==================== Banner ====================

class PasswordBanner(BaseModel):
    kind: str  # "critical" or "warning"
    title: str
    message: str
    action_label: str
    action_route: str = CHANGE_PASSWORD_ROUTE
    urgency: str = "high"
    dismissible: bool = False


def build_password_banner(status: Optional[PasswordStatus]) -> Optional[PasswordBanner]:
    """
    Banner for the top of authenticated pages.

    Returns:
        A critical banner when the password expired or must be changed,
        a dismissible warning while expiry approaches, otherwise None
    """
    if status is None:
        return None

    if status.is_expired or status.must_change_password:
        message = (
            "Your password has expired. You must change it to continue using your account."
            if status.is_expired
            else "You must change your password before proceeding."
        )
        return PasswordBanner(
            kind="critical",
            title="Password Action Required",
            message=message,
            action_label="Change Password Now",
        )

    days = status.days_until_expiry
    if status.show_warning and days is not None and days > 0:
        return PasswordBanner(
            kind="warning",
            title="Password Expiry Warning",
            message=(
                f"Your password will expire in {_plural_days(days)}. "
                "Change it now to avoid being locked out of your account."
            ),
            action_label="Change Password",
            urgency=urgency_for(days),
            dismissible=True,
        )

    return None


# ==================== Toasts ====================

def build_warning_toast(password_warning: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    """Toast shown after a successful login when the server sent passwordWarning."""
    if not password_warning:
        return None

    days = password_warning.get("daysUntilExpiry")
    urgency = urgency_for(days) if isinstance(days, int) else "low"

    return {
        "type": "warning",
        "title": "Password Expiry Warning",
        "message": password_warning.get("message"),
        "action_label": "Change Now",
        "action_route": CHANGE_PASSWORD_ROUTE,
        "urgency": urgency,
        "position": "top-right",
        "auto_close_ms": _TOAST_AUTO_CLOSE_MS[urgency],
    }


def build_expired_toast(message: Optional[str]) -> Dict[str, Any]:
    """Sticky toast shown when login was refused because the password expired."""
    return {
        "type": "error",
        "title": "Password Expired",
        "message": message,
        "action_label": "Reset Now",
        "action_route": FORGOT_PASSWORD_ROUTE,
        "urgency": "high",
        "position": "top-center",
        "auto_close_ms": None,
    }


# ==================== Status Card ====================

def format_date(value: Optional[str]) -> str:
    """'January 5, 2024' style date, or N/A."""
    parsed = parse_timestamp(value) if value else None
    if parsed is None:
        return "N/A"
    return f"{parsed.strftime('%B')} {parsed.day}, {parsed.year}"


def status_color(days_until_expiry: int) -> str:
    if days_until_expiry <= 0:
        return "red"
    if days_until_expiry <= 7:
        return "orange"
    if days_until_expiry <= 14:
        return "yellow"
    return "green"


def status_badge(days_until_expiry: int, is_expired: bool) -> str:
    if is_expired:
        return "Expired"
    if days_until_expiry <= 7:
        return "Expires Soon"
    return "Active"


def build_status_card(
    tracker: PasswordStatusTracker,
    policy: PasswordPolicy = PASSWORD_POLICY
) -> Optional[Dict[str, Any]]:
    """Profile-page card describing the current password's lifecycle.

    The server's daysUntilExpiry wins; when it is missing the count is
    derived from lastPasswordChange and the policy's expiry period.
    """
    if tracker.loading:
        return {"state": "loading"}

    if tracker.error:
        return {"state": "error", "message": f"Failed to load password status: {tracker.error}"}

    status = tracker.status
    if status is None:
        return None

    days = status.days_until_expiry
    if days is None:
        last_change = parse_timestamp(status.last_password_change)
        days = get_days_until_expiry(last_change, policy) if last_change else 0

    recommendation = None
    if status.is_expired:
        recommendation = "Your password has expired. Change it immediately to secure your account."
    elif status.show_warning:
        recommendation = f"Your password expires in {days} days. Consider changing it soon."

    return {
        "state": "ready",
        "badge": status_badge(days, status.is_expired),
        "color": status_color(days),
        "last_changed": format_date(status.last_password_change),
        "expires_on": format_date(status.password_expires_at),
        "days_text": "Expired" if status.is_expired else f"{days} days remaining",
        "recommendation": recommendation,
        "action_label": "Change Password Now" if status.is_expired else "Change Password",
        "action_route": CHANGE_PASSWORD_ROUTE,
    }


# ==================== Lockout Indicator ====================

def build_lockout_notice(store: SecurityStore, email: str) -> Optional[Dict[str, Any]]:
    """
    Indicator under the login form for the email being typed.

    Returns:
        {"kind": "locked", ...} while locked, {"kind": "attempts", ...} once
        some attempts were used, None otherwise or before the store loaded
    """
    if not email or not store.is_ready:
        return None

    lock = store.is_account_locked(email)
    if lock.locked:
        return {
            "kind": "locked",
            "remaining_time": lock.remaining_time,
            "message": f"Account locked for {lock.remaining_time} minutes",
        }

    remaining = store.get_remaining_attempts(email)
    if 0 < remaining < store.settings.lockout_threshold:
        return {
            "kind": "attempts",
            "remaining_attempts": remaining,
            "message": f"{remaining} login attempts remaining before account lockout",
        }

    return None
