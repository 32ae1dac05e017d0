"""
Route Guard

Decides whether a page navigation may proceed:

    unauthenticated            -> redirect to /login
    checking-password-status   -> show a loading placeholder
    password-action-required   -> redirect to /forgot-password {expired, email, message}
    authorized                 -> render the page

The password-reset pages are exempt from the expiry check so a user with an
expired password can still fix it. This only gates navigation inside the
portal; the remote API enforces its own authentication.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, Optional
from urllib.parse import urlencode

from starlette.requests import HTTPConnection

from rental_portal.services.auth_session import AuthSession
from rental_portal.services.password_status import PasswordStatus, PasswordStatusTracker
from rental_portal.utils.structured_logger import set_account_email

logger = logging.getLogger(__name__)


# ==================== Paths ====================

EXEMPT_PATHS = {
    "/change-password",
    "/forgot-password",
    "/reset-password",
}

# Page prefixes that require a login token
PROTECTED_PREFIXES = [
    "/home",
    "/change-password",
    "/session-settings",
    "/session-demo",
    "/admin",
]

ADMIN_PREFIXES = ["/admin"]

LOGIN_PATH = "/login"
FORGOT_PASSWORD_PATH = "/forgot-password"

EXPIRED_MESSAGE = "Your password has expired. Please reset your password to continue."
MUST_CHANGE_MESSAGE = "You must change your password before proceeding."


def _normalize(path: str) -> str:
    return path.rstrip("/") or "/"


def is_exempt_path(path: str) -> bool:
    """Paths where the password-expiry check does not apply."""
    return _normalize(path) in EXEMPT_PATHS


def _matches_prefix(path: str, prefixes: Iterable[str]) -> bool:
    path = _normalize(path)
    return any(path == prefix or path.startswith(prefix + "/") for prefix in prefixes)


# ==================== Decision ====================

UNAUTHENTICATED = "unauthenticated"
CHECKING_PASSWORD_STATUS = "checking-password-status"
PASSWORD_ACTION_REQUIRED = "password-action-required"
AUTHORIZED = "authorized"


@dataclass
class GuardDecision:
    state: str
    redirect_to: Optional[str] = None
    redirect_state: Dict[str, Any] = field(default_factory=dict)

    @property
    def allowed(self) -> bool:
        return self.state == AUTHORIZED

    def redirect_url(self) -> Optional[str]:
        """Redirect target with the navigation state in the query string."""
        if not self.redirect_to:
            return None
        query = {
            key: str(value).lower() if isinstance(value, bool) else value
            for key, value in self.redirect_state.items()
            if value is not None
        }
        if not query:
            return self.redirect_to
        return f"{self.redirect_to}?{urlencode(query)}"


class RouteGuard:
    """Pure navigation policy. Holds no state between evaluations."""

    def __init__(self, exempt_paths: Optional[Iterable[str]] = None):
        self.exempt_paths = set(exempt_paths) if exempt_paths is not None else set(EXEMPT_PATHS)

    def is_exempt(self, path: str) -> bool:
        return _normalize(path) in self.exempt_paths

    def evaluate(
        self,
        path: str,
        token: Optional[str],
        status: Optional[PasswordStatus],
        status_loading: bool,
        email: Optional[str] = None
    ) -> GuardDecision:
        """
        Args:
            path: Requested page path
            token: Login token, or None when signed out
            status: Latest password status, None if not (yet) known
            status_loading: Whether a status fetch is in flight
            email: Account email carried into the reset redirect

        Returns:
            GuardDecision
        """
        if not token:
            return GuardDecision(state=UNAUTHENTICATED, redirect_to=LOGIN_PATH)

        # Exemption is checked on every evaluation so moving onto an exempt page unblocks it
        if self.is_exempt(path):
            return GuardDecision(state=AUTHORIZED)

        if status_loading:
            return GuardDecision(state=CHECKING_PASSWORD_STATUS)

        if status is not None and status.requires_action:
            message = EXPIRED_MESSAGE if status.is_expired else MUST_CHANGE_MESSAGE
            return GuardDecision(
                state=PASSWORD_ACTION_REQUIRED,
                redirect_to=FORGOT_PASSWORD_PATH,
                redirect_state={"expired": True, "email": email, "message": message},
            )

        return GuardDecision(state=AUTHORIZED)


# ==================== ASGI Middleware ====================

class RouteGuardMiddleware:
    """
    Pure ASGI middleware applying RouteGuard to protected page requests.

    The token comes from an "Authorization: Bearer" header or the "token"
    cookie, read per request through AuthSession. Password status is fetched through the RentalApiClient found on
    app.state.api_client. Blocked navigations get a 307 redirect.

    Pages under /admin additionally require the "userRole" cookie to be
    "admin".
    """

    def __init__(self, app, protected_prefixes: Optional[Iterable[str]] = None, guard: Optional[RouteGuard] = None):
        self.app = app
        self.protected_prefixes = list(protected_prefixes) if protected_prefixes is not None else PROTECTED_PREFIXES
        self.guard = guard or RouteGuard()

    async def __call__(self, scope, receive, send):
        if scope["type"] != "http" or scope.get("method") == "OPTIONS":
            await self.app(scope, receive, send)
            return

        path = scope.get("path", "")
        if not _matches_prefix(path, self.protected_prefixes):
            await self.app(scope, receive, send)
            return

        connection = HTTPConnection(scope)
        session = AuthSession.from_credentials(connection.cookies, connection.headers.get("authorization"))
        token = session.get_token()

        if not token:
            await self._redirect(send, self.guard.evaluate(path, None, None, False).redirect_url())
            return

        if _matches_prefix(path, ADMIN_PREFIXES) and session.get_role() != "admin":
            logger.info(f"Non-admin navigation to {path} redirected to login")
            await self._redirect(send, LOGIN_PATH)
            return

        status = None
        if not self.guard.is_exempt(path):
            status = await self._fetch_status(scope, token)

        email = session.get_email()
        if status is not None:
            email = email or (status.model_extra or {}).get("email")
        if email:
            set_account_email(email)

        decision = self.guard.evaluate(path, token, status, False, email=email)
        if not decision.allowed:
            logger.info(f"Route guard: {path} -> {decision.state}")
            await self._redirect(send, decision.redirect_url())
            return

        await self.app(scope, receive, send)

    async def _fetch_status(self, scope, token: str) -> Optional[PasswordStatus]:
        app = scope.get("app")
        api_client = getattr(getattr(app, "state", None), "api_client", None)
        if api_client is None:
            logger.warning("Route guard has no api_client on app.state; skipping password status check")
            return None

        tracker = PasswordStatusTracker(api_client, lambda: token)
        status = await tracker.fetch()
        if tracker.error:
            # Unknown status does not block navigation
            logger.warning(f"Password status unavailable for route guard: {tracker.error}")
        return status

    async def _redirect(self, send, location: Optional[str]):
        location = location or LOGIN_PATH
        await send({
            "type": "http.response.start",
            "status": 307,
            "headers": [
                (b"location", location.encode("latin-1")),
                (b"content-length", b"0"),
            ],
        })
        await send({"type": "http.response.body", "body": b""})
