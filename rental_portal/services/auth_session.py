"""
Caller Login Session

Each browser keeps its own login: the bearer token, the account email and
the role travel with the caller's requests as cookies (or an Authorization
header) and are never shared between callers.

    AuthSession.from_request(request)  -> session of the calling browser
    session.save(token, user)          -> login; cookies set on the response
    session.clear()                    -> logout; cookies deleted
    session.apply_to(response)         -> write pending cookie changes
"""

import hashlib
import logging
from typing import Any, Dict, Mapping, Optional

logger = logging.getLogger(__name__)

TOKEN_COOKIE = "token"
ROLE_COOKIE = "userRole"
EMAIL_COOKIE = "email"
SESSION_COOKIES = (TOKEN_COOKIE, ROLE_COOKIE, EMAIL_COOKIE)

DEFAULT_ROLE = "user"


def bearer_token(authorization: Optional[str]) -> Optional[str]:
    """Token from an "Authorization: Bearer <token>" header value."""
    if not authorization:
        return None
    parts = authorization.split()
    if len(parts) != 2 or parts[0].lower() != "bearer":
        return None
    return parts[1]


def session_key(token: str) -> str:
    """Stable identifier for a token; the raw token is never kept server-side."""
    return hashlib.sha256(token.encode('utf-8')).hexdigest()


class AuthSession:
    """Login state of a single caller."""

    def __init__(
        self,
        token: Optional[str] = None,
        user: Optional[Dict[str, Any]] = None,
        role: Optional[str] = None
    ):
        self._token = token or None
        self._user = dict(user) if user else None
        self._role = role or (self._user or {}).get("role") or DEFAULT_ROLE
        self._dirty = False

    @classmethod
    def from_credentials(
        cls,
        cookies: Mapping[str, str],
        authorization: Optional[str] = None
    ) -> "AuthSession":
        """
        Rebuild the caller's session from its cookies and Authorization header.

        The header wins over the token cookie so API clients can call without
        cookies.
        """
        token = bearer_token(authorization) or cookies.get(TOKEN_COOKIE)
        if not token:
            return cls()

        email = cookies.get(EMAIL_COOKIE)
        role = cookies.get(ROLE_COOKIE) or DEFAULT_ROLE
        user = {"email": email, "role": role} if email else None
        return cls(token=token, user=user, role=role)

    @classmethod
    def from_request(cls, request) -> "AuthSession":
        return cls.from_credentials(request.cookies, request.headers.get("authorization"))

    # ---------- accessors ----------

    def get_token(self) -> Optional[str]:
        return self._token

    def get_user(self) -> Optional[Dict[str, Any]]:
        return dict(self._user) if self._user else None

    def get_email(self) -> Optional[str]:
        return (self._user or {}).get("email") or None

    def get_role(self) -> str:
        return self._role

    def is_authenticated(self) -> bool:
        return bool(self._token)

    @property
    def key(self) -> Optional[str]:
        """Session-activity key, None when signed out."""
        return session_key(self._token) if self._token else None

    # ---------- changes ----------

    def save(self, token: str, user: Optional[Dict[str, Any]]) -> None:
        """Record a fresh login."""
        user = dict(user or {})
        self._token = token or None
        self._user = user or None
        self._role = user.get("role") or DEFAULT_ROLE
        self._dirty = True

    def clear(self) -> None:
        self._token = None
        self._user = None
        self._role = DEFAULT_ROLE
        self._dirty = True

    def apply_to(self, response, secure: bool = False) -> None:
        """Write the session cookies (or their deletion) onto a response."""
        if not self._dirty:
            return

        if not self._token:
            for name in SESSION_COOKIES:
                response.delete_cookie(name, path="/")
            return

        response.set_cookie(TOKEN_COOKIE, self._token, path="/", httponly=True, samesite="lax", secure=secure)
        response.set_cookie(ROLE_COOKIE, self._role, path="/", samesite="lax", secure=secure)
        email = self.get_email()
        if email:
            response.set_cookie(EMAIL_COOKIE, email, path="/", samesite="lax", secure=secure)
        else:
            response.delete_cookie(EMAIL_COOKIE, path="/")
