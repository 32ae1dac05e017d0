"""
Portal Account Routes

Endpoints the browser shell calls for login, password lifecycle,
registration and security state. Every response uses the standard
{success, data, message, error} envelope; expected failures come back with
success=false and HTTP 200, unexpected ones as sanitized 500s.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Query, Request, Response
from pydantic import BaseModel, ConfigDict, Field
from slowapi import Limiter
from slowapi.util import get_remote_address

from rental_portal.services.auth_session import AuthSession
from rental_portal.services.login_flow import LoginFlow
from rental_portal.services.password_flows import ChangePasswordFlow, ForgotPasswordFlow, ResetPasswordFlow
from rental_portal.services.password_status import PasswordStatusTracker
from rental_portal.services.registration_flow import RegistrationFlow
from rental_portal.services.rental_api_client import RentalApiClient
from rental_portal.services.security_store import SecurityStore, get_security_store
from rental_portal.utils.error_handler import log_and_raise
from rental_portal.utils.password_notices import build_lockout_notice, build_password_banner, build_status_card
from rental_portal.utils.password_policy import (
    assess_password_strength,
    calculate_password_entropy,
    get_password_suggestions,
    get_time_to_crack,
    validate_password,
)
from rental_portal.utils.response_models import error_response, flow_response, success_response

logger = logging.getLogger(__name__)

# Per-IP limits on the endpoints that can be used for guessing or email abuse
limiter = Limiter(key_func=get_remote_address)

portal_router = APIRouter(prefix="/api/portal", tags=["Portal Account"])


# ==================== Pydantic Models ====================

class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class LoginRequest(_CamelModel):
    # Plain str, not EmailStr: emails are compared case-sensitively
    email: str = ""
    password: str = ""


class ChangePasswordRequest(_CamelModel):
    current_password: str = Field(default="", alias="currentPassword")
    new_password: str = Field(default="", alias="newPassword")
    confirm_password: str = Field(default="", alias="confirmPassword")


class EmailRequest(_CamelModel):
    email: str = ""


class OtpRequest(_CamelModel):
    email: str = ""
    otp: str = ""


class ResetPasswordRequest(_CamelModel):
    email: Optional[str] = None
    new_password: str = Field(default="", alias="newPassword")
    confirm_password: str = Field(default="", alias="confirmPassword")


class RegisterRequest(_CamelModel):
    full_name: str = Field(default="", alias="fullName")
    phone: str = ""
    address: str = ""
    email: str = ""
    password: str = ""
    confirm_password: str = Field(default="", alias="confirmPassword")
    captcha_token: Optional[str] = Field(default=None, alias="captchaToken")


class PasswordAssessRequest(_CamelModel):
    password: str = ""


# ==================== Dependencies ====================

def get_store() -> SecurityStore:
    return get_security_store()


def get_api_client(request: Request) -> RentalApiClient:
    return request.app.state.api_client


def get_session(request: Request) -> AuthSession:
    """The calling browser's own login session (cookies or Bearer header)."""
    return AuthSession.from_request(request)


def _apply_session(request: Request, response: Response, session: AuthSession) -> None:
    config = getattr(request.app.state, "config", None)
    session.apply_to(response, secure=bool(config and config.cookie_secure))


# ==================== Login / Logout ====================

@portal_router.post("/login")
@limiter.limit("20/minute")
async def login(
    request: Request,
    response: Response,
    login_data: LoginRequest,
    store: SecurityStore = Depends(get_store),
    api_client: RentalApiClient = Depends(get_api_client),
    session: AuthSession = Depends(get_session),
    user_agent: Optional[str] = Header(None)
):
    """
    Sign in through the remote API.

    Lockout, attempt counting and password-expiry redirects are handled
    locally before and after the remote call.
    """
    try:
        result = await LoginFlow(store, api_client, session).login(
            login_data.email, login_data.password, user_agent=user_agent
        )
    except Exception as e:
        log_and_raise(500, "logging in", e, logger)
    _apply_session(request, response, session)
    return flow_response(result)


@portal_router.post("/logout")
async def logout(
    request: Request,
    response: Response,
    store: SecurityStore = Depends(get_store),
    api_client: RentalApiClient = Depends(get_api_client),
    session: AuthSession = Depends(get_session)
):
    result = await LoginFlow(store, api_client, session).logout()
    _apply_session(request, response, session)
    return flow_response(result)


# ==================== Password Lifecycle ====================

@portal_router.post("/change-password")
async def change_password(
    body: ChangePasswordRequest,
    store: SecurityStore = Depends(get_store),
    api_client: RentalApiClient = Depends(get_api_client),
    session: AuthSession = Depends(get_session)
):
    try:
        result = await ChangePasswordFlow(store, api_client, session).submit(
            body.current_password, body.new_password, body.confirm_password
        )
    except Exception as e:
        log_and_raise(500, "changing password", e, logger)
    return flow_response(result)


@portal_router.post("/forgot-password")
@limiter.limit("10/minute")
async def forgot_password(
    request: Request,
    body: EmailRequest,
    api_client: RentalApiClient = Depends(get_api_client)
):
    result = await ForgotPasswordFlow(api_client).request_otp(body.email)
    return flow_response(result)


@portal_router.post("/verify-reset-otp")
async def verify_reset_otp(
    body: OtpRequest,
    api_client: RentalApiClient = Depends(get_api_client)
):
    result = await ForgotPasswordFlow(api_client).verify_otp(body.email, body.otp)
    return flow_response(result)


@portal_router.post("/resend-reset-otp")
@limiter.limit("10/minute")
async def resend_reset_otp(
    request: Request,
    body: EmailRequest,
    api_client: RentalApiClient = Depends(get_api_client)
):
    result = await ForgotPasswordFlow(api_client).resend_otp(body.email)
    return flow_response(result)


@portal_router.post("/reset-password")
async def reset_password(
    body: ResetPasswordRequest,
    store: SecurityStore = Depends(get_store),
    api_client: RentalApiClient = Depends(get_api_client)
):
    try:
        result = await ResetPasswordFlow(store, api_client).submit(
            body.email, body.new_password, body.confirm_password
        )
    except Exception as e:
        log_and_raise(500, "resetting password", e, logger)
    return flow_response(result)


# ==================== Registration ====================

@portal_router.post("/register")
async def register(
    body: RegisterRequest,
    store: SecurityStore = Depends(get_store),
    api_client: RentalApiClient = Depends(get_api_client)
):
    result = await RegistrationFlow(store, api_client).register(body.model_dump(by_alias=True))
    return flow_response(result)


@portal_router.post("/verify-otp")
async def verify_otp(
    body: OtpRequest,
    store: SecurityStore = Depends(get_store),
    api_client: RentalApiClient = Depends(get_api_client)
):
    result = await RegistrationFlow(store, api_client).verify_otp(body.email, body.otp)
    return flow_response(result)


@portal_router.post("/resend-otp")
async def resend_otp(
    body: EmailRequest,
    store: SecurityStore = Depends(get_store),
    api_client: RentalApiClient = Depends(get_api_client)
):
    result = await RegistrationFlow(store, api_client).resend_otp(body.email)
    return flow_response(result)


# ==================== Password Tools ====================

@portal_router.post("/password/assess")
async def assess_password(body: PasswordAssessRequest, store: SecurityStore = Depends(get_store)):
    """Strength meter data for a candidate password. Nothing is stored."""
    policy = store.settings
    strength = assess_password_strength(body.password, policy)
    violations = validate_password(body.password, policy)

    return success_response(data={
        "strength": strength.to_dict(),
        "entropy": calculate_password_entropy(body.password, policy),
        "timeToCrack": get_time_to_crack(body.password, policy),
        "suggestions": get_password_suggestions(strength, policy),
        "violations": violations,
        "isValid": not violations,
    })


@portal_router.get("/password-status")
async def password_status(
    api_client: RentalApiClient = Depends(get_api_client),
    session: AuthSession = Depends(get_session),
    store: SecurityStore = Depends(get_store)
):
    """Current password status plus the banner and profile card built from it."""
    tracker = PasswordStatusTracker(api_client, session.get_token)
    await tracker.fetch()

    banner = build_password_banner(tracker.status)
    return success_response(data={
        **tracker.snapshot(),
        "banner": banner.model_dump() if banner else None,
        "card": build_status_card(tracker, store.settings),
    })


# ==================== Security State ====================

@portal_router.get("/security/lockout")
async def lockout_status(
    email: str = Query(...),
    store: SecurityStore = Depends(get_store)
):
    if not store.is_ready:
        return success_response(data={"ready": False}, message="Loading security data, please wait...")

    lock = store.is_account_locked(email)
    return success_response(data={
        "ready": True,
        **lock.to_dict(),
        "remainingAttempts": store.get_remaining_attempts(email),
        "notice": build_lockout_notice(store, email),
    })


@portal_router.get("/session")
async def session_status(
    request: Request,
    store: SecurityStore = Depends(get_store),
    session: AuthSession = Depends(get_session)
):
    """The caller's session activity; tick lets countdown displays know when to refresh."""
    ticker = getattr(request.app.state, "ticker", None)
    return success_response(data={
        "authenticated": session.is_authenticated(),
        "role": session.get_role() if session.is_authenticated() else None,
        "tick": ticker.counter if ticker else 0,
        **store.get_session_status(session.key).to_dict(),
    })


@portal_router.post("/session/activity")
async def record_activity(
    store: SecurityStore = Depends(get_store),
    session: AuthSession = Depends(get_session)
):
    """Extend the caller's session (user activity seen by the shell)."""
    if not session.key:
        response = error_response("Not signed in")
        response["data"] = {"active": False}
        return response

    store.update_activity(session.key)
    return success_response(data=store.get_session_status(session.key).to_dict())


@portal_router.get("/security/events")
async def security_events(
    limit: int = Query(100, ge=1, le=100),
    store: SecurityStore = Depends(get_store)
):
    events = [event.to_dict() for event in store.security_events[:limit]]
    return success_response(data={"events": events, "count": len(events)})


@portal_router.get("/security/debug")
async def security_debug(request: Request, store: SecurityStore = Depends(get_store)):
    """Raw security state. Only served when security.debug_endpoint is enabled."""
    config = getattr(request.app.state, "config", None)
    if not (config and config.debug_endpoint_enabled):
        raise HTTPException(status_code=404, detail="Not Found")
    return success_response(data=store.debug_state())
