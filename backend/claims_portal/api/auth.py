"""
Authentication endpoints for the portal landing page.

- POST /login           - Sign in and get the portal destination for the role
- POST /session         - Resolve the destination for an existing session
- POST /logout          - Sign out (best effort)
- POST /password-reset  - Send password reset instructions
"""

import logging
from typing import Optional

from fastapi import APIRouter, Cookie, Depends, Header, Request, Response
from fastapi.security import HTTPAuthorizationCredentials

from claims_portal.api import schemas
from claims_portal.api.deps import bearer_scheme, get_role_resolver, load_identity, resolve_user
from claims_portal.core.config import settings
from claims_portal.core.exceptions import (
    AuthenticationError,
    AuthorizationError,
    PlatformAPIError,
    ValidationError,
)
from claims_portal.services.auth_client import AuthClient, get_auth_client
from claims_portal.services.roles import UNSUPPORTED_ROLE_MESSAGE, RoleResolver, route_for

logger = logging.getLogger(__name__)

router = APIRouter()

LOGOUT_FLAG_COOKIE = "justLoggedOut"


def _is_truthy(value: Optional[str]) -> bool:
    return (value or "").strip().lower() == "true"


def _request_origin(request: Request) -> str:
    origin = request.headers.get("origin") or str(request.base_url)
    return origin.rstrip("/")


@router.post("/login", response_model=schemas.LoginResponse)
async def login(
    payload: schemas.LoginRequest,
    auth: AuthClient = Depends(get_auth_client),
    resolver: RoleResolver = Depends(get_role_resolver),
):
    """
    Sign in with email and password.

    Returns the session tokens and the portal path for the user's role.
    """
    email = (payload.email or "").strip()
    if not email or not payload.password:
        raise ValidationError("Enter your email address and password to continue.")

    try:
        session = await auth.sign_in_with_password(email, payload.password)
    except PlatformAPIError as e:
        if e.status is None or e.status >= 500:
            raise
        if e.detail == "Invalid login credentials":
            raise AuthenticationError("The email or password you entered is incorrect.") from e
        raise AuthenticationError(e.detail or "Unable to sign you in right now. Please try again.") from e

    access_token = session.get("access_token")
    identity = session.get("user")
    if not access_token:
        raise AuthenticationError("Authentication succeeded but no user data was returned.")
    if not identity:
        identity = await auth.get_user(access_token)
    identity["access_token"] = access_token

    user = await resolve_user(identity, resolver)
    destination = route_for(user.role)
    if destination is None:
        raise AuthorizationError(UNSUPPORTED_ROLE_MESSAGE)

    logger.info(f"User {user.id} signed in as {user.role.value}")
    return schemas.LoginResponse(
        access_token=access_token,
        refresh_token=session.get("refresh_token"),
        user_id=user.id,
        email=user.email,
        role=user.role.value,
        redirect=destination,
    )


@router.post("/session", response_model=schemas.SessionResponse)
async def restore_session(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    just_logged_out: Optional[str] = Cookie(default=None, alias=LOGOUT_FLAG_COOKIE),
    logged_out_header: Optional[str] = Header(default=None, alias="X-Just-Logged-Out"),
    auth: AuthClient = Depends(get_auth_client),
    resolver: RoleResolver = Depends(get_role_resolver),
):
    """
    Silently resolve where an existing session should go.

    Right after a sign-out the landing page must not bounce the user back
    into a portal, so no destination is returned while the flag is set.
    """
    if _is_truthy(just_logged_out) or _is_truthy(logged_out_header):
        return schemas.SessionResponse(authenticated=False)
    if credentials is None or not credentials.credentials:
        return schemas.SessionResponse(authenticated=False)

    try:
        identity = await load_identity(credentials.credentials, auth)
        user = await resolve_user(identity, resolver)
    except (AuthenticationError, AuthorizationError) as e:
        logger.debug(f"Session not restored: {e.message}")
        return schemas.SessionResponse(authenticated=False)

    return schemas.SessionResponse(
        authenticated=True,
        role=user.role.value,
        redirect=route_for(user.role),
    )


@router.post("/logout", response_model=schemas.MessageResponse)
async def logout(
    response: Response,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    auth: AuthClient = Depends(get_auth_client),
):
    """Sign out; always succeeds and flags the landing page for a moment."""
    response.set_cookie(
        LOGOUT_FLAG_COOKIE,
        "true",
        max_age=settings.logout_flag_seconds,
        samesite="lax",
    )

    if credentials is not None and credentials.credentials:
        try:
            await auth.sign_out(credentials.credentials)
        except PlatformAPIError as e:
            logger.warning(f"Failed to sign out: {e.detail or e.message}")

    return schemas.MessageResponse(message="Signed out")


@router.post("/password-reset", response_model=schemas.MessageResponse)
async def password_reset(
    payload: schemas.PasswordResetRequest,
    request: Request,
    auth: AuthClient = Depends(get_auth_client),
):
    """Send password reset instructions that return to ``/reset-password``."""
    email = (payload.email or "").strip()
    if not email:
        raise ValidationError("Enter your email first so we can send reset instructions.")

    await auth.reset_password_for_email(email, redirect_to=f"{_request_origin(request)}/reset-password")
    logger.info(f"Password reset requested for {email}")
    return schemas.MessageResponse(message="Check your inbox for a password reset email.")
