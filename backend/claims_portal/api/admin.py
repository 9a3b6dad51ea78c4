"""
Admin endpoints for provisioning portal accounts.
"""

import logging

from fastapi import APIRouter, Depends, Request

from claims_portal.api import schemas
from claims_portal.api.deps import CurrentUser, require_role
from claims_portal.core.config import settings
from claims_portal.core.exceptions import ConflictError, PlatformAPIError, ValidationError
from claims_portal.services.auth_client import AuthClient, get_auth_client
from claims_portal.services.roles import Role, normalize_selection

logger = logging.getLogger(__name__)

router = APIRouter()

ROLE_LABELS = {
    "admin": "Platform administrator",
    "car-company": "Car company partner",
    "insurance-company": "Insurance company partner",
}


def validate_signup(payload: schemas.SignupRequest) -> str:
    """Check the signup form; returns the trimmed email."""
    email = (payload.email or "").strip()
    if not email:
        raise ValidationError("Enter an email address to continue.")
    if not payload.password or len(payload.password) < settings.password_min_length:
        raise ValidationError(f"Choose a password with at least {settings.password_min_length} characters.")
    if payload.password != payload.confirm_password:
        raise ValidationError("Passwords do not match. Please re-enter and try again.")
    if not (payload.role or "").strip():
        raise ValidationError("Select the portal role that should be assigned to this account.")
    return email


@router.post("/signup", response_model=schemas.SignupResponse)
async def signup(
    payload: schemas.SignupRequest,
    request: Request,
    admin: CurrentUser = Depends(require_role(Role.admin)),
    auth: AuthClient = Depends(get_auth_client),
):
    """
    Create a portal account with its role stored in the user metadata.
    """
    email = validate_signup(payload)
    db_role, metadata_role = normalize_selection(payload.role)
    metadata = {
        "role": db_role,
        "portal_role": metadata_role,
        "portalRole": metadata_role,
    }
    origin = (request.headers.get("origin") or str(request.base_url)).rstrip("/")

    try:
        result = await auth.sign_up(email, payload.password, metadata=metadata, redirect_to=f"{origin}/")
    except PlatformAPIError as e:
        if e.code == "user_already_exists":
            raise ConflictError("An account with this email already exists.") from e
        raise

    created = result.get("user") or result
    session_token = result.get("access_token")
    if session_token:
        # Some platform versions drop signup metadata; write it again on the new session
        try:
            await auth.update_user(session_token, metadata)
        except PlatformAPIError as e:
            logger.warning(f"Could not update metadata for {email}: {e.detail or e.message}")

    label = ROLE_LABELS.get(metadata_role, "new user")
    confirmed = bool(created.get("email_confirmed_at"))
    if confirmed:
        message = f"Account created successfully. The {label} can now sign in."
    else:
        message = f"Account request sent. Ask the {label} to check {email} for the confirmation email."

    logger.info(f"Admin {admin.id} provisioned {email} as {db_role}")
    return schemas.SignupResponse(
        user_id=created.get("id"),
        email=email,
        role=db_role,
        portal_role=metadata_role,
        confirmed=confirmed,
        message=message,
    )
