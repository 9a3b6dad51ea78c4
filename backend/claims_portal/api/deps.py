"""
Shared FastAPI dependencies: sessions, identities and per-portal services.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from fastapi import Depends, Query, WebSocket, WebSocketException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from claims_portal.core.database import AsyncSessionLocal, get_db
from claims_portal.core.exceptions import AuthenticationError, AuthorizationError, BackendError, PlatformAPIError
from claims_portal.repositories import ClaimRepository
from claims_portal.services.auth_client import AuthClient, get_auth_client
from claims_portal.services.claim_service import SESSION_EXPIRED_MESSAGE, PortalClaimService
from claims_portal.services.notifications import NotificationClient, get_notification_client
from claims_portal.services.roles import NO_ROLE_MESSAGE, Role, RoleResolver, route_for
from claims_portal.services.storage import DocumentLocator, get_storage_client
from claims_portal.services.workflow import CAR_COMPANY, INSURANCE_COMPANY, ReviewerTrack

logger = logging.getLogger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)


@dataclass(frozen=True)
class Portal:
    slug: str
    role: Role
    track: ReviewerTrack


PORTALS: Dict[str, Portal] = {
    "car-company": Portal("car-company", Role.car_company, CAR_COMPANY),
    "insurance-company": Portal("insurance-company", Role.insurance_company, INSURANCE_COMPANY),
}


@dataclass
class CurrentUser:
    id: str
    email: Optional[str]
    role: Role
    access_token: str
    identity: Dict[str, Any] = field(default_factory=dict, repr=False)


def get_claim_repository(db: AsyncSession = Depends(get_db)) -> ClaimRepository:
    return ClaimRepository(db)


def get_role_resolver(repository: ClaimRepository = Depends(get_claim_repository)) -> RoleResolver:
    return RoleResolver(repository)


def get_document_locator() -> DocumentLocator:
    return DocumentLocator(get_storage_client())


async def load_identity(access_token: str, auth: AuthClient) -> Dict[str, Any]:
    """
    Look up the identity behind an access token.

    Raises:
        AuthenticationError: the token is missing, expired or revoked
    """
    try:
        identity = await auth.get_user(access_token)
    except PlatformAPIError as e:
        if e.status is not None and 400 <= e.status < 500:
            raise AuthenticationError(SESSION_EXPIRED_MESSAGE, redirect="/") from e
        raise

    if not identity or not identity.get("id"):
        raise AuthenticationError(SESSION_EXPIRED_MESSAGE, redirect="/")
    identity["access_token"] = access_token
    return identity


async def get_current_identity(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    auth: AuthClient = Depends(get_auth_client),
) -> Dict[str, Any]:
    if credentials is None or not credentials.credentials:
        raise AuthenticationError(SESSION_EXPIRED_MESSAGE, redirect="/")
    return await load_identity(credentials.credentials, auth)


async def resolve_user(identity: Dict[str, Any], resolver: RoleResolver) -> CurrentUser:
    role = await resolver.resolve(identity)
    if role is None:
        raise AuthorizationError(NO_ROLE_MESSAGE)
    return CurrentUser(
        id=identity["id"],
        email=identity.get("email"),
        role=role,
        access_token=identity.get("access_token", ""),
        identity=identity,
    )


def require_role(*roles: Role):
    """Dependency factory admitting only identities with one of ``roles``."""

    async def dependency(
        identity: Dict[str, Any] = Depends(get_current_identity),
        resolver: RoleResolver = Depends(get_role_resolver),
    ) -> CurrentUser:
        user = await resolve_user(identity, resolver)
        if user.role not in roles:
            logger.info(f"User {user.id} with role {user.role.value} refused access")
            raise AuthorizationError(
                "You do not have access to this portal.",
                redirect=route_for(user.role) or "/",
            )
        return user

    return dependency


def portal_service_dependency(portal: Portal):
    """Dependency factory building the claim service for one portal."""

    def dependency(
        repository: ClaimRepository = Depends(get_claim_repository),
        notifier: NotificationClient = Depends(get_notification_client),
    ) -> PortalClaimService:
        return PortalClaimService(portal.track, repository, notifier)

    return dependency


async def get_websocket_user(
    websocket: WebSocket,
    token: Optional[str] = Query(default=None),
    auth: AuthClient = Depends(get_auth_client),
) -> CurrentUser:
    """
    Authenticate a WebSocket from its ``token`` query parameter.

    The role lookup runs in its own session, closed before the socket is
    served.
    """
    if not token:
        raise WebSocketException(code=status.WS_1008_POLICY_VIOLATION, reason=SESSION_EXPIRED_MESSAGE)
    try:
        identity = await load_identity(token, auth)
        async with AsyncSessionLocal() as session:
            return await resolve_user(identity, RoleResolver(ClaimRepository(session)))
    except (AuthenticationError, AuthorizationError) as e:
        raise WebSocketException(code=status.WS_1008_POLICY_VIOLATION, reason=e.message) from e
    except BackendError as e:
        raise WebSocketException(code=status.WS_1011_INTERNAL_ERROR, reason=e.message) from e
