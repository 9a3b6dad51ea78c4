"""
Role resolution for portal routing.

Historical accounts carry their role under several metadata keys and in
several profile tables, with inconsistent spelling ("Car Company",
"car-company", "CAR_COMPANY"...). Matching is token based on purpose.
"""

import logging
import re
from enum import Enum
from typing import Any, Dict, Iterable, Optional, Tuple

from claims_portal.core.exceptions import BackendError

logger = logging.getLogger(__name__)


class Role(str, Enum):
    """Canonical portal roles."""
    admin = "admin"
    car_company = "car_company"
    insurance_company = "insurance_company"
    user = "user"


PORTAL_ROUTES: Dict[Role, str] = {
    Role.car_company: "/car-company/",
    Role.insurance_company: "/insurance-company/",
    Role.admin: "/admin-signup/",
}

METADATA_ROLE_KEYS = ("role", "portal_role", "portalRole")

# Looked up in order when the identity metadata carries no role
FALLBACK_ROLE_TABLES = (
    ("profiles", "role"),
    ("portal_profiles", "role"),
    ("user_profiles", "role"),
)

NO_ROLE_MESSAGE = (
    "Your account does not have a portal role assigned. "
    "Please contact the InsureVis support team to request access."
)
UNSUPPORTED_ROLE_MESSAGE = "Unsupported role detected for this portal."

_SEPARATORS = re.compile(r"[\s\-]+")
_SELECTION_SEPARATORS = re.compile(r"[_\s]+")


def normalize_role(value: Any) -> Optional[Role]:
    """
    Map a free-form role string to a canonical role.

    Args:
        value: Raw role value from metadata or a profile row

    Returns:
        Canonical role, or None when the value is empty or unrecognised
    """
    if not isinstance(value, str):
        return None

    normalized = _SEPARATORS.sub("_", value.strip().lower())
    if not normalized:
        return None

    if "car" in normalized and "company" in normalized:
        return Role.car_company
    if "insurance" in normalized and "company" in normalized:
        return Role.insurance_company
    if "admin" in normalized:
        return Role.admin
    if normalized == Role.user.value:
        return Role.user
    return None


def _metadata_candidates(metadata: Optional[Dict[str, Any]]) -> Iterable[Any]:
    if not metadata:
        return
    for key in METADATA_ROLE_KEYS:
        yield metadata.get(key)
    roles = metadata.get("roles")
    if isinstance(roles, list) and roles:
        yield roles[0]


def extract_role_from_metadata(identity: Dict[str, Any]) -> Optional[Role]:
    """Return the first role found in ``app_metadata`` then ``user_metadata``."""
    for section in ("app_metadata", "user_metadata"):
        for candidate in _metadata_candidates(identity.get(section)):
            role = normalize_role(candidate)
            if role:
                return role
    return None


def route_for(role: Optional[Role]) -> Optional[str]:
    """Portal entry path for a role, or None when the role has no portal."""
    if role is None:
        return None
    return PORTAL_ROUTES.get(role)


def normalize_selection(value: Optional[str]) -> Tuple[str, str]:
    """
    Map the role picked on the admin signup form to stored values.

    Returns:
        ``(db_role, metadata_role)``, e.g. ``("car_company", "car-company")``
    """
    normalized = _SELECTION_SEPARATORS.sub("-", (value or "").strip().lower())
    normalized = re.sub(r"-+", "-", normalized)

    if "car" in normalized and "company" in normalized:
        return Role.car_company.value, "car-company"
    if "insurance" in normalized and "company" in normalized:
        return Role.insurance_company.value, "insurance-company"
    if "admin" in normalized:
        return Role.admin.value, "admin"
    return Role.user.value, normalized or "user"


class RoleResolver:
    """Resolves an authenticated identity to a portal role."""

    def __init__(self, repository):
        """
        Args:
            repository: Object exposing ``lookup_role(table, column, identity_id)``
        """
        self.repository = repository

    async def resolve(self, identity: Dict[str, Any]) -> Optional[Role]:
        role = extract_role_from_metadata(identity)
        if role:
            return role

        identity_id = identity.get("id")
        if not identity_id:
            return None

        for table, column in FALLBACK_ROLE_TABLES:
            try:
                value = await self.repository.lookup_role(table, column, identity_id)
            except BackendError as e:
                logger.debug(f"Role lookup in {table} skipped: {e.message}")
                continue

            role = normalize_role(value)
            if role:
                logger.info(f"Resolved role {role.value} for {identity_id} from {table}")
                return role

        return None
