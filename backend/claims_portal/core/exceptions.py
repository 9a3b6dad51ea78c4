"""Exception hierarchy for the claims portal.

Each class carries the HTTP status it maps to and the message shown to the
reviewer. Handlers in ``claims_portal.main`` turn them into JSON responses.
"""

from typing import Optional


class PortalError(Exception):
    """Base exception for all portal errors."""

    status_code = 500

    def __init__(self, message: str, detail: Optional[str] = None, redirect: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.detail = detail
        self.redirect = redirect


class ConfigurationError(PortalError):
    """Platform connection parameters could not be loaded."""

    status_code = 500


class AuthenticationError(PortalError):
    """Credentials were rejected or the session is no longer valid."""

    status_code = 401


class AuthorizationError(PortalError):
    """The identity has no role that grants access to the requested portal."""

    status_code = 403

    def __init__(self, message: str, detail: Optional[str] = None, redirect: Optional[str] = "/"):
        super().__init__(message, detail=detail, redirect=redirect)


class NotFoundError(PortalError):
    """A claim, document or audit entry does not exist."""

    status_code = 404


class ValidationError(PortalError):
    """Request input failed a form-level check."""

    status_code = 422


class ConflictError(PortalError):
    """The platform reported the record already exists."""

    status_code = 409


class WorkflowError(PortalError):
    """A claim or document transition was refused by its guard."""

    status_code = 409


class BackendError(PortalError):
    """A query or mutation against the hosted platform failed."""

    status_code = 502


class PlatformAPIError(BackendError):
    """An HTTP call to the platform's auth or storage API failed."""

    def __init__(
        self,
        message: str,
        detail: Optional[str] = None,
        status: Optional[int] = None,
        code: Optional[str] = None,
    ):
        super().__init__(message, detail=detail)
        self.status = status
        self.code = code
