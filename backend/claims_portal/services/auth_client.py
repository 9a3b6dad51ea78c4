"""
Client for the hosted platform's auth REST API.

Wraps password sign-in, session lookup, sign-up, metadata updates, password
reset mail and sign-out. Errors from the platform are raised as
``PlatformAPIError`` carrying the platform's error code when it sends one.
"""

import logging
from typing import Any, Dict, Optional

import httpx

from claims_portal.core.config import settings
from claims_portal.core.exceptions import PlatformAPIError

logger = logging.getLogger(__name__)


def _error_from_response(response: httpx.Response, action: str) -> PlatformAPIError:
    try:
        body = response.json()
    except ValueError:
        body = {}
    if not isinstance(body, dict):
        body = {}

    code = body.get("error_code") or body.get("code") or body.get("error")
    message = (
        body.get("msg")
        or body.get("message")
        or body.get("error_description")
        or response.text
        or f"HTTP {response.status_code}"
    )
    return PlatformAPIError(
        f"Auth {action} failed",
        detail=str(message),
        status=response.status_code,
        code=str(code) if code is not None else None,
    )


class AuthClient:
    """Async client for the platform auth endpoints (``/auth/v1``)."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        anon_key: Optional[str] = None,
        timeout: int = settings.backend_timeout,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        """
        Args:
            base_url: Platform URL (defaults to ``settings.backend_url``)
            anon_key: Public API key sent as ``apikey`` on every call
            timeout: Request timeout in seconds
            http_client: Preconfigured client, mainly for tests
        """
        self.base_url = (base_url or settings.backend_url).rstrip("/")
        self.anon_key = anon_key if anon_key is not None else settings.backend_anon_key

        self.client = http_client or httpx.AsyncClient(
            base_url=f"{self.base_url}/auth/v1",
            headers={"apikey": self.anon_key, "Content-Type": "application/json"},
            timeout=httpx.Timeout(timeout=timeout),
        )

    async def close(self):
        """Close the HTTP client."""
        await self.client.aclose()

    async def _request(
        self,
        method: str,
        path: str,
        action: str,
        access_token: Optional[str] = None,
        **kwargs,
    ) -> Dict[str, Any]:
        headers = kwargs.pop("headers", {})
        if access_token:
            headers["Authorization"] = f"Bearer {access_token}"

        try:
            response = await self.client.request(method, path, headers=headers, **kwargs)
        except httpx.RequestError as e:
            logger.error(f"Auth {action} connection error: {str(e)}")
            raise PlatformAPIError(f"Auth {action} failed", detail=str(e)) from e

        if response.status_code >= 400:
            error = _error_from_response(response, action)
            logger.warning(f"Auth {action} rejected: {response.status_code} {error.detail}")
            raise error

        if not response.content:
            return {}
        return response.json()

    async def sign_in_with_password(self, email: str, password: str) -> Dict[str, Any]:
        """
        Exchange email and password for a session.

        Returns:
            Session with ``access_token``, ``refresh_token`` and ``user``
        """
        return await self._request(
            "POST",
            "/token",
            "sign-in",
            params={"grant_type": "password"},
            json={"email": email, "password": password},
        )

    async def get_user(self, access_token: str) -> Dict[str, Any]:
        """Return the identity behind an access token."""
        return await self._request("GET", "/user", "session lookup", access_token=access_token)

    async def sign_up(
        self,
        email: str,
        password: str,
        metadata: Optional[Dict[str, Any]] = None,
        redirect_to: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Register a new account.

        Returns:
            The platform answer: a session with ``user`` when accounts are
            confirmed automatically, otherwise the bare user
        """
        params = {"redirect_to": redirect_to} if redirect_to else None
        return await self._request(
            "POST",
            "/signup",
            "sign-up",
            params=params,
            json={"email": email, "password": password, "data": metadata or {}},
        )

    async def update_user(self, access_token: str, metadata: Dict[str, Any]) -> Dict[str, Any]:
        return await self._request(
            "PUT",
            "/user",
            "user update",
            access_token=access_token,
            json={"data": metadata},
        )

    async def reset_password_for_email(self, email: str, redirect_to: str) -> None:
        await self._request(
            "POST",
            "/recover",
            "password reset",
            params={"redirect_to": redirect_to},
            json={"email": email},
        )

    async def sign_out(self, access_token: str, scope: str = "local") -> None:
        await self._request(
            "POST",
            "/logout",
            "sign-out",
            access_token=access_token,
            params={"scope": scope},
        )


# Global client instance
_auth_client: Optional[AuthClient] = None


def get_auth_client() -> AuthClient:
    """
    Get or create the global auth client.

    Created lazily so a platform URL loaded at startup is picked up.
    """
    global _auth_client

    if _auth_client is None:
        _auth_client = AuthClient()

    return _auth_client


async def close_auth_client() -> None:
    global _auth_client

    if _auth_client is not None:
        await _auth_client.close()
        _auth_client = None
