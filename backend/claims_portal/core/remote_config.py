"""
Loads the platform connection parameters from a configuration endpoint.

The endpoint answers ``{"success": true, "data": {"url": ..., "anonKey": ...}}``.
It is read once at startup; any failure stops the service from starting.
"""

import logging
from typing import Optional, Tuple

import httpx

from claims_portal.core.config import Settings, settings
from claims_portal.core.exceptions import ConfigurationError

logger = logging.getLogger(__name__)


async def fetch_backend_config(
    config_url: str,
    http_client: Optional[httpx.AsyncClient] = None,
    timeout: int = settings.backend_timeout,
) -> Tuple[str, str]:
    """
    Fetch the platform URL and anon key.

    Returns:
        ``(url, anon_key)``

    Raises:
        ConfigurationError: unreachable endpoint, non-2xx answer or malformed body
    """
    client = http_client or httpx.AsyncClient(timeout=httpx.Timeout(timeout=timeout))
    try:
        response = await client.get(config_url)
        response.raise_for_status()
        body = response.json()
    except httpx.HTTPStatusError as e:
        raise ConfigurationError(
            "Failed to load backend configuration",
            detail=f"{e.response.status_code} from {config_url}",
        ) from e
    except (httpx.RequestError, ValueError) as e:
        raise ConfigurationError("Failed to load backend configuration", detail=str(e)) from e
    finally:
        if http_client is None:
            await client.aclose()

    if not isinstance(body, dict) or not body.get("success") or not isinstance(body.get("data"), dict):
        raise ConfigurationError("Failed to load backend configuration", detail="Unexpected response shape")

    url, anon_key = body["data"].get("url"), body["data"].get("anonKey")
    if not url or not anon_key:
        raise ConfigurationError("Failed to load backend configuration", detail="Missing url or anonKey")

    return url, anon_key


async def apply_remote_config(target: Settings = settings, http_client: Optional[httpx.AsyncClient] = None) -> bool:
    """Overwrite ``backend_url``/``backend_anon_key`` when a config URL is set."""
    if not target.backend_config_url:
        return False

    url, anon_key = await fetch_backend_config(target.backend_config_url, http_client=http_client)
    target.backend_url = url
    target.backend_anon_key = anon_key
    logger.info(f"Loaded backend configuration from {target.backend_config_url}")
    return True
