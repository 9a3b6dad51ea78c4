"""
Public connection parameters for browser front ends.
"""

from fastapi import APIRouter

from claims_portal.api import schemas
from claims_portal.core.config import settings
from claims_portal.core.exceptions import ConfigurationError

router = APIRouter()


@router.get("/backend", response_model=schemas.BackendConfigResponse)
async def backend_config():
    """Platform URL and anon key, in the envelope the front ends expect."""
    if not settings.backend_url or not settings.backend_anon_key:
        raise ConfigurationError("Backend configuration is not available")

    return schemas.BackendConfigResponse(
        success=True,
        data=schemas.BackendConfigData(url=settings.backend_url, anonKey=settings.backend_anon_key),
    )
