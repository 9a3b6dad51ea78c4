"""
Main FastAPI application for the InsureVis claims review portals.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from claims_portal.core.config import settings
from claims_portal.core.database import async_engine
from claims_portal.core.exceptions import PortalError
from claims_portal.core.remote_config import apply_remote_config
from claims_portal.services.auth_client import close_auth_client
from claims_portal.services.notifications import close_notification_client
from claims_portal.services.storage import close_storage_client
from claims_portal.services.sync import ChangeFeed

logging.basicConfig(level=settings.log_level.upper(), format=settings.log_format)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.
    Handles startup and shutdown events.
    """
    # Startup; a broken config endpoint stops the service here
    await apply_remote_config(settings)

    logger.info(f"Starting {settings.app_name} v{settings.app_version}")
    logger.info(f"Environment: {settings.environment}")
    logger.info(f"Backend: {settings.backend_url}")
    logger.info(f"Database: {settings.postgres_host}:{settings.postgres_port}/{settings.postgres_db}")

    feed = None
    if settings.realtime_enabled:
        feed = ChangeFeed()
        await feed.start()
        realtime.manager.feed = feed

    yield

    # Shutdown
    logger.info("Shutting down application")
    realtime.manager.shutdown()
    if feed is not None:
        await feed.stop()
    await close_notification_client()
    await close_storage_client()
    await close_auth_client()
    await async_engine.dispose()


# Create FastAPI application
app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="Claim document verification and approval for car company and insurance partners",
    lifespan=lifespan,
    docs_url="/docs" if settings.debug else None,
    redoc_url="/redoc" if settings.debug else None,
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=settings.cors_allow_credentials,
    allow_methods=settings.cors_allow_methods,
    allow_headers=settings.cors_allow_headers,
)


@app.exception_handler(PortalError)
async def portal_error_handler(request: Request, exc: PortalError):
    """Render portal errors as ``{"error", "detail", "redirect"}``."""
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message} ({exc.detail})")
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.message, "detail": exc.detail, "redirect": exc.redirect},
    )


# Root endpoint
@app.get("/")
async def root():
    """Root endpoint - API information."""
    return {
        "name": settings.app_name,
        "version": settings.app_version,
        "environment": settings.environment,
        "status": "healthy",
    }


# Health check endpoints
@app.get("/health/live")
async def liveness():
    """Liveness probe for Kubernetes."""
    return {"status": "alive"}


@app.get("/health/ready")
async def readiness():
    """Readiness probe for Kubernetes."""
    try:
        # Test database connection
        async with async_engine.connect() as conn:
            await conn.execute(text("SELECT 1"))

        return {"status": "ready", "database": "connected"}
    except (SQLAlchemyError, OSError) as e:
        return JSONResponse(
            status_code=503,
            content={"status": "not_ready", "error": str(e)},
        )


# Import and include API routers
from claims_portal.api import admin, auth, config, realtime  # noqa: E402
from claims_portal.api.audit import create_audit_router  # noqa: E402
from claims_portal.api.deps import PORTALS  # noqa: E402
from claims_portal.api.portal import create_portal_router  # noqa: E402

app.include_router(config.router, prefix=f"{settings.api_prefix}/config", tags=["config"])
app.include_router(auth.router, prefix=f"{settings.api_prefix}/auth", tags=["auth"])
app.include_router(admin.router, prefix=f"{settings.api_prefix}/admin", tags=["admin"])
for slug, portal in PORTALS.items():
    app.include_router(create_portal_router(portal), prefix=f"{settings.api_prefix}/{slug}", tags=[slug])
    app.include_router(create_audit_router(portal), prefix=f"{settings.api_prefix}/{slug}", tags=[slug])
app.include_router(realtime.router, tags=["realtime"])


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "claims_portal.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.debug,
        log_level=settings.log_level.lower(),
    )
