"""Polo X Auth - FastAPI Application Factory."""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from polox_auth.api import api_router
from polox_auth.api.auth import router as auth_router
from polox_auth.api.error_handling import register_exception_handlers
from polox_auth.api.health import router as health_router
from polox_auth.core import get_settings, setup_logging
from polox_auth.core.logging import get_logger
from polox_auth.middleware.security_headers import SecurityHeadersMiddleware

# Import all models to ensure they're registered with Base
from polox_auth.models import Company, TokenBlacklist, User, UserSession  # noqa: F401
from polox_auth.services.auth_core import AuthCore

logger = get_logger("main")


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler for startup/shutdown."""
    core: AuthCore = app.state.auth_core
    settings = core.settings
    setup_logging(level=settings.log_level, format_type=settings.log_format)
    logger.info(f"Starting {settings.app_name} v{settings.app_version}")

    # Aborts startup on missing or weak signing keys
    await core.init()

    yield

    logger.info("Shutting down...")
    await core.close()


def create_app(core: AuthCore | None = None) -> FastAPI:
    """Create and configure the FastAPI application."""
    if core is None:
        core = AuthCore(get_settings())
    settings = core.settings

    app = FastAPI(
        title=settings.app_name,
        description="Session-bound authentication and authorization for Polo X CRM",
        version=settings.app_version,
        lifespan=lifespan,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        openapi_url="/openapi.json" if settings.debug else None,
    )
    app.state.auth_core = core

    register_exception_handlers(app)

    app.add_middleware(SecurityHeadersMiddleware, trusted_proxies=settings.trusted_proxy_ips)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
        allow_headers=[
            "Authorization",
            "Content-Type",
            "Accept",
            "X-Request-ID",
            "X-Rate-Limit-Override",
            "X-Rate-Limit-Target",
        ],
    )

    # Include routers
    app.include_router(health_router)  # Health at root level
    app.include_router(auth_router)  # Auth at root level (/auth)
    app.include_router(api_router)  # API at /api

    return app


# Application instance
app = create_app()
