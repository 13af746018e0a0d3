"""
FastAPI Application Factory
============================

Entry point for the OpenID Connect bridge, which sits between a browser and
one or more OpenID providers and issues local session tokens.

Routers:
    - /auth/*       : Provider listing, login redirect, callback, session info
    - /health       : Health check endpoint

Environment Variables:
    - OPENID_PROPERTIES_FILE: Provider properties file (default: openid-provider.properties)
    - SITE_URL: Public base URL used for default redirect URIs
    - SESSION_JWT_SECRET: Secret for signing session JWTs
    - SESSION_COOKIE_SECRET: Secret for the login-state cookie
    - HTTP_TIMEOUT_SECONDS: Timeout for calls to providers (default: 10)
    - LOG_LEVEL: Logging level (default: INFO)

Running the Service:
    Development:
        uvicorn openid_bridge.main:app --reload --host 0.0.0.0 --port 8080

    With custom log level:
        LOG_LEVEL=DEBUG uvicorn openid_bridge.main:app --reload
"""

import logging
import sys
from contextlib import asynccontextmanager
from typing import Dict, Optional

import httpx
import uvicorn
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from starlette.middleware.sessions import SessionMiddleware

from . import __version__
from .auth import auth_router
from .auth.claims import ClaimsExtractor
from .auth.orchestrator import AuthenticationOrchestrator
from .auth.policy import PolicyEnforcer
from .auth.resolver import IdentityResolver
from .auth.utils import clear_jwks_cache
from .config import Settings, get_settings, validate_configuration
from .providers import ProviderRegistry
from .users import InMemoryUserStore, UserStore

logger = logging.getLogger("openid_bridge.main")


# Configure structured JSON logging
def setup_logging(log_level: str = "INFO") -> None:
    """
    Configure structured logging for the application.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """
    logging.basicConfig(
        level=getattr(logging, log_level.upper()),
        format='{"timestamp": "%(asctime)s", "level": "%(levelname)s", "logger": "%(name)s", "message": "%(message)s", "module": "%(module)s", "function": "%(funcName)s"}',
        handlers=[logging.StreamHandler(sys.stdout)]
    )


# Lifespan context manager for startup/shutdown
@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.

    Startup tasks:
        - Validate configuration and log the report
        - Open the shared HTTP client used for provider calls (unless injected)
        - Load the provider registry (unless one was injected)
        - Wire extractor, policy, resolver and orchestrator onto app.state

    Shutdown tasks:
        - Close the HTTP client if it was opened here
        - Clear the JWKS cache
    """
    settings: Settings = app.state.settings

    setup_logging(settings.LOG_LEVEL)

    report = validate_configuration(settings)
    for error in report["errors"]:
        logger.error(f"Configuration error: {error}")
    for warning in report["warnings"]:
        logger.warning(f"Configuration warning: {warning}")

    owns_client = app.state.http_client is None
    if owns_client:
        app.state.http_client = httpx.AsyncClient(timeout=settings.HTTP_TIMEOUT_SECONDS)
    http_client = app.state.http_client

    if app.state.registry is None:
        app.state.registry = ProviderRegistry.from_file(
            settings.properties_path,
            default_redirect_uri=settings.default_redirect_uri,
        )
    if app.state.store is None:
        app.state.store = InMemoryUserStore()

    app.state.orchestrator = AuthenticationOrchestrator(
        registry=app.state.registry,
        extractor=ClaimsExtractor(
            http_client=http_client,
            timeout=settings.HTTP_TIMEOUT_SECONDS,
            jwks_cache_seconds=settings.JWKS_CACHE_SECONDS,
        ),
        enforcer=PolicyEnforcer(),
        resolver=IdentityResolver(app.state.store, admin_username=settings.ADMIN_USERNAME),
    )

    logger.info(
        "OpenID bridge started",
        extra={
            "version": __version__,
            "enabled_providers": app.state.registry.provider_ids(),
            "log_level": settings.LOG_LEVEL,
        }
    )

    yield

    logger.info("Shutting down OpenID bridge")
    if owns_client:
        await http_client.aclose()
    clear_jwks_cache()


def create_app(
    settings: Optional[Settings] = None,
    registry: Optional[ProviderRegistry] = None,
    store: Optional[UserStore] = None,
    http_client: Optional[httpx.AsyncClient] = None,
) -> FastAPI:
    """
    Application factory function.

    ``registry``, ``store`` and ``http_client`` replace the file-backed
    registry, the in-memory user store and the shared provider HTTP client;
    tests use them to inject fixtures.
    """
    settings = settings or get_settings()

    app = FastAPI(
        title="OpenID Bridge",
        description="OpenID Connect authentication bridge for local user accounts",
        version=__version__,
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc"
    )

    app.state.settings = settings
    app.state.registry = registry
    app.state.store = store
    app.state.http_client = http_client

    # Login state (OAuth state, nonce, PKCE verifier, provider id) lives in a signed cookie
    app.add_middleware(
        SessionMiddleware,
        secret_key=settings.SESSION_COOKIE_SECRET,
        session_cookie="openid_bridge_session",
        same_site="lax",
        https_only=settings.SITE_URL.startswith("https://"),
    )

    app.include_router(auth_router)

    @app.get("/health", tags=["System"])
    async def health_check() -> Dict[str, str]:
        return {
            "status": "ok",
            "service": "openid-bridge",
            "version": __version__
        }

    # Global exception handler
    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """
        Log unhandled errors and return a standardized error response.
        """
        logger.error(
            f"Unhandled exception: {str(exc)}",
            extra={
                "path": request.url.path,
                "method": request.method,
                "exception_type": type(exc).__name__
            },
            exc_info=True
        )

        return JSONResponse(
            status_code=500,
            content={
                "error": "internal_server_error",
                "message": "An unexpected error occurred",
                "detail": str(exc) if settings.LOG_LEVEL == "DEBUG" else None
            }
        )

    return app


# Create app instance for uvicorn
app = create_app()


if __name__ == "__main__":
    settings = get_settings()

    uvicorn.run(
        "openid_bridge.main:app",
        host="0.0.0.0",
        port=8080,
        reload=True,
        log_level=settings.LOG_LEVEL.lower()
    )
