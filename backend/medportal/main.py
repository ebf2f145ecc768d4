"""FastAPI application factory.

This module provides the create_app() function that creates and configures
the FastAPI application instance. The app.py file uses this to expose the
app instance for ASGI servers.
"""
from __future__ import annotations

from fastapi import FastAPI


def create_app() -> FastAPI:
    """Create and configure the FastAPI application.

    1. Logging and Sentry configuration
    2. FastAPI app instantiation
    3. Shared role cache
    4. Middleware and exception handlers
    5. Routes
    6. Startup tasks registration
    """
    from medportal.core.config import settings
    from medportal.core.logging import configure_logging, get_logger, setup_sentry
    from medportal.services.identity import RoleCache

    # Step 1: Configure logging and Sentry
    configure_logging()
    setup_sentry(environment=settings.APP_ENV, dsn=settings.SENTRY_DSN)
    log = get_logger("medportal.main")

    # Step 2: Create FastAPI app; never leak tracebacks outside dev
    app = FastAPI(title="MedPortal API", debug=settings.is_dev_mode)

    # Step 3: Process-wide role cache, invalidated on logout
    app.state.role_cache = RoleCache(ttl_seconds=settings.ROLE_CACHE_TTL_SECONDS)

    # Step 4: Middleware and exception handlers
    from medportal.config.middleware import configure_middleware
    configure_middleware(app, settings)

    # Step 5: Routes
    from medportal.routing import attach_routers
    attach_routers(app)

    # Step 6: Startup tasks
    from medportal.config.startup import register_startup
    register_startup(app)

    log.info("[startup] Application configured (env=%s)", settings.APP_ENV)
    return app


__all__ = ["create_app"]
