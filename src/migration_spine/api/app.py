"""
FastAPI application factory.

``create_app()`` wires middleware, routers, error handlers and lifespan
events into a single ``FastAPI`` instance, and builds the
:class:`MigrationService` the routers share.

Tags:
    migration-spine, api, app-factory, composition-root, FastAPI

Doc-Types:
    api-reference
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from migration_spine.api.deps import get_settings
from migration_spine.api.middleware.errors import unhandled_exception_handler
from migration_spine.api.middleware.request_id import RequestIDMiddleware
from migration_spine.core.logging import configure_logging, get_logger
from migration_spine.core.settings import MigrationSettings
from migration_spine.ops.service import MigrationService

logger = get_logger("migration_spine.api")


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan: startup / shutdown hooks."""
    settings = app.state.settings
    configure_logging(level=settings.log_level, json_format=settings.log_json)
    logger.info("api.starting", version=app.version, store=settings.store_backend)
    yield
    # in-flight plans finish before exit
    app.state.service.shutdown(wait=True)
    logger.info("api.stopped")


def create_app(
    *,
    settings: MigrationSettings | None = None,
    service: MigrationService | None = None,
) -> FastAPI:
    """Build and return a fully-configured FastAPI application.

    Parameters
    ----------
    settings : MigrationSettings | None
        Override settings (useful for testing).  When ``None`` the cached
        singleton from :func:`get_settings` is used.
    service : MigrationService | None
        Pre-wired service; built from *settings* when omitted.
    """
    settings = settings or get_settings()

    app = FastAPI(
        title=settings.api_title,
        version=settings.api_version,
        lifespan=lifespan,
        docs_url=f"{settings.api_prefix}/docs",
        redoc_url=f"{settings.api_prefix}/redoc",
        openapi_url=f"{settings.api_prefix}/openapi.json",
    )

    app.state.settings = settings
    app.state.service = service or MigrationService.from_settings(settings)

    # Override DI so endpoints use the provided settings
    app.dependency_overrides[get_settings] = lambda: settings

    app.add_middleware(RequestIDMiddleware)
    app.add_exception_handler(Exception, unhandled_exception_handler)

    from migration_spine.api.routers import plans, stats

    prefix = settings.api_prefix
    app.include_router(plans.router, prefix=prefix, tags=["plans"])
    app.include_router(stats.router, prefix=prefix, tags=["stats"])

    @app.get("/health", tags=["health"])
    def health() -> dict[str, str]:
        """Liveness check."""
        return {"status": "ok", "version": settings.api_version}

    return app
