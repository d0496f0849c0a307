"""
REST API layer for migration-spine.

Provides a FastAPI application factory whose endpoints delegate to the
operations layer (``migration_spine.ops``).  Routers only handle HTTP
concerns: serialisation, error mapping and request context.

Quick start::

    from migration_spine.api import create_app

    app = create_app()  # ready for uvicorn

Tags:
    migration-spine, api, REST, FastAPI, transport-layer

Doc-Types:
    api-reference
"""

from migration_spine.api.app import create_app

__all__ = ["create_app"]
