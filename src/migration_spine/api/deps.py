"""
FastAPI dependency injection: shared singletons and per-request factories.

Usage in routers::

    from migration_spine.api.deps import OpContext

    @router.get("/plans")
    def list_plans(ctx: OpContext):
        ...

The :class:`MigrationService` is created once by :func:`create_app` and
kept on ``app.state``; every request gets its own
:class:`OperationContext` around it.

Tags:
    migration-spine, api, dependency-injection, OpContext

Doc-Types:
    api-reference
"""

from __future__ import annotations

import uuid
from typing import Annotated

from fastapi import Depends, Request

from migration_spine.core.settings import MigrationSettings, get_settings
from migration_spine.ops.context import OperationContext
from migration_spine.ops.service import MigrationService

__all__ = [
    "get_settings",
    "get_service",
    "get_operation_context",
    "Settings",
    "Service",
    "OpContext",
]


# ── Service (singleton per app) ──────────────────────────────────────────


def get_service(request: Request) -> MigrationService:
    """The service wired by :func:`create_app`."""
    return request.app.state.service


# ── Operation context (per-request) ──────────────────────────────────────


def get_operation_context(
    request: Request,
    service: Annotated[MigrationService, Depends(get_service)],
) -> OperationContext:
    """Build an :class:`OperationContext` from the current request."""
    request_id = getattr(request.state, "request_id", str(uuid.uuid4()))
    return OperationContext(service=service, request_id=request_id, caller="api")


# ── Convenience type aliases ─────────────────────────────────────────────

Settings = Annotated[MigrationSettings, Depends(get_settings)]
Service = Annotated[MigrationService, Depends(get_service)]
OpContext = Annotated[OperationContext, Depends(get_operation_context)]
