"""
Per-invocation context for plan operations.

The REST API builds one :class:`OperationContext` per request (reusing the
``X-Request-ID``), the CLI one per command.  Operation functions take it as
their first argument and log inside :meth:`OperationContext.log_scope`, so
every line an operation emits carries the request id, the caller and the
operation name.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Literal

from migration_spine.core.logging import LogContext

if TYPE_CHECKING:
    from migration_spine.ops.service import MigrationService

Caller = Literal["api", "cli", "sdk"]


@dataclass
class OperationContext:
    """Who is asking, and against which service.

    Attributes:
        service: The engine facade operations run against.
        request_id: Correlation id (generated when not supplied).
        caller: ``"api"``, ``"cli"`` or ``"sdk"``.
        metadata: Extra fields added to every log line of the operation.
    """

    service: MigrationService
    request_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    caller: Caller = "sdk"
    metadata: dict[str, Any] = field(default_factory=dict)

    def log_scope(self, operation: str) -> LogContext:
        """Bind this context plus *operation* for the duration of a ``with`` block."""
        return LogContext(
            request_id=self.request_id,
            caller=self.caller,
            operation=operation,
            **self.metadata,
        )
