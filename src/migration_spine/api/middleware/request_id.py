"""Request correlation for the REST API.

Each request carries an id, taken from an inbound ``X-Request-ID`` header
when it is usable and generated otherwise.  The id is stored on
``request.state`` (the operation context picks it up from there), echoed in
the response header and bound into the structlog context together with the
method and path, so the ``op.*`` and ``executor.scheduled`` lines a request
produces can be grepped by one value.  A single ``api.request`` line with
status and duration closes every request.
"""

from __future__ import annotations

import re
import time
import uuid

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from migration_spine.core.logging import LogContext, get_logger

logger = get_logger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"

# Client-supplied ids end up in log lines and response headers.
_ACCEPTABLE_ID = re.compile(r"^[A-Za-z0-9._:-]{1,128}$")


def resolve_request_id(header_value: str | None) -> str:
    """Return *header_value* if it is a safe id, else a fresh UUID4."""
    if header_value and _ACCEPTABLE_ID.match(header_value):
        return header_value
    return str(uuid.uuid4())


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Tag the request, its logs and its response with one request id."""

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        request_id = resolve_request_id(request.headers.get(REQUEST_ID_HEADER))
        request.state.request_id = request_id
        started = time.perf_counter()

        with LogContext(request_id=request_id, http_method=request.method, path=request.url.path):
            response = await call_next(request)
            logger.info(
                "api.request",
                status=response.status_code,
                duration_ms=round((time.perf_counter() - started) * 1000, 2),
            )

        response.headers[REQUEST_ID_HEADER] = request_id
        return response
