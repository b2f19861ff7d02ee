from __future__ import annotations

import time
import uuid

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

from ..observability.logging import get_logger, start_request_context

REQUEST_ID_HEADER = "X-Request-Id"


def _caller(request: Request) -> str | None:
    user = getattr(request.state, "user", None)
    return getattr(user, "sub", None) if user else None


class RequestContextMiddleware(BaseHTTPMiddleware):
    """
    Outermost middleware: request id plus one access line per request.

    An inbound X-Request-Id is honoured (truncated), otherwise a UUID4 is
    minted. The id lands on `request.state`, in the structlog context and on
    the response header. Paths in `quiet_paths` (health probes) are not
    access-logged.
    """

    def __init__(self, app, *, quiet_paths: set[str] | None = None):
        super().__init__(app)
        self._quiet = quiet_paths or set()
        self._log = get_logger("access")

    async def dispatch(self, request: Request, call_next):
        inbound = str(request.headers.get("x-request-id") or "").strip()[:128]
        request_id = inbound or str(uuid.uuid4())
        request.state.request_id = request_id
        start_request_context(request_id)

        path = request.url.path
        started = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception:
            self._log.exception(
                "request_failed",
                http_method=request.method,
                path=path,
                duration_ms=round((time.perf_counter() - started) * 1000.0, 2),
                user_sub=_caller(request),
            )
            raise

        response.headers[REQUEST_ID_HEADER] = request_id
        if path not in self._quiet:
            self._log.info(
                "request",
                http_method=request.method,
                path=path,
                status_code=response.status_code,
                duration_ms=round((time.perf_counter() - started) * 1000.0, 2),
                user_sub=_caller(request),
            )
        return response
