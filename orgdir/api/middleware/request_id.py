"""
Request ID middleware for request correlation.

- Accepts an incoming X-Request-ID header or generates one
- Echoes it on the response
- Binds it (and clears the actor) in the logging context for the request
"""

import time
import uuid
from typing import Callable

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from orgdir.logging_config import actor_var, get_logger, request_id_var

logger = get_logger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"

# Requests slower than this are logged as warnings
SLOW_REQUEST_MS = 1000


class RequestIdMiddleware(BaseHTTPMiddleware):
    """Assign a correlation id to every request."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get(REQUEST_ID_HEADER) or str(uuid.uuid4())
        request.state.request_id = request_id

        request_token = request_id_var.set(request_id)
        actor_token = actor_var.set(None)
        try:
            start = time.perf_counter()
            response = await call_next(request)
            duration_ms = (time.perf_counter() - start) * 1000

            response.headers[REQUEST_ID_HEADER] = request_id

            if duration_ms > SLOW_REQUEST_MS:
                logger.warning(
                    "Slow request",
                    extra={
                        "path": request.url.path,
                        "method": request.method,
                        "status_code": response.status_code,
                        "duration_ms": round(duration_ms, 1),
                    },
                )
            return response
        finally:
            actor_var.reset(actor_token)
            request_id_var.reset(request_token)
