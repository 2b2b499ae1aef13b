"""Request/response logging middleware for FastAPI."""

import time
import uuid
from collections.abc import Callable

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from media_concierge.core.logging_config import get_logger

REQUEST_ID_HEADER = "X-Request-ID"

# Polled endpoints logged at debug level only
QUIET_PATHS = frozenset({"/health"})


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Log every HTTP request with a correlation id.

    An inbound ``X-Request-ID`` (e.g. set by the chat bot) is reused so a chat
    turn can be followed across services; otherwise a short id is generated.
    The id is echoed back in the response headers.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex[:8]
        request_logger = get_logger(__name__, request_id=request_id)
        quiet = request.url.path in QUIET_PATHS

        start_time = time.perf_counter()
        (request_logger.debug if quiet else request_logger.info)(
            f"Request started: {request.method} {request.url.path}",
            extra={
                "extra_data": {
                    "method": request.method,
                    "path": request.url.path,
                    "client_host": request.client.host if request.client else None,
                }
            },
        )

        try:
            response = await call_next(request)
        except Exception as e:
            request_logger.error(
                f"Request failed: {request.method} {request.url.path}",
                extra={
                    "extra_data": {
                        "duration_ms": _elapsed_ms(start_time),
                        "error": str(e),
                    }
                },
                exc_info=True,
            )
            raise

        if response.status_code >= 400:
            log = request_logger.warning
        elif quiet:
            log = request_logger.debug
        else:
            log = request_logger.info
        log(
            f"Request completed: {request.method} {request.url.path} -> {response.status_code}",
            extra={
                "extra_data": {
                    "status_code": response.status_code,
                    "duration_ms": _elapsed_ms(start_time),
                }
            },
        )

        response.headers[REQUEST_ID_HEADER] = request_id
        return response


def _elapsed_ms(start_time: float) -> float:
    return round((time.perf_counter() - start_time) * 1000, 2)
