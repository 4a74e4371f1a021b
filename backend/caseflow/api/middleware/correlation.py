"""
Correlation ID Middleware

Tags every request with a correlation id (carried into logs and history rows)
and logs one access line per request.
"""
import time

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.responses import Response

from ...utils.logger import set_correlation_id, get_logger
from ...utils.idgen import generate_correlation_id

logger = get_logger(__name__)

# Client supplied ids longer than this are replaced
MAX_CORRELATION_ID_LENGTH = 128


class CorrelationIdMiddleware(BaseHTTPMiddleware):
    """
    Middleware that adds correlation ID to all requests.

    - Uses X-Correlation-Id (or X-Request-Id) from the client when sane
    - Generates new ID if not present
    - Sets correlation ID in logging context
    - Adds correlation ID to response headers
    """

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        correlation_id = (
            request.headers.get("X-Correlation-Id")
            or request.headers.get("X-Request-Id")
        )
        if not correlation_id or len(correlation_id) > MAX_CORRELATION_ID_LENGTH:
            correlation_id = generate_correlation_id()

        set_correlation_id(correlation_id)
        started = time.perf_counter()

        response = await call_next(request)

        response.headers["X-Correlation-Id"] = correlation_id
        logger.info(
            f"{request.method} {request.url.path} -> {response.status_code} "
            f"({(time.perf_counter() - started) * 1000:.1f} ms)",
            extra={"status": response.status_code}
        )
        return response
