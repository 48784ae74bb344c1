import logging
import time

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

logger = logging.getLogger("surveyors_api.access")


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """One access-log line per request: method, path, status, duration, client."""

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        path = request.url.path
        # Health checks are too frequent to be worth a line each.
        if path == "/health":
            return await call_next(request)

        start = time.perf_counter()
        response = await call_next(request)
        duration_ms = (time.perf_counter() - start) * 1000

        status = response.status_code
        if status >= 500:
            level = logging.ERROR
        elif status >= 400:
            level = logging.WARNING
        else:
            level = logging.INFO

        client_ip = request.client.host if request.client else "unknown"
        logger.log(level, "%s %s %d %.1fms from %s", request.method, path, status, duration_ms, client_ip)
        return response
