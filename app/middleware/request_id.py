import json
import logging
import time
import uuid
from typing import Callable

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from app.metrics import HTTP_REQUESTS_TOTAL, HTTP_REQUEST_DURATION_SECONDS

logger = logging.getLogger("speechbridge.access")

UNMATCHED_ROUTE = "unmatched"


def route_label(request: Request) -> str:
    """Route template of the matched endpoint; raw paths would give one series per id."""
    route = request.scope.get("route")
    return getattr(route, "path", None) or UNMATCHED_ROUTE


class RequestIdMiddleware(BaseHTTPMiddleware):
    """Accepts or generates X-Request-Id, persists on request.state, and echoes on response.

    Also records HTTP metrics and emits one JSON access log line per request
    with method, path, status, and latency_ms.
    """

    def __init__(self, app: ASGIApp):
        super().__init__(app)

    async def dispatch(self, request: Request, call_next: Callable):
        start = time.perf_counter()
        req_id = request.headers.get("X-Request-Id") or str(uuid.uuid4())
        request.state.request_id = req_id
        method = request.method
        path = request.url.path
        status_code = 500
        try:
            response = await call_next(request)
            status_code = response.status_code
            response.headers["X-Request-Id"] = req_id
            return response
        finally:
            elapsed = time.perf_counter() - start
            route = route_label(request)
            HTTP_REQUESTS_TOTAL.labels(method=method, path=route, status_class=f"{status_code // 100}xx").inc()
            HTTP_REQUEST_DURATION_SECONDS.labels(method=method, path=route).observe(elapsed)
            logger.info(json.dumps({
                "event": "http_request",
                "requestId": req_id,
                "method": method,
                "path": path,
                "status": status_code,
                "latency_ms": int(elapsed * 1000),
            }))
