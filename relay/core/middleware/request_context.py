"""
Per-request context: request id binding, access log line and HTTP counter.

The id comes from the incoming x-request-id header or is generated, is bound
to the logging context for the duration of the request and is echoed on the
response.
"""
import time
from typing import Optional
from uuid import uuid4

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from relay.core.logging import get_logger, latency_bucket_ms, request_id_ctx_var
from relay.core.metrics import http_requests_total, normalize_path

REQUEST_ID_HEADER = "x-request-id"


def route_label(request: Request) -> str:
    """Route template when the router matched one, else the normalized path."""
    route = request.scope.get("route")
    template: Optional[str] = getattr(route, "path", None)
    return template or normalize_path(request.url.path)


class RequestContextMiddleware(BaseHTTPMiddleware):
    def __init__(self, app, header_name: str = REQUEST_ID_HEADER):
        super().__init__(app)
        self.header_name = header_name

    async def dispatch(self, request, call_next):
        rid = request.headers.get(self.header_name) or str(uuid4())
        request.state.request_id = rid
        token = request_id_ctx_var.set(rid)
        started = time.perf_counter()
        try:
            response = await call_next(request)
            elapsed_ms = (time.perf_counter() - started) * 1000
            response.headers[self.header_name] = rid

            path = route_label(request)
            http_requests_total.inc(labels={
                "method": request.method,
                "path": path,
                "status": str(response.status_code),
            })
            get_logger().info(
                "request.complete",
                extra={
                    "request_id": rid,
                    "method": request.method,
                    "path": path,
                    "status": response.status_code,
                    "latency_bucket": latency_bucket_ms(elapsed_ms),
                },
            )
            return response
        finally:
            request_id_ctx_var.reset(token)
