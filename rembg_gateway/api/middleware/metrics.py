# =============================================================================
# METRICS MODULE (Prometheus)
# =============================================================================
#
# Exposes Prometheus metrics for the HTTP layer:
#   - Request counts by endpoint, method, status
#   - Request latency histograms
#   - Active requests gauge
#   - Errors by kind
#
# NOTE: External tool run metrics live next to the pipeline.
#       See rembg_gateway/pipelines/external_tool.py.
#
# Endpoint: GET /metrics
#
# =============================================================================

import time

from fastapi import Request, Response
from prometheus_client import (
    CONTENT_TYPE_LATEST,
    REGISTRY,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)
from starlette.types import ASGIApp, Message, Receive, Scope, Send

# =============================================================================
# METRIC DEFINITIONS
# =============================================================================

REQUEST_COUNT = Counter(
    "rembg_gateway_http_requests_total",
    "Total HTTP requests",
    ["method", "endpoint", "status_code"],
)

REQUEST_LATENCY = Histogram(
    "rembg_gateway_http_request_duration_seconds",
    "HTTP request latency in seconds",
    ["method", "endpoint"],
    buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0),
)

REQUESTS_IN_PROGRESS = Gauge(
    "rembg_gateway_http_requests_in_progress",
    "Number of HTTP requests currently being processed",
    ["method"],
)

ERROR_COUNT = Counter(
    "rembg_gateway_errors_total",
    "Total errors by kind and endpoint",
    ["type", "endpoint"],
)

UPLOAD_SIZE_BYTES = Histogram(
    "rembg_gateway_upload_size_bytes",
    "Uploaded image sizes in bytes",
    buckets=(
        100 * 1024,  # 100 KB
        500 * 1024,  # 500 KB
        1 * 1024 * 1024,  # 1 MB
        5 * 1024 * 1024,  # 5 MB
        10 * 1024 * 1024,  # 10 MB
        25 * 1024 * 1024,  # 25 MB
        50 * 1024 * 1024,  # 50 MB
    ),
)


# =============================================================================
# METRICS MIDDLEWARE
# =============================================================================


class MetricsMiddleware:
    """Middleware to collect request metrics.

    The endpoint label is the route pattern the router matched, read back
    from the scope once the request is handled.
    """

    def __init__(self, app: ASGIApp):
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send):
        # Skip metrics endpoint itself
        if scope["type"] != "http" or scope["path"] == "/metrics":
            await self.app(scope, receive, send)
            return

        method = scope["method"]
        status_code = 500

        async def send_wrapper(message: Message):
            nonlocal status_code
            if message["type"] == "http.response.start":
                status_code = message["status"]
            await send(message)

        REQUESTS_IN_PROGRESS.labels(method=method).inc()
        start_time = time.time()

        try:
            await self.app(scope, receive, send_wrapper)
        finally:
            duration = time.time() - start_time
            endpoint = self._get_endpoint(scope)

            REQUEST_COUNT.labels(
                method=method,
                endpoint=endpoint,
                status_code=status_code,
            ).inc()
            REQUEST_LATENCY.labels(method=method, endpoint=endpoint).observe(duration)
            REQUESTS_IN_PROGRESS.labels(method=method).dec()

    def _get_endpoint(self, scope: Scope) -> str:
        """Get the route pattern, or a fixed label for unknown paths."""
        return getattr(scope.get("route"), "path", None) or "unmatched"


# =============================================================================
# METRICS ENDPOINT
# =============================================================================


async def metrics_endpoint(request: Request) -> Response:
    """Prometheus metrics endpoint."""
    return Response(
        content=generate_latest(REGISTRY),
        media_type=CONTENT_TYPE_LATEST,
    )


# =============================================================================
# METRICS HELPERS
# =============================================================================


class MetricsRecorder:
    """Helper class to record gateway metrics from handlers."""

    @staticmethod
    def image_uploaded(size_bytes: int):
        UPLOAD_SIZE_BYTES.observe(size_bytes)

    @staticmethod
    def record_error(error_type: str, endpoint: str):
        ERROR_COUNT.labels(type=error_type, endpoint=endpoint).inc()


metrics = MetricsRecorder()
