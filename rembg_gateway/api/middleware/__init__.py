# =============================================================================
# MIDDLEWARE PACKAGE
# =============================================================================
#
# Middleware for:
#   - Request tracing & logging
#   - Prometheus metrics
#   - Error handling
#
# =============================================================================

from rembg_gateway.api.middleware.errors import (
    create_error_response,
    register_exception_handlers,
)
from rembg_gateway.api.middleware.logging import RequestLoggingMiddleware
from rembg_gateway.api.middleware.metrics import (
    MetricsMiddleware,
    metrics,
    metrics_endpoint,
)

__all__ = [
    # Logging
    "RequestLoggingMiddleware",
    # Metrics
    "MetricsMiddleware",
    "metrics_endpoint",
    "metrics",
    # Errors
    "create_error_response",
    "register_exception_handlers",
]
