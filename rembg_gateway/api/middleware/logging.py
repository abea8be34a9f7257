# =============================================================================
# REQUEST TRACING MODULE
# =============================================================================
#
# Provides:
#   - Request ID / Correlation ID tracking
#   - Request/Response logging
#   - Performance timing
#
# Written as plain ASGI middleware: the downstream app receives the
# server's own `receive` channel, so Request.is_disconnected() sees the
# client going away while a request is being processed.
#
# Formatters and the context-aware logger live in rembg_gateway.core.logging.
#
# =============================================================================

import time
import uuid

from starlette.datastructures import Headers, MutableHeaders
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from rembg_gateway.core.logging import ctx_logger, request_id_var

# Paths that are polled by orchestrators and not worth a log line
QUIET_PATHS = {"/health", "/ready", "/metrics"}


class RequestLoggingMiddleware:
    """
    Middleware for request/response logging.

    Features:
    - Generates unique request ID
    - Logs request details
    - Logs response status and timing
    - Adds request ID to response headers
    """

    def __init__(self, app: ASGIApp):
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send):
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        headers = Headers(scope=scope)
        path = scope["path"]
        method = scope["method"]
        request_id = self._get_or_create_request_id(headers)
        token = request_id_var.set(request_id)
        start_time = time.time()
        status_code = None

        async def send_wrapper(message: Message):
            nonlocal status_code
            if message["type"] == "http.response.start":
                status_code = message["status"]
                duration = time.time() - start_time
                response_headers = MutableHeaders(scope=message)
                response_headers["X-Request-ID"] = request_id
                response_headers["X-Response-Time"] = f"{duration * 1000:.2f}ms"
            await send(message)

        try:
            self._log_request(scope, headers)

            try:
                await self.app(scope, receive, send_wrapper)
            except Exception as e:
                duration = time.time() - start_time
                ctx_logger.error(
                    "Request failed with exception",
                    path=path,
                    method=method,
                    duration_ms=round(duration * 1000, 2),
                    error=str(e),
                )
                raise

            duration = time.time() - start_time
            self._log_response(path, method, status_code, duration)
        finally:
            request_id_var.reset(token)

    def _get_or_create_request_id(self, headers: Headers) -> str:
        """Get request ID from header or generate new one."""
        existing = headers.get("X-Request-ID") or headers.get("X-Correlation-ID")
        if existing:
            return existing
        return str(uuid.uuid4())

    def _log_request(self, scope: Scope, headers: Headers):
        if scope["path"] in QUIET_PATHS:
            return

        ctx_logger.info(
            "Request received",
            method=scope["method"],
            path=scope["path"],
            client_ip=self._get_client_ip(scope, headers),
            content_type=headers.get("Content-Type"),
            content_length=headers.get("Content-Length"),
        )

    def _log_response(self, path: str, method: str, status_code: int | None, duration: float):
        if path in QUIET_PATHS:
            return

        # No response start means the client left before anything was sent
        log_func = ctx_logger.info if status_code is not None and status_code < 400 else ctx_logger.warning
        log_func(
            "Request completed",
            method=method,
            path=path,
            status_code=status_code,
            duration_ms=round(duration * 1000, 2),
        )

    def _get_client_ip(self, scope: Scope, headers: Headers) -> str:
        forwarded = headers.get("X-Forwarded-For")
        if forwarded:
            return forwarded.split(",")[0].strip()
        client = scope.get("client")
        return client[0] if client else "unknown"
