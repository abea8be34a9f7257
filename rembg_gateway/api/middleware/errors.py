# =============================================================================
# ERROR HANDLING MODULE
# =============================================================================
#
# Provides:
#   - Standardized error responses
#   - Exception handlers for FastAPI
#   - Error logging with context (cause chain, tool diagnostics)
#
# =============================================================================

import traceback
from typing import Union

from fastapi import HTTPException, Request
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from rembg_gateway.api.middleware.metrics import metrics
from rembg_gateway.core.exceptions import ErrorKind, GatewayError
from rembg_gateway.core.logging import ctx_logger, get_request_id


# =============================================================================
# ERROR RESPONSE FORMAT
# =============================================================================

def create_error_response(
    status_code: int,
    message: str,
    error_code: str = None,
    details: dict = None,
) -> JSONResponse:
    """Create standardized error response."""
    body = {
        "error": {
            "code": error_code or f"ERR_{status_code}",
            "message": message,
            "request_id": get_request_id(),
        }
    }

    if details:
        body["error"]["details"] = details

    return JSONResponse(
        status_code=status_code,
        content=body,
    )


# =============================================================================
# EXCEPTION HANDLERS
# =============================================================================

async def gateway_exception_handler(
    request: Request,
    exc: GatewayError,
) -> JSONResponse:
    """Handle gateway errors raised by the handler or the pipeline."""
    log_func = ctx_logger.error if exc.status_code >= 500 else ctx_logger.warning
    log_func(
        "Request failed",
        error_code=exc.kind.value,
        message=exc.chain_message(),
        details=exc.details,
        path=request.url.path,
    )
    metrics.record_error(exc.kind.value, request.url.path)

    return create_error_response(
        status_code=exc.status_code,
        message=exc.message,
        error_code=exc.kind.value,
        details=exc.details,
    )


async def http_exception_handler(
    request: Request,
    exc: Union[HTTPException, StarletteHTTPException],
) -> JSONResponse:
    """Handle HTTP exceptions."""
    ctx_logger.warning(
        "HTTP exception",
        status_code=exc.status_code,
        detail=str(exc.detail),
        path=request.url.path,
    )

    return create_error_response(
        status_code=exc.status_code,
        message=str(exc.detail),
    )


async def generic_exception_handler(
    request: Request,
    exc: Exception,
) -> JSONResponse:
    """Handle uncaught exceptions. Details go to the log, not the client."""
    ctx_logger.error(
        "Unhandled exception",
        path=request.url.path,
        exception_type=type(exc).__name__,
        exception_message=str(exc),
        traceback=traceback.format_exc(),
    )
    metrics.record_error(type(exc).__name__, request.url.path)

    return create_error_response(
        status_code=500,
        message="An internal error occurred",
        error_code=ErrorKind.INTERNAL.value,
    )


# =============================================================================
# REGISTER HANDLERS
# =============================================================================

def register_exception_handlers(app):
    """Register all exception handlers with FastAPI app."""
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(GatewayError, gateway_exception_handler)
    app.add_exception_handler(Exception, generic_exception_handler)
