# =============================================================================
# REMBG GATEWAY - Application Factory
# =============================================================================
#
# FastAPI application with:
#   - POST /rembg background removal through an external tool
#   - Structured logging & request tracing
#   - Prometheus metrics
#   - Standardized error handling
#
# The app is built from an explicit Settings object; cancellation tokens
# come from the Lifecycle that serves it.
#
# =============================================================================

from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from rembg_gateway import __version__
from rembg_gateway.api.middleware import (
    MetricsMiddleware,
    RequestLoggingMiddleware,
    metrics_endpoint,
    register_exception_handlers,
)
from rembg_gateway.api.routes import health, rembg
from rembg_gateway.core.cancellation import CancelToken
from rembg_gateway.core.config import Settings
from rembg_gateway.core.lifecycle import Lifecycle
from rembg_gateway.core.logging import logger
from rembg_gateway.pipelines import BackgroundRemovePipeline, BasePipeline, SubprocessPipeline

# =============================================================================
# LIFESPAN (Startup/Shutdown)
# =============================================================================


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    pipeline = app.state.pipeline
    logger.info(f"Starting rembg gateway {__version__} (pipeline: {pipeline.name})")
    if isinstance(pipeline, SubprocessPipeline):
        logger.info(f"External tool: {pipeline.command_line}")

    yield

    logger.info("Shutting down rembg gateway...")


# =============================================================================
# APPLICATION
# =============================================================================


def create_app(
    settings: Settings,
    lifecycle: Lifecycle | None = None,
    pipeline: BasePipeline | None = None,
) -> FastAPI:
    """Build the gateway application.

    Without a lifecycle the app gets its own tokens that are never
    cancelled, which is what the test client needs.
    """
    app = FastAPI(
        title="rembg gateway",
        description="Background removal over HTTP backed by the rembg CLI",
        version=__version__,
        lifespan=lifespan,
    )

    app.state.settings = settings
    app.state.pipeline = pipeline or BackgroundRemovePipeline.from_settings(settings)
    if lifecycle is not None:
        app.state.shutdown_token = lifecycle.shutdown_token
        app.state.work_token = lifecycle.work_token
    else:
        app.state.shutdown_token = CancelToken()
        app.state.work_token = CancelToken()

    # =========================================================================
    # MIDDLEWARE (Order matters! Last added = outermost = runs first)
    # =========================================================================

    app.add_middleware(MetricsMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(RequestLoggingMiddleware)

    register_exception_handlers(app)

    # =========================================================================
    # ROUTES
    # =========================================================================

    app.include_router(health.router, tags=["health"])
    app.include_router(rembg.router, tags=["images"])
    app.add_api_route("/metrics", metrics_endpoint, methods=["GET"], include_in_schema=False)

    return app
