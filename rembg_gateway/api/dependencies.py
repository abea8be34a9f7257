import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import Request

from rembg_gateway.core.cancellation import CancelToken
from rembg_gateway.core.config import Settings
from rembg_gateway.core.exceptions import ProcessCancelled
from rembg_gateway.core.logging import ctx_logger
from rembg_gateway.pipelines import BasePipeline


def get_settings(request: Request) -> Settings:
    """Settings the application was created with."""
    return request.app.state.settings


def get_pipeline(request: Request) -> BasePipeline:
    """Pipeline used by the image endpoints (overridable in tests)."""
    return request.app.state.pipeline


async def watch_disconnect(request: Request, token: CancelToken, interval: float) -> None:
    """Cancel ``token`` as soon as the client goes away."""
    while not token.cancelled:
        if await request.is_disconnected():
            ctx_logger.info("Client disconnected, cancelling request", path=request.url.path)
            token.cancel("client disconnected")
            return
        await asyncio.sleep(interval)


@asynccontextmanager
async def request_scope(request: Request, poll_interval: float) -> AsyncIterator[CancelToken]:
    """Cancellation scope for one request.

    The token is a child of the lifecycle work token, so it fires when the
    shutdown grace period runs out, and also when the client disconnects.
    New work is refused once shutdown has started.
    """
    state = request.app.state
    if state.shutdown_token.cancelled:
        raise ProcessCancelled("service is shutting down")

    with state.work_token.child() as token:
        watcher = asyncio.create_task(watch_disconnect(request, token, poll_interval))
        try:
            yield token
        finally:
            watcher.cancel()
            await asyncio.gather(watcher, return_exceptions=True)
