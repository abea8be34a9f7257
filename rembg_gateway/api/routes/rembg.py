# =============================================================================
# BACKGROUND REMOVAL ROUTE
# =============================================================================
#
# POST /rembg
#   - Raw image bytes in the request body (any format Pillow decodes)
#   - PNG with the background removed in the response body
#
# The response is encoded completely before it is returned, so a caller
# gets either a full image or an error envelope, never a truncated body.
#
# =============================================================================

import asyncio

from fastapi import APIRouter, Depends, Request, Response
from starlette.requests import ClientDisconnect

from rembg_gateway.api.dependencies import get_pipeline, get_settings, request_scope
from rembg_gateway.api.middleware import metrics
from rembg_gateway.core.config import Settings
from rembg_gateway.core.exceptions import InputDecodeFailure, PayloadTooLarge, ProcessCancelled
from rembg_gateway.core.logging import ctx_logger
from rembg_gateway.pipelines import BasePipeline
from rembg_gateway.utils.image import (
    OUTPUT_CONTENT_TYPE,
    ImageDecodeError,
    decode_image,
    encode_image,
)

router = APIRouter()


async def _read_body(request: Request, limit: int) -> bytes:
    """Read the request body, refusing anything larger than ``limit``."""
    content_length = request.headers.get("Content-Length")
    if content_length and content_length.isdigit() and int(content_length) > limit:
        raise PayloadTooLarge(int(content_length), limit)

    body = bytearray()
    try:
        async for chunk in request.stream():
            body.extend(chunk)
            if len(body) > limit:
                raise PayloadTooLarge(len(body), limit)
    except ClientDisconnect as e:
        raise ProcessCancelled("client disconnected during upload") from e
    return bytes(body)


@router.post(
    "/rembg",
    response_class=Response,
    responses={200: {"content": {OUTPUT_CONTENT_TYPE: {}}, "description": "Image without background"}},
)
async def remove_background(
    request: Request,
    settings: Settings = Depends(get_settings),
    pipeline: BasePipeline = Depends(get_pipeline),
):
    """
    Remove the background from the image sent as the raw request body.

    Returns the result as PNG. Undecodable input yields 400; failures of
    the external tool yield 5xx.
    """
    body = await _read_body(request, settings.max_body_size)
    metrics.image_uploaded(len(body))

    try:
        source = await asyncio.to_thread(decode_image, body)
    except ImageDecodeError as e:
        raise InputDecodeFailure(str(e)) from e

    ctx_logger.info(
        "Processing image",
        pipeline=pipeline.name,
        image_size=f"{source.size[0]}x{source.size[1]}",
        mode=source.mode,
        file_size=len(body),
    )

    async with request_scope(request, settings.disconnect_poll_interval) as token:
        result = await pipeline.process(source, token)

    content = await asyncio.to_thread(encode_image, result)
    return Response(content=content, media_type=OUTPUT_CONTENT_TYPE)
