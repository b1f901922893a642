import asyncio
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Request
from fastapi.responses import Response

from tts_proxy.models import InboundRequest, ProxiedResponse
from tts_proxy.synthesis.forwarder import ForwardingHandler, payload_too_large
from tts_proxy.vars import SYNTHESIS_PATH

CLIENT_CLOSED_REQUEST = 499

router = APIRouter()
logger = logging.getLogger("uvicorn.error")


def get_forwarding_handler(request: Request) -> ForwardingHandler:
    return request.app.state.forwarding_handler


def _declared_length(request: Request) -> Optional[int]:
    raw = request.headers.get("content-length")
    if raw is None or not raw.strip().isdigit():
        return None
    return int(raw)


async def read_body(request: Request, limit: int) -> bytes:
    """
    Read the raw request body, stopping once it grows past ``limit``.

    At most ``limit + 1`` bytes are kept, which is enough for the handler to
    reject the request without buffering an arbitrarily large upload.
    """
    body = bytearray()
    async for chunk in request.stream():
        body.extend(chunk)
        if len(body) > limit:
            logger.debug(f"[Synthesis] Body passed {limit} bytes, stopped reading")
            break
    return bytes(body)


async def wait_for_disconnect(request: Request) -> None:
    """Return once the caller has gone away; body messages are ignored."""
    while True:
        message = await request.receive()
        if message["type"] == "http.disconnect":
            return


async def forward_unless_disconnected(
    request: Request, handler: ForwardingHandler, inbound: InboundRequest
) -> Optional[ProxiedResponse]:
    """
    Run the upstream call while watching the caller's connection.

    Returns None when the caller disconnected first; the upstream call is then
    cancelled, which closes its connection.
    """
    forward = asyncio.create_task(handler.handle(inbound))
    disconnect = asyncio.create_task(wait_for_disconnect(request))
    try:
        await asyncio.wait({forward, disconnect}, return_when=asyncio.FIRST_COMPLETED)
    except asyncio.CancelledError:
        forward.cancel()
        raise
    finally:
        disconnect.cancel()

    if forward.done():
        return forward.result()

    forward.cancel()
    try:
        await forward
    except asyncio.CancelledError:
        pass
    logger.info("[Synthesis] Caller disconnected, upstream call abandoned")
    return None


def to_response(result: ProxiedResponse) -> Response:
    return Response(
        content=result.body,
        status_code=result.status_code,
        headers=result.headers,
    )


@router.post(SYNTHESIS_PATH)
async def synthesize(
    request: Request,
    handler: ForwardingHandler = Depends(get_forwarding_handler),
):
    """Forward an SSML document to the speech provider and relay the audio."""
    limit = handler.config.max_body_bytes
    declared = _declared_length(request)
    if declared is not None and declared > limit:
        logger.warning(f"[Synthesis] Declared body of {declared} bytes exceeds {limit}")
        return to_response(payload_too_large(limit))

    body = await read_body(request, limit)
    inbound = InboundRequest(body=body, headers=request.headers)
    result = await forward_unless_disconnected(request, handler, inbound)
    if result is None:
        return Response(status_code=CLIENT_CLOSED_REQUEST)
    return to_response(result)
