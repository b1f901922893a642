import asyncio
import logging
from typing import Dict, Mapping, Optional

import httpx
from opentelemetry import trace

from tts_proxy.config import ProxyConfig
from tts_proxy.models import InboundRequest, ProxiedResponse, UpstreamRequest
from tts_proxy.utils import mask_secret, secret_preview
from tts_proxy.utils.exception_logging import (
    format_exception_message,
    log_exception_with_details,
)
from tts_proxy.utils.traced_requests import traced_request
from tts_proxy.vars import (
    OUTPUT_FORMAT_HEADER,
    RELAYED_RESPONSE_HEADERS,
    SSML_CONTENT_TYPE,
    SUBSCRIPTION_KEY_HEADER,
)

tracer = trace.get_tracer(__name__)
logger = logging.getLogger("uvicorn.error")

PROXY_ERROR = "proxy_error"
ERROR_PREVIEW_CHARS = 500


def relay_headers(upstream_headers: Mapping[str, str]) -> Dict[str, str]:
    """Keep only the upstream headers the caller is allowed to see."""
    relayed = {}
    for name, value in upstream_headers.items():
        name_lower = name.lower()
        if name_lower in RELAYED_RESPONSE_HEADERS:
            relayed[name_lower] = value
    return relayed


def payload_too_large(limit: int) -> ProxiedResponse:
    return ProxiedResponse.error(
        413, "payload_too_large", f"Request body exceeds {limit} bytes"
    )


class ForwardingHandler:
    """
    Forwards one SSML synthesis request to the speech provider and relays the
    answer. Holds no per-request state, so a single instance serves every
    concurrent request.
    """

    def __init__(
        self,
        config: ProxyConfig,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._config = config
        self._transport = transport

    @property
    def config(self) -> ProxyConfig:
        return self._config

    def validate(self, inbound: InboundRequest) -> Optional[ProxiedResponse]:
        """Return a client-error response if the request must not go upstream."""
        if not inbound.body:
            return ProxiedResponse.error(
                400, "empty_body", "Request body must contain an SSML document"
            )
        if len(inbound.body) > self._config.max_body_bytes:
            return payload_too_large(self._config.max_body_bytes)
        return None

    def build_upstream_request(self, inbound: InboundRequest) -> UpstreamRequest:
        # The caller's Content-Type is ignored; SSML clients often send a wrong one.
        headers = {
            SUBSCRIPTION_KEY_HEADER: self._config.key,
            "Content-Type": SSML_CONTENT_TYPE,
            "Accept-Encoding": "identity",
        }
        output_format = inbound.header(OUTPUT_FORMAT_HEADER)
        if output_format:
            headers[OUTPUT_FORMAT_HEADER] = output_format
        return UpstreamRequest(
            url=self._config.upstream_url, headers=headers, body=inbound.body
        )

    async def handle(self, inbound: InboundRequest) -> ProxiedResponse:
        """
        Forward ``inbound`` upstream and build the caller's response.

        Never raises for per-request faults: client input errors become 4xx,
        upstream errors are relayed, and anything else becomes a 500 with a
        ``proxy_error`` body.
        """
        rejection = self.validate(inbound)
        if rejection is not None:
            logger.warning(
                f"[Synthesis] Rejected request: {rejection.status_code} "
                f"({len(inbound.body)} bytes)"
            )
            return rejection

        key = self._config.key
        try:
            upstream = self.build_upstream_request(inbound)
            output_format = upstream.headers.get(OUTPUT_FORMAT_HEADER)
            with traced_request(
                tracer,
                operation="synthesis_forward",
                secret=key,
                start_message=(
                    f"[Synthesis] Forwarding {len(upstream.body)} bytes to {upstream.url} "
                    f"(format={output_format or 'default'}, key={secret_preview(key)})"
                ),
                extra_attrs={
                    "proxy.target_url": upstream.url,
                    "proxy.output_format": output_format,
                    "proxy.body_bytes": len(upstream.body),
                },
            ) as span:
                try:
                    response = await self._send(upstream)
                except (httpx.TransportError, asyncio.TimeoutError) as e:
                    span.set_attribute("proxy.error", type(e).__name__)
                    log_exception_with_details(
                        logger, "[Synthesis] Upstream transport failure:", e, secret=key
                    )
                    return ProxiedResponse.error(
                        500, PROXY_ERROR, format_exception_message(e, secret=key)
                    )

                span.set_attribute("proxy.status_code", response.status_code)
                return self._relay(response)
        except Exception as e:
            log_exception_with_details(
                logger, "[Synthesis] Unexpected proxy failure:", e, secret=key
            )
            return ProxiedResponse.error(
                500, PROXY_ERROR, format_exception_message(e, secret=key)
            )

    async def _send(self, upstream: UpstreamRequest) -> httpx.Response:
        async with httpx.AsyncClient(
            timeout=httpx.Timeout(self._config.timeout_seconds),
            transport=self._transport,
            follow_redirects=False,
        ) as client:
            # httpx limits each phase separately; this bounds the whole exchange
            try:
                return await asyncio.wait_for(
                    client.post(
                        upstream.url, headers=upstream.headers, content=upstream.body
                    ),
                    timeout=self._config.timeout_seconds,
                )
            except asyncio.TimeoutError:
                raise asyncio.TimeoutError(
                    f"Upstream did not answer within {self._config.timeout_seconds:g}s"
                ) from None

    def _relay(self, response: httpx.Response) -> ProxiedResponse:
        if not response.is_success:
            # Relay the provider's diagnostic as-is so callers can act on it
            logger.warning(
                mask_secret(
                    f"[Synthesis] Upstream returned {response.status_code}: "
                    f"{response.text[:ERROR_PREVIEW_CHARS]}",
                    self._config.key,
                )
            )
        else:
            logger.info(
                f"[Synthesis] Upstream returned {response.status_code} "
                f"({len(response.content)} bytes, "
                f"{response.headers.get('content-type', 'no content-type')})"
            )
        headers = relay_headers(response.headers)
        # httpx has already decoded the body, so the upstream length no longer applies
        if "content-encoding" in response.headers:
            headers["content-length"] = str(len(response.content))
        return ProxiedResponse(
            status_code=response.status_code,
            headers=headers,
            body=response.content,
        )
