import logging
import sys
from contextlib import asynccontextmanager
from typing import Optional

import httpx
import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from prometheus_client import Info
from prometheus_fastapi_instrumentator import Instrumentator

from tts_proxy.config import ConfigurationError, ProxyConfig
from tts_proxy.routes import router
from tts_proxy.synthesis.forwarder import ForwardingHandler
from tts_proxy.utils import secret_fingerprint
from tts_proxy.vars import LOG_LEVEL, OTLP_ENDPOINT, OTLP_HEADERS, SERVICE_NAME

logger = logging.getLogger("uvicorn.error")

# Add app_name to the metrics
app_info = Info("tts_proxy_app_info", "Application Info")
app_info.info({"app_name": SERVICE_NAME})


def configure_tracing() -> None:
    """Install the SDK tracer provider; spans are exported only when OTLP_ENDPOINT is set."""
    tracer_provider = TracerProvider(
        resource=Resource.create({"service.name": SERVICE_NAME})
    )
    if OTLP_ENDPOINT:
        otlp_exporter = OTLPSpanExporter(
            endpoint=OTLP_ENDPOINT,
            headers=(OTLP_HEADERS.split(",") if OTLP_HEADERS else None),
        )
        tracer_provider.add_span_processor(BatchSpanProcessor(otlp_exporter))
    trace.set_tracer_provider(tracer_provider)


def create_app(
    config: ProxyConfig,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> FastAPI:
    """
    Build the proxy application around an already validated configuration.

    ``transport`` replaces the network layer of the upstream client; tests pass
    an ``httpx.MockTransport`` here.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(f"TTS proxy forwarding to {config.upstream_url}")
        logger.info(f"Configuration: {config.describe()}")
        yield
        logger.info("TTS proxy shutting down")

    app = FastAPI(title="TTS Proxy", lifespan=lifespan)
    app.state.config = config
    app.state.forwarding_handler = ForwardingHandler(config, transport=transport)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(config.cors_allow_origins),
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["*"],
        expose_headers=["Content-Type", "Content-Length"],
    )

    Instrumentator().instrument(app).expose(app)
    FastAPIInstrumentor.instrument_app(app)

    app.include_router(router)
    return app


def main() -> None:
    logging.basicConfig(
        level=LOG_LEVEL.upper(),
        format="%(asctime)s %(levelname)-8s %(name)s  %(message)s",
    )
    try:
        config = ProxyConfig.from_env()
    except ConfigurationError as e:
        logger.error(
            f"Invalid configuration: {e}. "
            "Please set AZURE_ENDPOINT and AZURE_KEY environment variables."
        )
        sys.exit(1)

    logger.info(f"Subscription key loaded ({secret_fingerprint(config.key)})")
    configure_tracing()
    app = create_app(config)
    logger.info(f"TTS proxy listening on http://{config.host}:{config.port}")
    uvicorn.run(app, host=config.host, port=config.port, log_level=LOG_LEVEL)


if __name__ == "__main__":
    main()
