import os

SERVICE_NAME = os.getenv("SERVICE_NAME", "tts-proxy")
LOG_LEVEL = os.environ.get("LOG_LEVEL", "info").lower()

OTLP_ENDPOINT = os.getenv("OTLP_ENDPOINT")
OTLP_HEADERS = os.getenv("OTLP_HEADERS", "")

# Defaults for the settings validated by ProxyConfig.from_env
DEFAULT_HOST = "0.0.0.0"
DEFAULT_PORT = 3000
DEFAULT_MAX_BODY_BYTES = 2 * 1024 * 1024
DEFAULT_PROXY_TIMEOUT = 30.0
DEFAULT_CORS_ALLOW_ORIGINS = "*"

SYNTHESIS_PATH = "/cognitiveservices/v1"
SUBSCRIPTION_KEY_HEADER = "Ocp-Apim-Subscription-Key"
OUTPUT_FORMAT_HEADER = "X-Microsoft-OutputFormat"
SSML_CONTENT_TYPE = "application/ssml+xml"

# Only these upstream response headers reach the caller
RELAYED_RESPONSE_HEADERS = ("content-type", "content-length")
