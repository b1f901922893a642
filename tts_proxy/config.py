"""
Immutable proxy configuration.

The upstream endpoint and credential are resolved once at startup and handed to
the forwarding handler; nothing reads the environment per request.
"""

import os
from dataclasses import dataclass, field
from typing import Mapping, Optional, Tuple
from urllib.parse import urlparse

from tts_proxy.vars import (
    DEFAULT_CORS_ALLOW_ORIGINS,
    DEFAULT_HOST,
    DEFAULT_MAX_BODY_BYTES,
    DEFAULT_PORT,
    DEFAULT_PROXY_TIMEOUT,
    SYNTHESIS_PATH,
)
from tts_proxy.utils import secret_preview


class ConfigurationError(ValueError):
    """Raised when required startup settings are missing or invalid."""


def _parse_number(environ: Mapping[str, str], name: str, default, cast):
    raw = environ.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        return cast(raw.strip())
    except ValueError:
        raise ConfigurationError(f"{name} must be a number, got {raw!r}") from None


def _parse_origins(raw: str) -> Tuple[str, ...]:
    return tuple(o.strip() for o in raw.split(",") if o.strip())


@dataclass(frozen=True)
class ProxyConfig:
    endpoint: str
    key: str = field(repr=False)
    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    max_body_bytes: int = DEFAULT_MAX_BODY_BYTES
    timeout_seconds: float = DEFAULT_PROXY_TIMEOUT
    cors_allow_origins: Tuple[str, ...] = ("*",)

    def __post_init__(self) -> None:
        if not self.endpoint:
            raise ConfigurationError("AZURE_ENDPOINT is required")
        if not self.key:
            raise ConfigurationError("AZURE_KEY is required")
        parsed = urlparse(self.endpoint)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise ConfigurationError(
                f"AZURE_ENDPOINT must be an http(s) URL, got {self.endpoint!r}"
            )
        if not (0 < self.port < 65536):
            raise ConfigurationError("PORT must be between 1 and 65535")
        if self.max_body_bytes <= 0:
            raise ConfigurationError("MAX_BODY_BYTES must be > 0")
        if self.timeout_seconds <= 0:
            raise ConfigurationError("PROXY_TIMEOUT must be > 0")

    @property
    def upstream_url(self) -> str:
        """Full synthesis URL; trailing slashes on the endpoint are dropped."""
        return f"{self.endpoint.rstrip('/')}{SYNTHESIS_PATH}"

    def describe(self) -> str:
        return (
            f"endpoint={self.endpoint} key={secret_preview(self.key)} "
            f"max_body_bytes={self.max_body_bytes} timeout={self.timeout_seconds}s"
        )

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "ProxyConfig":
        """Build the configuration from environment variables.

        Raises:
            ConfigurationError: if AZURE_ENDPOINT or AZURE_KEY is missing, or
                any optional setting cannot be parsed.
        """
        if environ is None:
            environ = os.environ
        return cls(
            endpoint=environ.get("AZURE_ENDPOINT", "").strip(),
            key=environ.get("AZURE_KEY", "").strip(),
            host=environ.get("HOST", DEFAULT_HOST).strip() or DEFAULT_HOST,
            port=_parse_number(environ, "PORT", DEFAULT_PORT, int),
            max_body_bytes=_parse_number(
                environ, "MAX_BODY_BYTES", DEFAULT_MAX_BODY_BYTES, int
            ),
            timeout_seconds=_parse_number(
                environ, "PROXY_TIMEOUT", DEFAULT_PROXY_TIMEOUT, float
            ),
            cors_allow_origins=_parse_origins(
                environ.get("CORS_ALLOW_ORIGINS", DEFAULT_CORS_ALLOW_ORIGINS)
            ),
        )
