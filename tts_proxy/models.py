from dataclasses import dataclass, field
from typing import Dict, Mapping, Optional

from pydantic import BaseModel


class HealthStatus(BaseModel):
    status: str = "ok"
    message: str = "TTS proxy is running"


class ProxyErrorBody(BaseModel):
    error: str
    details: str


@dataclass(frozen=True)
class InboundRequest:
    """
    A synthesis request as received from the caller.

    Attributes:
        body: Raw request bytes, never decoded.
        headers: Caller headers. Lookups through ``header`` ignore case, so a
            plain dict and Starlette's ``Headers`` behave the same.
    """

    body: bytes
    headers: Mapping[str, str] = field(default_factory=dict)

    def header(self, name: str) -> Optional[str]:
        value = self.headers.get(name)
        if value is not None:
            return value
        wanted = name.lower()
        for key, candidate in self.headers.items():
            if key.lower() == wanted:
                return candidate
        return None


@dataclass(frozen=True)
class UpstreamRequest:
    url: str
    headers: Dict[str, str]
    body: bytes


@dataclass
class ProxiedResponse:
    """What the caller receives: status, relayed headers, raw body."""

    status_code: int
    headers: Dict[str, str] = field(default_factory=dict)
    body: bytes = b""

    @classmethod
    def error(cls, status_code: int, error: str, details: str) -> "ProxiedResponse":
        payload = ProxyErrorBody(error=error, details=details)
        return cls(
            status_code=status_code,
            headers={"content-type": "application/json"},
            body=payload.model_dump_json().encode("utf-8"),
        )
