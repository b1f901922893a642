"""
End-to-end tests for POST /cognitiveservices/v1 through the FastAPI app.

Uses the ``client`` and ``upstream`` fixtures from the root conftest: the app
is built with a 4096 byte body limit and a mock speech provider.
"""

import asyncio

import httpx
import pytest

from tts_proxy.server import create_app
from tts_proxy.utils_tests.mock_upstream import TEST_ENDPOINT, TEST_KEY, SlowUpstream

SYNTHESIS_URL = "/cognitiveservices/v1"
SSML = (
    "<speak version='1.0' xml:lang='en-US'>"
    "<voice name='en-US-AriaNeural'>Grüße aus dem Proxy</voice></speak>"
).encode("utf-8")


def test_success_returns_upstream_bytes_unchanged(client, upstream):
    audio = bytes(range(256)) * 8
    upstream.responder = lambda request: httpx.Response(
        200, content=audio, headers={"content-type": "audio/mpeg"}
    )

    r = client.post(SYNTHESIS_URL, content=SSML)

    assert r.status_code == 200, f"Unexpected status code: {r.status_code}, {r.text}"
    assert r.content == audio
    assert r.headers["content-type"] == "audio/mpeg"
    assert r.headers["content-length"] == str(len(audio))


def test_only_content_headers_are_relayed(client, upstream):
    upstream.responder = lambda request: httpx.Response(
        200,
        content=b"ID3audio",
        headers={
            "content-type": "audio/mpeg",
            "apim-request-id": "2f0c6b1e",
            "x-envoy-upstream-service-time": "120",
            "set-cookie": "ARRAffinity=abc",
            "strict-transport-security": "max-age=31536000",
        },
    )

    r = client.post(SYNTHESIS_URL, content=SSML)

    assert r.status_code == 200
    for leaked in (
        "apim-request-id",
        "x-envoy-upstream-service-time",
        "set-cookie",
        "strict-transport-security",
    ):
        assert leaked not in r.headers, f"{leaked} leaked: {dict(r.headers)}"


def test_upstream_receives_exact_body_and_fixed_route(client, upstream):
    client.post(SYNTHESIS_URL, content=SSML)

    assert len(upstream.requests) == 1
    sent = upstream.last_request
    assert sent.method == "POST"
    assert str(sent.url) == f"{TEST_ENDPOINT}/cognitiveservices/v1"
    assert sent.content == SSML


@pytest.mark.parametrize(
    "caller_content_type",
    [None, "text/xml", "application/json", "text/plain; charset=latin-1"],
)
def test_caller_content_type_is_overridden(client, upstream, caller_content_type):
    headers = {"Content-Type": caller_content_type} if caller_content_type else {}

    r = client.post(SYNTHESIS_URL, content=SSML, headers=headers)

    assert r.status_code == 200
    assert upstream.last_request.headers["content-type"] == "application/ssml+xml"


def test_output_format_forwarded_verbatim(client, upstream):
    client.post(
        SYNTHESIS_URL,
        content=SSML,
        headers={"X-Microsoft-OutputFormat": "riff-24khz-16bit-mono-pcm"},
    )

    assert (
        upstream.last_request.headers["X-Microsoft-OutputFormat"]
        == "riff-24khz-16bit-mono-pcm"
    )


def test_output_format_absent_when_caller_omits_it(client, upstream):
    client.post(SYNTHESIS_URL, content=SSML)

    assert "X-Microsoft-OutputFormat" not in upstream.last_request.headers


def test_caller_headers_are_not_forwarded(client, upstream):
    client.post(
        SYNTHESIS_URL,
        content=SSML,
        headers={"Authorization": "Bearer caller-token", "X-Custom": "1"},
    )

    sent = upstream.last_request.headers
    assert "authorization" not in sent
    assert "x-custom" not in sent
    assert sent["host"] == "westeurope.tts.speech.microsoft.com"


def test_upstream_401_is_relayed_verbatim(client, upstream):
    upstream.responder = lambda request: httpx.Response(
        401, content=b"Invalid subscription key"
    )

    r = client.post(SYNTHESIS_URL, content=SSML)

    assert r.status_code == 401
    assert r.content == b"Invalid subscription key"


def test_upstream_error_keeps_only_content_headers(client, upstream):
    upstream.responder = lambda request: httpx.Response(
        400,
        content=b'{"error":"bad ssml"}',
        headers={"content-type": "application/json", "apim-request-id": "x"},
    )

    r = client.post(SYNTHESIS_URL, content=SSML)

    assert r.status_code == 400
    assert r.json() == {"error": "bad ssml"}
    assert r.headers["content-type"] == "application/json"
    assert "apim-request-id" not in r.headers


def test_unreachable_upstream_returns_proxy_error(client, upstream):
    def refuse(request):
        raise httpx.ConnectError("[Errno 111] Connection refused", request=request)

    upstream.responder = refuse

    r = client.post(SYNTHESIS_URL, content=SSML)

    assert r.status_code == 500
    assert r.headers["content-type"] == "application/json"
    body = r.json()
    assert body["error"] == "proxy_error"
    assert "Connection refused" in body["details"]


def test_oversized_body_never_reaches_upstream(client, upstream):
    r = client.post(SYNTHESIS_URL, content=b"<speak>" + b"a" * 5000 + b"</speak>")

    assert r.status_code == 413
    assert r.json()["error"] == "payload_too_large"
    assert upstream.requests == []


def test_oversized_chunked_body_never_reaches_upstream(client, upstream):
    def chunks():
        for _ in range(10):
            yield b"a" * 1000

    r = client.post(SYNTHESIS_URL, content=chunks())

    assert r.status_code == 413
    assert upstream.requests == []


def test_empty_body_is_rejected(client, upstream):
    r = client.post(SYNTHESIS_URL)

    assert r.status_code == 400
    assert r.json()["error"] == "empty_body"
    assert upstream.requests == []


def _connect_timeout(request):
    raise httpx.ConnectTimeout("timed out", request=request)


def _leaky_failure(request):
    raise ValueError(f"bad key {TEST_KEY}")


@pytest.mark.parametrize(
    "responder",
    [
        lambda request: httpx.Response(200, content=b"audio"),
        lambda request: httpx.Response(403, content=b"Forbidden"),
        _connect_timeout,
        _leaky_failure,
    ],
    ids=["success", "upstream_error", "transport_error", "internal_error"],
)
def test_key_never_reaches_the_caller(client, upstream, responder):
    upstream.responder = responder

    r = client.post(SYNTHESIS_URL, content=SSML)

    assert TEST_KEY not in r.text
    assert all(TEST_KEY not in value for value in r.headers.values())


def test_get_on_synthesis_route_not_allowed(client, upstream):
    r = client.get(SYNTHESIS_URL)

    assert r.status_code == 405
    assert upstream.requests == []


@pytest.mark.asyncio
async def test_caller_disconnect_cancels_upstream_call(proxy_config):
    slow = SlowUpstream(delay=10)
    app = create_app(proxy_config, transport=slow)
    messages = [{"type": "http.request", "body": SSML, "more_body": False}]
    sent = []

    async def receive():
        if messages:
            return messages.pop(0)
        # Hang up once the upstream call is in flight
        await slow.started.wait()
        return {"type": "http.disconnect"}

    async def send(message):
        sent.append(message)

    scope = {
        "type": "http",
        "asgi": {"version": "3.0"},
        "http_version": "1.1",
        "method": "POST",
        "scheme": "http",
        "path": SYNTHESIS_URL,
        "raw_path": SYNTHESIS_URL.encode(),
        "query_string": b"",
        "root_path": "",
        "headers": [
            (b"host", b"testserver"),
            (b"content-length", str(len(SSML)).encode()),
        ],
        "client": ("127.0.0.1", 50000),
        "server": ("testserver", 80),
    }

    await asyncio.wait_for(app(scope, receive, send), timeout=5)

    assert slow.cancelled
    assert sent[0]["type"] == "http.response.start"
    assert sent[0]["status"] == 499
