import asyncio
from typing import Callable, List, Optional

import httpx

TEST_ENDPOINT = "https://westeurope.tts.speech.microsoft.com"
TEST_KEY = "0123456789abcdef-test-subscription-key"

WAV_HEADER = b"RIFF\x24\x00\x00\x00WAVEfmt "


def audio_response(request: httpx.Request) -> httpx.Response:
    return httpx.Response(
        200,
        content=WAV_HEADER + bytes(range(256)),
        headers={"content-type": "audio/x-wav"},
    )


class RecordingUpstream:
    """
    Stand-in for the speech provider. Records every request it receives and
    answers through ``responder`` (a WAV snippet by default).
    """

    def __init__(
        self, responder: Optional[Callable[[httpx.Request], httpx.Response]] = None
    ):
        self.requests: List[httpx.Request] = []
        self.responder = responder or audio_response

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self.responder(request)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self)

    @property
    def last_request(self) -> httpx.Request:
        assert self.requests, "upstream was never called"
        return self.requests[-1]


class SlowUpstream(httpx.AsyncBaseTransport):
    """Answers with audio after ``delay`` seconds, yielding to the event loop meanwhile."""

    def __init__(self, delay: float):
        self.delay = delay
        self.started = asyncio.Event()
        self.cancelled = False

    async def handle_async_request(self, request: httpx.Request) -> httpx.Response:
        self.started.set()
        try:
            await asyncio.sleep(self.delay)
        except asyncio.CancelledError:
            self.cancelled = True
            raise
        return audio_response(request)
