import pytest
from fastapi.testclient import TestClient

from tts_proxy.config import ProxyConfig
from tts_proxy.server import create_app
from tts_proxy.utils_tests.mock_upstream import (
    TEST_ENDPOINT,
    TEST_KEY,
    RecordingUpstream,
)


@pytest.fixture
def proxy_config():
    return ProxyConfig(endpoint=TEST_ENDPOINT, key=TEST_KEY, max_body_bytes=4096)


@pytest.fixture
def upstream():
    """Mock speech provider; swap ``upstream.responder`` to change its answer."""
    return RecordingUpstream()


@pytest.fixture
def client(proxy_config, upstream):
    app = create_app(proxy_config, transport=upstream.transport)
    with TestClient(app) as test_client:
        yield test_client
