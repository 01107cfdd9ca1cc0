"""
Pytest configuration.

Unit tests run against ``httpx.MockTransport`` upstreams (see ``tests.mocks``).
Live extractor tests read their embed URLs from ``TEST_URL_<EXTRACTOR>``
environment variables (locally from a .env file) and are skipped when unset.
"""

import os
from pathlib import Path

import pytest
from dotenv import load_dotenv

from streamflow_proxy.utils.cache_utils import STREAMING_CACHE, LRUMemoryCache
from tests.mocks import DummyRequest, MockUpstream

# Load .env file from project root
project_root = Path(__file__).parent.parent
load_dotenv(project_root / ".env")


def pytest_configure(config):
    """Configure pytest-asyncio mode."""
    config.addinivalue_line("markers", "asyncio: mark test as async")


@pytest.fixture
def dummy_request():
    return DummyRequest()


@pytest.fixture
def upstream():
    return MockUpstream()


@pytest.fixture(autouse=True)
def clear_streaming_cache():
    STREAMING_CACHE.memory_cache = LRUMemoryCache(maxsize=STREAMING_CACHE.memory_cache.maxsize)
    yield


@pytest.fixture
def get_test_url():
    """
    Factory fixture that returns a function to get test URLs from environment.

    Usage:
        def test_something(get_test_url):
            url = get_test_url("Streamtape")
            if url is None:
                pytest.skip("TEST_URL_STREAMTAPE not set")
    """

    def _get_url(extractor_name: str) -> str | None:
        env_var = f"TEST_URL_{extractor_name.upper()}"
        return os.environ.get(env_var)

    return _get_url
