"""Shared fixtures for integration tests.

The cache writes real SQLite and JSON files under tmp_path. Only the HTTP
transport (``httpx.AsyncClient.request``) is mocked.
"""

from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from github_markdown_explorer.cache_store import CacheStore
from github_markdown_explorer.client import GitHubApiClient
from github_markdown_explorer.settings import Settings

NOW = 1_700_000_000.0


class FakeClock:
    def __init__(self, now=NOW):
        self.now = now

    def __call__(self):
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def settings(tmp_path):
    return Settings(github_token="test-token", cache_dir=tmp_path / "cache", _env_file=None)


@pytest.fixture
def cache(settings):
    return CacheStore(settings.cache_dir, default_ttl_seconds=settings.default_ttl_seconds)


@pytest.fixture
def http():
    mock = MagicMock(spec=httpx.AsyncClient)
    mock.request = AsyncMock()
    return mock


@pytest.fixture
def client(settings, cache, http, clock):
    return GitHubApiClient(settings, cache=cache, http_client=http, clock=clock)


@pytest.fixture(autouse=True)
def sleep():
    """Patch out asyncio.sleep (shared by client and discovery engine) to avoid real waits."""
    with patch("github_markdown_explorer.client.asyncio.sleep", new_callable=AsyncMock) as mock_sleep:
        yield mock_sleep
