"""Explore markdown documents on GitHub.

A rate-limit aware API client with a two-tier persistent cache, and a
discovery engine that picks random repositories and follows link trails.
"""

from .cache_store import CacheStore
from .cli import main
from .client import GitHubApiClient
from .discovery import DiscoveryEngine
from .errors import ApiError, DiscoveryError, NetworkError, RateLimitError, SecondaryRateLimitError
from .settings import Settings

__all__ = [
    "main",
    "ApiError",
    "CacheStore",
    "DiscoveryEngine",
    "DiscoveryError",
    "GitHubApiClient",
    "NetworkError",
    "RateLimitError",
    "SecondaryRateLimitError",
    "Settings",
]

if __name__ == "__main__":
    main()
