"""Async GitHub REST API client using httpx with a persistent two-tier cache.

Every call goes through ``_request``: a pre-flight quota gate, a cache
lookup, a conditional request, quota refresh from the response headers, and
status mapping into the error taxonomy. Transient network failures are
retried per ``retry.retry_delay``; rate limits are surfaced to the caller.
"""

import asyncio
import logging
import time
from email.utils import parsedate_to_datetime
from typing import Any
from urllib.parse import quote, urlencode

import httpx

from .cache_store import CacheStore
from .errors import NetworkError, RateLimitError, SecondaryRateLimitError
from .models import (
    DirectoryEntry,
    FileContent,
    GitHubUser,
    RateLimitState,
    Repository,
    SearchQuery,
    TreeItem,
    cache_key,
)
from .retry import retry_delay
from .settings import Settings

logger = logging.getLogger(__name__)

API_VERSION = "2022-11-28"
# GitHub asks clients to wait at least a minute when it gives no usable value
DEFAULT_SECONDARY_WAIT = 60.0


class GitHubApiClient:
    """Typed access to the GitHub endpoints the explorer needs.

    Quota state is owned by the instance; two clients never share it.
    """

    def __init__(
        self,
        settings: Settings,
        cache: CacheStore | None = None,
        http_client: httpx.AsyncClient | None = None,
        clock=time.time,
    ):
        self.cache = cache
        self._clock = clock
        self._base_url = settings.api_base_url.rstrip("/")
        self._ttl_seconds = settings.default_ttl_seconds
        self._headers = {
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": API_VERSION,
            "User-Agent": settings.user_agent,
        }
        token = settings.token()
        if token:
            self._headers["Authorization"] = f"Bearer {token}"
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(
            timeout=settings.request_timeout,
            follow_redirects=True,
        )
        self._rate_limit = RateLimitState.initial(clock())

    async def __aenter__(self) -> "GitHubApiClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    # -- quota -----------------------------------------------------------

    @property
    def rate_limit(self) -> RateLimitState:
        """Copy of the quota state parsed from the most recent response."""
        return self._rate_limit.copy()

    def is_rate_limited(self) -> bool:
        """True once a response reported no remaining quota.

        Stays true past the reset time until a response (usually the
        ``get_rate_limit`` probe) reports fresh quota.
        """
        return self._rate_limit.remaining == 0

    def seconds_until_reset(self) -> int:
        return max(0, int(self._rate_limit.reset - self._clock()))

    def _update_rate_limit(self, headers: httpx.Headers) -> None:
        state = RateLimitState.from_headers(headers)
        if state is not None:
            self._rate_limit = state

    # -- operations --------------------------------------------------------

    async def get_repository(self, owner: str, repo: str, *, skip_cache: bool = False) -> Repository:
        data = await self._request(f"/repos/{owner}/{repo}", skip_cache=skip_cache)
        return Repository.from_api(data)

    async def get_readme(
        self, owner: str, repo: str, ref: str | None = None, *, skip_cache: bool = False
    ) -> FileContent:
        params = {"ref": ref} if ref else None
        data = await self._request(f"/repos/{owner}/{repo}/readme", params, skip_cache=skip_cache)
        return FileContent.from_api(data)

    async def get_file_content(
        self, owner: str, repo: str, path: str, ref: str | None = None, *, skip_cache: bool = False
    ) -> FileContent:
        params = {"ref": ref} if ref else None
        data = await self._request(_contents_endpoint(owner, repo, path), params, skip_cache=skip_cache)
        if isinstance(data, list):
            raise FileNotFoundError(f"Path is a directory: {path}")
        return FileContent.from_api(data)

    async def list_directory(
        self, owner: str, repo: str, path: str = "", ref: str | None = None, *, skip_cache: bool = False
    ) -> list[DirectoryEntry]:
        params = {"ref": ref} if ref else None
        data = await self._request(_contents_endpoint(owner, repo, path), params, skip_cache=skip_cache)
        items = data if isinstance(data, list) else [data]
        return [DirectoryEntry.from_api(item) for item in items]

    async def get_tree_recursive(
        self, owner: str, repo: str, ref: str, *, skip_cache: bool = False
    ) -> list[TreeItem]:
        """Flattened listing of every blob and tree at ``ref`` in a single call."""
        endpoint = f"/repos/{owner}/{repo}/git/trees/{quote(ref, safe='/')}"
        data = await self._request(endpoint, {"recursive": "1"}, skip_cache=skip_cache)
        if data.get("truncated"):
            logger.warning("Tree listing for %s/%s@%s was truncated by the API", owner, repo, ref)
        return [TreeItem.from_api(item) for item in data.get("tree", [])]

    async def search_repositories(self, query: SearchQuery, *, skip_cache: bool = False) -> list[Repository]:
        data = await self._request("/search/repositories", query.to_params(), skip_cache=skip_cache)
        return [Repository.from_api(item) for item in data.get("items", [])]

    async def search_users(self, query: SearchQuery, *, skip_cache: bool = False) -> list[GitHubUser]:
        data = await self._request("/search/users", query.to_params(), skip_cache=skip_cache)
        return [GitHubUser.from_api(item) for item in data.get("items", [])]

    async def get_user_repositories(self, username: str, *, skip_cache: bool = False) -> list[Repository]:
        params = {"type": "public", "sort": "updated", "per_page": "100"}
        data = await self._request(f"/users/{username}/repos", params, skip_cache=skip_cache)
        return [Repository.from_api(item) for item in data]

    async def get_rate_limit(self) -> RateLimitState:
        """Probe the quota endpoint.

        Never cached and not gated: the probe does not count against the
        quota. Client state is still only refreshed from response headers.
        """
        data = await self._request("/rate_limit", use_cache=False, gated=False)
        rate = data["rate"]
        return RateLimitState(
            limit=rate["limit"],
            remaining=rate["remaining"],
            reset=rate["reset"],
            used=rate["used"],
        )

    # -- request pipeline --------------------------------------------------

    async def _request(
        self,
        endpoint: str,
        params: dict | None = None,
        *,
        use_cache: bool = True,
        skip_cache: bool = False,
        gated: bool = True,
    ) -> Any:
        if params:
            endpoint = f"{endpoint}?{urlencode(params)}"
        key = cache_key("GET", endpoint)
        cache = self.cache if use_cache else None

        if gated and self.is_rate_limited():
            cached = cache.get(key) if cache is not None else None
            if cached is not None:
                logger.warning("Rate limited, serving from cache: %s", endpoint)
                return cached
            raise RateLimitError(self._rate_limit.reset)

        attempt = 0
        while True:
            try:
                return await self._execute(endpoint, key, cache, skip_cache)
            except NetworkError as e:
                attempt += 1
                delay = retry_delay(attempt, e)
                if delay is None:
                    raise
                logger.debug("%s, retry %d for %s in %.1fs", e, attempt, endpoint, delay)
                await asyncio.sleep(delay)

    async def _execute(
        self,
        endpoint: str,
        key: str,
        cache: CacheStore | None,
        skip_cache: bool,
        conditional: bool = True,
    ) -> Any:
        if cache is not None and not skip_cache:
            cached = cache.get(key)
            if cached is not None:
                return cached

        headers = dict(self._headers)
        validators = {}
        if cache is not None and conditional:
            validators = cache.get_conditional_headers(key)
            headers.update(validators)

        logger.debug("GET %s", endpoint)
        try:
            resp = await self._client.request("GET", f"{self._base_url}{endpoint}", headers=headers)
        except httpx.TransportError as e:
            raise NetworkError(f"{type(e).__name__}: {e}") from e

        self._update_rate_limit(resp.headers)

        if resp.status_code == 304:
            cached = cache.get(key) if cache is not None else None
            if cached is not None:
                self._store(
                    cache,
                    key,
                    cached,
                    resp.headers.get("etag") or validators.get("If-None-Match"),
                    resp.headers.get("last-modified") or validators.get("If-Modified-Since"),
                )
                return cached
            if conditional and cache is not None:
                # Validators outlived the data; fetch the full payload
                return await self._execute(endpoint, key, cache, skip_cache=True, conditional=False)
            raise NetworkError("HTTP 304: Not Modified without a cached copy", 304)

        if resp.status_code in (403, 429):
            retry_after = _parse_retry_after(resp, self._clock())
            cached = cache.get(key) if cache is not None else None
            if cached is not None:
                logger.warning("Rate limited (HTTP %d), serving from cache: %s", resp.status_code, endpoint)
                return cached
            if retry_after is not None:
                raise SecondaryRateLimitError(retry_after, resp.status_code)
            raise RateLimitError(self._rate_limit.reset, resp.status_code)

        if not 200 <= resp.status_code < 300:
            raise NetworkError(f"HTTP {resp.status_code}: {resp.reason_phrase}", resp.status_code)

        try:
            data = resp.json() if resp.content else {}
        except ValueError as e:
            raise NetworkError(f"Invalid JSON from {endpoint}") from e

        if cache is not None:
            self._store(cache, key, data, resp.headers.get("etag"), resp.headers.get("last-modified"))
        return data

    def _store(
        self, cache: CacheStore, key: str, data: Any, etag: str | None, last_modified: str | None
    ) -> None:
        cache.set(key, data, self._ttl_seconds, etag=etag, last_modified=last_modified)


def _contents_endpoint(owner: str, repo: str, path: str) -> str:
    return f"/repos/{owner}/{repo}/contents/{quote(path.strip('/'))}"


def _parse_retry_after(resp: httpx.Response, now: float | None = None) -> float | None:
    """Seconds to wait from a Retry-After header; None when the header is absent.

    Accepts delta-seconds or an HTTP date.
    """
    val = resp.headers.get("retry-after")
    if val is None:
        return None
    try:
        return float(val)
    except ValueError:
        pass
    try:
        when = parsedate_to_datetime(val)
    except (TypeError, ValueError):
        return DEFAULT_SECONDARY_WAIT
    now = time.time() if now is None else now
    return max(0.0, when.timestamp() - now)
