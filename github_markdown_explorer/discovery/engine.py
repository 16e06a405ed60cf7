"""Randomized repository and document selection with ordered strategy fallback."""

import asyncio
import logging
import random

from ..client import GitHubApiClient
from ..errors import ApiError, DiscoveryError, NetworkError, NoMarkdownError
from ..models import Discovery, DocumentContext, FileContent, Repository, SearchFilters, SearchQuery
from .links import extract_markdown_links, resolve_relative_path

logger = logging.getLogger(__name__)

SEARCH_PAGES = 10
SEARCH_PER_PAGE = 100
USER_ID_MAX = 1_000_000
USER_SEARCH_PER_PAGE = 10
FALLBACK_ATTEMPTS = 5
FALLBACK_DELAY = 1.0  # seconds


def build_search_query(filters: SearchFilters) -> str:
    parts = [
        f"pushed:{filters.start_date}..{filters.end_date}",
        f"stars:>={filters.min_stars}",
        "archived:false",
        "is:public",
    ]
    if filters.language:
        parts.append(f"language:{filters.language}")
    if filters.only_with_docs:
        parts.append("(in:readme OR filename:README OR filename:docs)")
    return " ".join(parts)


class DiscoveryEngine:
    """Picks random repositories and documents through a ``GitHubApiClient``.

    Every choice is uniform over its candidates using ``rng``; pass a seeded
    ``random.Random`` for reproducible runs.
    """

    def __init__(
        self,
        client: GitHubApiClient,
        rng: random.Random | None = None,
        fallback_attempts: int = FALLBACK_ATTEMPTS,
        fallback_delay: float = FALLBACK_DELAY,
    ):
        self.client = client
        self.rng = rng or random.Random()
        self.fallback_attempts = fallback_attempts
        self.fallback_delay = fallback_delay

    async def random_repository(self, filters: SearchFilters | None = None) -> Repository:
        """Filtered search first, then the user-anchored fallback."""
        filters = filters or SearchFilters.default()
        try:
            return await self._search_random_repository(filters)
        except (ApiError, DiscoveryError) as e:
            logger.info("Repository search failed, trying user-based discovery: %s", e)

        last_error: Exception | None = None
        for attempt in range(1, self.fallback_attempts + 1):
            try:
                return await self._random_user_repository()
            except (ApiError, DiscoveryError) as e:
                last_error = e
                logger.info("User-based attempt %d/%d failed: %s", attempt, self.fallback_attempts, e)
                if attempt < self.fallback_attempts:
                    await asyncio.sleep(self.fallback_delay)
        raise DiscoveryError(
            f"Could not find a random repository after {self.fallback_attempts} attempts"
        ) from last_error

    async def random_markdown(self, owner: str, repo: str, ref: str | None = None) -> FileContent:
        """The readme if there is one, else a random markdown file from the tree."""
        if ref is None:
            ref = (await self.client.get_repository(owner, repo)).default_branch
        try:
            return await self.client.get_readme(owner, repo, ref)
        except NetworkError as e:
            if e.status_code != 404:
                raise
            logger.info("No readme in %s/%s, scanning tree at %s", owner, repo, ref)

        tree = await self.client.get_tree_recursive(owner, repo, ref)
        candidates = [item for item in tree if item.is_markdown]
        if not candidates:
            raise NoMarkdownError(f"No markdown files found in {owner}/{repo}")
        choice = self.rng.choice(candidates)
        return await self.client.get_file_content(owner, repo, choice.path, ref)

    async def discover(self, filters: SearchFilters | None = None) -> Discovery:
        repository = await self.random_repository(filters)
        document = await self.random_markdown(repository.owner, repository.name, repository.default_branch)
        return Discovery(repository=repository, document=document)

    async def next_from_trail(self, context: DocumentContext) -> FileContent | None:
        """Follow a random relative markdown link out of ``context``.

        Never raises: any failure means there is no next document.
        """
        links = extract_markdown_links(context.content)
        if not links:
            return None
        link = self.rng.choice(links)
        path = resolve_relative_path(link, context.path)
        if path is None:
            logger.debug("Link %s from %s leaves the repository root", link, context.path)
            return None
        try:
            return await self.client.get_file_content(context.owner, context.repo, path, context.ref)
        except Exception as e:
            logger.info("Could not follow %s from %s: %s", link, context.path, e)
            return None

    async def _search_random_repository(self, filters: SearchFilters) -> Repository:
        query = SearchQuery(
            q=build_search_query(filters),
            sort=filters.sort,
            per_page=SEARCH_PER_PAGE,
            page=self.rng.randint(1, SEARCH_PAGES),
        )
        results = await self.client.search_repositories(query)
        if not results:
            raise DiscoveryError("No repositories found with current filters")
        return self.rng.choice(results)

    async def _random_user_repository(self) -> Repository:
        user_id = self.rng.randint(1, USER_ID_MAX)
        users = await self.client.search_users(
            SearchQuery(q=f"type:user id:>{user_id}", per_page=USER_SEARCH_PER_PAGE)
        )
        if not users:
            raise DiscoveryError("No users found")
        user = self.rng.choice(users)
        repos = await self.client.get_user_repositories(user.login)
        if not repos:
            raise DiscoveryError(f"User {user.login} has no public repositories")
        return self.rng.choice(repos)
