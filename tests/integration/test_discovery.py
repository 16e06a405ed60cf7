"""Integration tests for the discovery engine.

Most tests stub the client's coroutine methods; the last class drives a real
client against mocked HTTP to check the readme-to-tree fallback end to end.
"""

import random
from datetime import date
from unittest.mock import MagicMock

import httpx
import pytest

from github_markdown_explorer.client import GitHubApiClient
from github_markdown_explorer.discovery import DiscoveryEngine, build_search_query
from github_markdown_explorer.errors import DiscoveryError, NetworkError, NoMarkdownError, RateLimitError
from github_markdown_explorer.models import (
    DocumentContext,
    FileContent,
    GitHubUser,
    Repository,
    SearchFilters,
    TreeItem,
)


def _repo(name, owner="octo", branch="main"):
    return Repository(
        id=1,
        owner=owner,
        name=name,
        description="",
        default_branch=branch,
        stars=1,
        forks=0,
        language="",
        pushed_at=None,
        html_url=f"https://github.com/{owner}/{name}",
    )


def _doc(path):
    return FileContent(
        name=path.rsplit("/", 1)[-1],
        path=path,
        content="",
        encoding="base64",
        sha="s",
        size=0,
        html_url="",
        download_url=None,
    )


def _blob(path, type_="blob"):
    return TreeItem(path=path, mode="100644", type=type_, sha="s", url="")


@pytest.fixture
def api():
    return MagicMock(spec=GitHubApiClient)


@pytest.fixture
def engine(api):
    return DiscoveryEngine(api, rng=random.Random(7))


class TestBuildSearchQuery:
    def test_default_filters(self):
        filters = SearchFilters.default(today=date(2026, 10, 19))
        assert build_search_query(filters) == (
            "pushed:2023-01-01..2026-10-19 stars:>=1 archived:false is:public"
        )

    def test_language_and_docs(self):
        filters = SearchFilters(
            start_date="2024-01-01", end_date="2024-12-31", min_stars=5, language="Go", only_with_docs=True
        )
        query = build_search_query(filters)
        assert "stars:>=5" in query
        assert query.endswith("language:Go (in:readme OR filename:README OR filename:docs)")


class TestRandomRepository:
    @pytest.mark.asyncio
    async def test_search_strategy(self, engine, api):
        candidates = [_repo("a"), _repo("b"), _repo("c")]
        api.search_repositories.return_value = candidates
        repo = await engine.random_repository()
        assert repo in candidates
        query = api.search_repositories.await_args.args[0]
        assert query.per_page == 100
        assert 1 <= query.page <= 10
        assert query.sort == "updated"
        api.search_users.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_empty_search_falls_through_to_users(self, engine, api):
        api.search_repositories.return_value = []
        api.search_users.return_value = [GitHubUser(login="someone", id=42)]
        api.get_user_repositories.return_value = [_repo("mine", owner="someone")]
        repo = await engine.random_repository()
        assert repo.full_name == "someone/mine"
        query = api.search_users.await_args.args[0]
        assert query.q.startswith("type:user id:>")
        assert query.per_page == 10
        api.get_user_repositories.assert_awaited_once_with("someone")

    @pytest.mark.asyncio
    async def test_rate_limited_search_falls_through(self, engine, api):
        api.search_repositories.side_effect = RateLimitError(123)
        api.search_users.return_value = [GitHubUser(login="someone", id=42)]
        api.get_user_repositories.return_value = [_repo("mine", owner="someone")]
        assert (await engine.random_repository()).name == "mine"

    @pytest.mark.asyncio
    async def test_raises_after_five_fallback_attempts(self, engine, api, sleep):
        api.search_repositories.return_value = []
        api.search_users.return_value = []
        with pytest.raises(DiscoveryError, match="after 5 attempts"):
            await engine.random_repository()
        assert api.search_users.await_count == 5
        assert [c.args[0] for c in sleep.await_args_list] == [1.0] * 4

    @pytest.mark.asyncio
    async def test_recovers_on_a_later_attempt(self, engine, api):
        api.search_repositories.return_value = []
        api.search_users.side_effect = [
            NetworkError("boom", 502),
            [GitHubUser(login="empty", id=1)],
            [GitHubUser(login="someone", id=2)],
        ]
        api.get_user_repositories.side_effect = [[], [_repo("mine", owner="someone")]]
        repo = await engine.random_repository()
        assert repo.owner == "someone"
        assert api.search_users.await_count == 3


class TestRandomMarkdown:
    @pytest.mark.asyncio
    async def test_prefers_the_readme(self, engine, api):
        api.get_readme.return_value = _doc("README.md")
        doc = await engine.random_markdown("octo", "docs", "main")
        assert doc.path == "README.md"
        api.get_tree_recursive.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_looks_up_the_default_branch(self, engine, api):
        api.get_repository.return_value = _repo("docs", branch="trunk")
        api.get_readme.return_value = _doc("README.md")
        await engine.random_markdown("octo", "docs")
        api.get_readme.assert_awaited_once_with("octo", "docs", "trunk")

    @pytest.mark.asyncio
    async def test_missing_readme_falls_back_to_tree(self, engine, api):
        api.get_readme.side_effect = NetworkError("HTTP 404: Not Found", 404)
        api.get_tree_recursive.return_value = [
            _blob("src/main.py"),
            _blob("docs", type_="tree"),
            _blob("docs/guide.md"),
        ]
        api.get_file_content.return_value = _doc("docs/guide.md")
        doc = await engine.random_markdown("octo", "docs", "main")
        assert doc.path == "docs/guide.md"
        api.get_file_content.assert_awaited_once_with("octo", "docs", "docs/guide.md", "main")

    @pytest.mark.asyncio
    async def test_other_readme_failures_propagate(self, engine, api):
        api.get_readme.side_effect = NetworkError("HTTP 500", 500)
        with pytest.raises(NetworkError):
            await engine.random_markdown("octo", "docs", "main")
        api.get_tree_recursive.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_no_markdown_in_tree(self, engine, api):
        api.get_readme.side_effect = NetworkError("HTTP 404: Not Found", 404)
        api.get_tree_recursive.return_value = [_blob("main.c")]
        with pytest.raises(NoMarkdownError):
            await engine.random_markdown("octo", "docs", "main")

    @pytest.mark.asyncio
    async def test_discover_combines_both_steps(self, engine, api):
        api.search_repositories.return_value = [_repo("docs", branch="develop")]
        api.get_readme.return_value = _doc("README.md")
        found = await engine.discover()
        assert found.repository.name == "docs"
        assert found.document.path == "README.md"
        api.get_readme.assert_awaited_once_with("octo", "docs", "develop")


class TestLinkTrail:
    def _context(self, content, path="a/b/c.md"):
        return DocumentContext(owner="octo", repo="docs", path=path, ref="main", content=content)

    @pytest.mark.asyncio
    async def test_follows_a_resolved_link(self, engine, api):
        api.get_file_content.return_value = _doc("a/d.md")
        doc = await engine.next_from_trail(self._context("Next: [d](../d.md)"))
        assert doc.path == "a/d.md"
        api.get_file_content.assert_awaited_once_with("octo", "docs", "a/d.md", "main")

    @pytest.mark.asyncio
    async def test_no_links_means_no_next_document(self, engine, api):
        assert await engine.next_from_trail(self._context("[site](https://example.com)")) is None
        api.get_file_content.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_links_above_the_root_are_not_followed(self, engine, api):
        assert await engine.next_from_trail(self._context("[x](../../../x.md)")) is None
        api.get_file_content.assert_not_awaited()

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "error",
        [
            NetworkError("HTTP 404: Not Found", 404),
            RateLimitError(1),
            FileNotFoundError("Path is a directory"),
            TypeError("string indices must be integers"),
        ],
    )
    async def test_failures_yield_none(self, engine, api, error):
        api.get_file_content.side_effect = error
        assert await engine.next_from_trail(self._context("[e](./e.md)")) is None


class TestReadmeFallbackOverHttp:
    @pytest.mark.asyncio
    async def test_readme_404_then_tree(self, client, http):
        tree = {
            "truncated": False,
            "tree": [{"path": "guide.mdx", "mode": "100644", "type": "blob", "sha": "1", "url": "u"}],
        }
        guide = {
            "name": "guide.mdx",
            "path": "guide.mdx",
            "content": "",
            "encoding": "base64",
            "sha": "1",
            "size": 0,
        }
        request = httpx.Request("GET", "https://api.github.com/")
        http.request.side_effect = [
            httpx.Response(404, json={"message": "Not Found"}, request=request),
            httpx.Response(200, json=tree, request=request),
            httpx.Response(200, json=guide, request=request),
        ]
        engine = DiscoveryEngine(client, rng=random.Random(1))
        doc = await engine.random_markdown("octo", "docs", "main")
        assert doc.path == "guide.mdx"
        assert http.request.call_count == 3


class TestLinkTrailOverHttp:
    @pytest.mark.asyncio
    async def test_malformed_payload_yields_none(self, client, http):
        http.request.return_value = httpx.Response(
            200, json="not an object", request=httpx.Request("GET", "https://api.github.com/")
        )
        engine = DiscoveryEngine(client, rng=random.Random(1))
        context = DocumentContext(owner="octo", repo="docs", path="a.md", ref="main", content="[b](b.md)")
        assert await engine.next_from_trail(context) is None
        assert http.request.call_count == 1
