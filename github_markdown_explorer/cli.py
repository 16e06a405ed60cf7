"""CLI commands for exploring markdown on GitHub."""

import argparse
import asyncio
import logging
import random
import sys
from dataclasses import replace
from datetime import datetime
from pathlib import Path

from .cache_store import CacheStore
from .client import GitHubApiClient
from .discovery import DiscoveryEngine
from .errors import ApiError, DiscoveryError, is_rate_limit_error, rate_limit_message, rate_limit_reset_time
from .models import DocumentContext, FileContent, ReadingHistoryEntry, SearchFilters
from .settings import Settings
from .utils import (
    decode_content,
    extract_title,
    is_valid_owner,
    is_valid_repo,
    parse_github_url,
    sanitize_ref,
    sanitize_repo_path,
    truncate_text,
)


def _log(msg: str):
    sys.stderr.write(f"{msg}\n")
    sys.stderr.flush()


def _parse_repo(value: str | None, settings: Settings) -> tuple[str, str]:
    if not value:
        return settings.default_owner, settings.default_repo
    owner, _, repo = value.partition("/")
    if not (is_valid_owner(owner) and is_valid_repo(repo)):
        raise ValueError(f"Invalid repository: {value!r} (expected owner/repo)")
    return owner, repo


def _parse_ref(value: str | None) -> str | None:
    if value is None:
        return None
    ref = sanitize_ref(value)
    if ref is None:
        raise ValueError(f"Invalid ref: {value!r}")
    return ref


def _parse_path(value: str) -> str:
    path = sanitize_repo_path(value)
    if path is None:
        raise ValueError(f"Invalid path: {value!r}")
    return path


def _document_text(doc: FileContent) -> str:
    return decode_content(doc.content, doc.encoding)


def _record(cache: CacheStore, owner: str, repo: str, ref: str, doc: FileContent, text: str) -> None:
    title = extract_title(text, doc.name)
    cache.add_to_history(ReadingHistoryEntry(owner=owner, repo=repo, path=doc.path, ref=ref, title=title))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="gh-explore",
        description="Discover and read markdown documents on GitHub",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "--cache-dir",
        type=Path,
        default=None,
        help="Cache directory (default: EXPLORER_CACHE_DIR or ~/.cache/github-markdown-explorer)",
    )
    parser.add_argument(
        "--skip-cache",
        action="store_true",
        help="Revalidate with the API instead of reading the cache (still writes to cache)",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # discover subcommand
    discover_parser = subparsers.add_parser("discover", help="Pick a random repository and document")
    discover_parser.add_argument("--language", default=None, help="Restrict to a primary language")
    discover_parser.add_argument("--min-stars", type=int, default=1, help="Minimum stars (default: 1)")
    discover_parser.add_argument(
        "--only-with-docs",
        action="store_true",
        help="Prefer repositories with a readme or docs folder",
    )
    discover_parser.add_argument("--seed", type=int, default=None, help="Seed for reproducible picks")
    discover_parser.add_argument("--print", dest="print_content", action="store_true", help="Print the document")

    # read subcommand
    read_parser = subparsers.add_parser("read", help="Read a document (readme when no path is given)")
    read_parser.add_argument("target", nargs="?", help="owner/repo or a github.com blob URL")
    read_parser.add_argument("path", nargs="?", default=None, help="File path within the repository")
    read_parser.add_argument("--ref", default=None, help="Branch, tag or commit")

    # trail subcommand
    trail_parser = subparsers.add_parser("trail", help="Follow a random relative markdown link from a document")
    trail_parser.add_argument("repo", help="owner/repo")
    trail_parser.add_argument("path", help="Current document path")
    trail_parser.add_argument("--ref", default=None, help="Branch, tag or commit")
    trail_parser.add_argument("--seed", type=int, default=None, help="Seed for reproducible picks")

    # ls subcommand
    ls_parser = subparsers.add_parser("ls", help="List a directory")
    ls_parser.add_argument("repo", nargs="?", help="owner/repo (default: EXPLORER_DEFAULT_OWNER/REPO)")
    ls_parser.add_argument("path", nargs="?", default="", help="Directory path")
    ls_parser.add_argument("--ref", default=None, help="Branch, tag or commit")

    # tree subcommand
    tree_parser = subparsers.add_parser("tree", help="Recursive file listing")
    tree_parser.add_argument("repo", nargs="?", help="owner/repo (default: EXPLORER_DEFAULT_OWNER/REPO)")
    tree_parser.add_argument("--ref", default=None, help="Branch, tag or commit (default: default branch)")
    tree_parser.add_argument("--markdown", action="store_true", help="Only markdown files")

    subparsers.add_parser("rate-limit", help="Show the current API quota")

    history_parser = subparsers.add_parser("history", help="Show reading history")
    history_parser.add_argument("-n", type=int, default=20, help="Entries to show (default: 20)")

    invalidate_parser = subparsers.add_parser("invalidate", help="Drop cache entries whose key contains PATTERN")
    invalidate_parser.add_argument("pattern", help="Substring, e.g. repos/owner/repo")

    subparsers.add_parser("cache-stats", help="Show cache entry counts per tier")

    return parser


async def _run(args: argparse.Namespace, settings: Settings, cache: CacheStore) -> int:
    skip = args.skip_cache

    if args.command == "history":
        for entry in cache.get_reading_history()[: args.n]:
            when = datetime.fromtimestamp(entry.timestamp_ms / 1000).strftime("%Y-%m-%d %H:%M")
            print(f"{when}  {entry.owner}/{entry.repo}:{entry.path}@{entry.ref}  {truncate_text(entry.title, 60)}")
        return 0
    if args.command == "invalidate":
        print(f"Invalidated {cache.invalidate(args.pattern)} entries")
        return 0
    if args.command == "cache-stats":
        stats = cache.stats()
        print(f"fast: {stats['fast']:,}  bulk: {stats['bulk']:,}  total: {stats['total']:,}")
        return 0

    async with GitHubApiClient(settings, cache=cache) as client:
        if args.command == "rate-limit":
            rate = await client.get_rate_limit()
            reset = datetime.fromtimestamp(rate.reset).strftime("%H:%M:%S")
            print(f"{rate.remaining}/{rate.limit} remaining ({rate.used} used), resets at {reset}")
        elif args.command == "discover":
            filters = replace(
                SearchFilters.default(),
                min_stars=args.min_stars,
                language=args.language,
                only_with_docs=args.only_with_docs,
            )
            engine = DiscoveryEngine(client, rng=random.Random(args.seed))
            found = await engine.discover(filters)
            repo = found.repository
            text = _document_text(found.document)
            _record(cache, repo.owner, repo.name, repo.default_branch, found.document, text)
            print(f"{repo.full_name} ({repo.stars:,} stars)  {truncate_text(repo.description)}")
            print(found.document.html_url or f"{repo.full_name}/{found.document.path}")
            if args.print_content:
                print()
                print(text)
        elif args.command == "read":
            parsed = parse_github_url(args.target) if args.target else None
            if parsed:
                owner, repo, ref, path = parsed
            else:
                owner, repo = _parse_repo(args.target, settings)
                ref = _parse_ref(args.ref)
                path = _parse_path(args.path) if args.path else None
            if ref is None:
                ref = (await client.get_repository(owner, repo, skip_cache=skip)).default_branch
            if path:
                doc = await client.get_file_content(owner, repo, path, ref, skip_cache=skip)
            else:
                doc = await client.get_readme(owner, repo, ref, skip_cache=skip)
            text = _document_text(doc)
            _record(cache, owner, repo, ref, doc, text)
            print(text)
        elif args.command == "trail":
            owner, repo = _parse_repo(args.repo, settings)
            path = _parse_path(args.path)
            ref = _parse_ref(args.ref)
            if ref is None:
                ref = (await client.get_repository(owner, repo, skip_cache=skip)).default_branch
            current = await client.get_file_content(owner, repo, path, ref, skip_cache=skip)
            context = DocumentContext(owner=owner, repo=repo, path=path, ref=ref, content=_document_text(current))
            engine = DiscoveryEngine(client, rng=random.Random(args.seed))
            nxt = await engine.next_from_trail(context)
            if nxt is None:
                _log("No next document")
                return 1
            text = _document_text(nxt)
            _record(cache, owner, repo, ref, nxt, text)
            print(nxt.path)
        elif args.command == "ls":
            owner, repo = _parse_repo(args.repo, settings)
            path = _parse_path(args.path) if args.path else ""
            for entry in await client.list_directory(owner, repo, path, _parse_ref(args.ref), skip_cache=skip):
                suffix = "/" if entry.type == "dir" else ""
                print(f"{entry.path}{suffix}")
        elif args.command == "tree":
            owner, repo = _parse_repo(args.repo, settings)
            ref = _parse_ref(args.ref)
            if ref is None:
                ref = (await client.get_repository(owner, repo, skip_cache=skip)).default_branch
            items = await client.get_tree_recursive(owner, repo, ref, skip_cache=skip)
            for item in items:
                if args.markdown and not item.is_markdown:
                    continue
                print(item.path)
    return 0


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if not args.command:
        parser.print_help()
        return 0

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)

    settings = Settings()
    if args.cache_dir is not None:
        settings.cache_dir = args.cache_dir
    cache = CacheStore(settings.cache_dir, default_ttl_seconds=settings.default_ttl_seconds)

    try:
        return asyncio.run(_run(args, settings, cache))
    except (ApiError, DiscoveryError, FileNotFoundError, ValueError) as e:
        if is_rate_limit_error(e):
            _log(rate_limit_message(e))
            retry_at = datetime.fromtimestamp(rate_limit_reset_time(e)).strftime("%H:%M:%S")
            _log(f"Retry after {retry_at}")
        else:
            _log(f"Error: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
