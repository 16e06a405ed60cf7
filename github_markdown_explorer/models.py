"""Data models and constants for the explorer."""

import json
import time
from dataclasses import asdict, dataclass, field, replace
from datetime import date
from typing import Any

INITIAL_RATE_LIMIT = 60  # unauthenticated hourly quota
MARKDOWN_EXTENSIONS = (".md", ".mdx", ".markdown")


def cache_key(method: str, endpoint: str, body: Any = None) -> str:
    """Deterministic cache key for a request.

    Keys stay human-readable so ``CacheStore.invalidate("repos/owner/repo")``
    can match them by substring.
    """
    body_part = json.dumps(body, sort_keys=True, separators=(",", ":")) if body is not None else ""
    return f"api:{method.upper()}:{endpoint}:{body_part}"


@dataclass
class RateLimitState:
    """Quota snapshot, replaced wholesale from the headers of every response."""

    limit: int
    remaining: int
    reset: int  # epoch seconds
    used: int

    @classmethod
    def initial(cls, now: float | None = None) -> "RateLimitState":
        now = time.time() if now is None else now
        return cls(limit=INITIAL_RATE_LIMIT, remaining=INITIAL_RATE_LIMIT, reset=int(now) + 3600, used=0)

    @classmethod
    def from_headers(cls, headers) -> "RateLimitState | None":
        """Parse the x-ratelimit-* headers; None unless all four are present and numeric."""
        values = [headers.get(f"x-ratelimit-{name}") for name in ("limit", "remaining", "reset", "used")]
        if any(v is None for v in values):
            return None
        try:
            limit, remaining, reset, used = (int(v) for v in values)
        except ValueError:
            return None
        return cls(limit=limit, remaining=remaining, reset=reset, used=used)

    def copy(self) -> "RateLimitState":
        return replace(self)


@dataclass
class CacheRecord:
    data: Any
    stored_at_ms: int
    ttl_ms: int
    etag: str | None = None
    last_modified: str | None = None

    def is_expired(self, now_ms: int) -> bool:
        return now_ms > self.stored_at_ms + self.ttl_ms

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, d: dict) -> "CacheRecord":
        return cls(
            data=d["data"],
            stored_at_ms=d["stored_at_ms"],
            ttl_ms=d["ttl_ms"],
            etag=d.get("etag"),
            last_modified=d.get("last_modified"),
        )


@dataclass(frozen=True)
class Repository:
    id: int
    owner: str
    name: str
    description: str
    default_branch: str
    stars: int
    forks: int
    language: str
    pushed_at: str | None
    html_url: str

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.name}"

    @classmethod
    def from_api(cls, item: dict) -> "Repository":
        return cls(
            id=item["id"],
            owner=item["owner"]["login"],
            name=item["name"],
            description=item.get("description") or "",
            default_branch=item.get("default_branch") or "main",
            stars=item.get("stargazers_count", 0),
            forks=item.get("forks_count", 0),
            language=item.get("language") or "",
            pushed_at=item.get("pushed_at"),
            html_url=item.get("html_url", ""),
        )


@dataclass(frozen=True)
class FileContent:
    """A file as returned by the contents/readme endpoints.

    ``content`` is passed through untouched; decoding happens at the
    boundary (see ``utils.decode_content``).
    """

    name: str
    path: str
    content: str
    encoding: str
    sha: str
    size: int
    html_url: str
    download_url: str | None

    @classmethod
    def from_api(cls, item: dict) -> "FileContent":
        return cls(
            name=item["name"],
            path=item["path"],
            content=item.get("content") or "",
            encoding=item.get("encoding") or "utf-8",
            sha=item["sha"],
            size=item.get("size", 0),
            html_url=item.get("html_url") or "",
            download_url=item.get("download_url"),
        )


@dataclass(frozen=True)
class DirectoryEntry:
    name: str
    path: str
    type: str  # file, dir, symlink, submodule
    sha: str
    size: int
    html_url: str | None
    download_url: str | None

    @classmethod
    def from_api(cls, item: dict) -> "DirectoryEntry":
        return cls(
            name=item["name"],
            path=item["path"],
            type=item["type"],
            sha=item["sha"],
            size=item.get("size", 0),
            html_url=item.get("html_url"),
            download_url=item.get("download_url"),
        )


@dataclass(frozen=True)
class TreeItem:
    path: str
    mode: str
    type: str  # blob or tree
    sha: str
    url: str
    size: int | None = None

    @property
    def is_markdown(self) -> bool:
        return self.type == "blob" and self.path.lower().endswith(MARKDOWN_EXTENSIONS)

    @classmethod
    def from_api(cls, item: dict) -> "TreeItem":
        return cls(
            path=item["path"],
            mode=item["mode"],
            type=item["type"],
            sha=item["sha"],
            url=item.get("url", ""),
            size=item.get("size"),
        )


@dataclass(frozen=True)
class GitHubUser:
    login: str
    id: int
    html_url: str = ""

    @classmethod
    def from_api(cls, item: dict) -> "GitHubUser":
        return cls(login=item["login"], id=item["id"], html_url=item.get("html_url", ""))


@dataclass(frozen=True)
class SearchQuery:
    """Parameters for the search endpoints."""

    q: str
    sort: str | None = None
    order: str | None = None
    per_page: int | None = None
    page: int | None = None

    def to_params(self) -> dict[str, str]:
        params = {"q": self.q}
        for name in ("sort", "order", "per_page", "page"):
            value = getattr(self, name)
            if value is not None:
                params[name] = str(value)
        return params


@dataclass(frozen=True)
class SearchFilters:
    """Shapes the filtered repository search used by discovery."""

    start_date: str
    end_date: str
    min_stars: int = 1
    language: str | None = None
    sort: str = "updated"
    only_with_docs: bool = False

    @classmethod
    def default(cls, today: date | None = None) -> "SearchFilters":
        """Activity within the last three calendar years, at least one star."""
        today = today or date.today()
        return cls(start_date=f"{today.year - 3}-01-01", end_date=today.isoformat())


@dataclass(frozen=True)
class DocumentContext:
    """The document currently being read, used to follow its links."""

    owner: str
    repo: str
    path: str
    ref: str
    content: str


@dataclass(frozen=True)
class ReadingHistoryEntry:
    owner: str
    repo: str
    path: str
    ref: str
    title: str
    timestamp_ms: int = field(default_factory=lambda: int(time.time() * 1000))


@dataclass(frozen=True)
class Discovery:
    repository: Repository
    document: FileContent
