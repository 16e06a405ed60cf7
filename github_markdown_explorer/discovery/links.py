"""Relative markdown link extraction and resolution for link-trail mode."""

import re

from ..models import MARKDOWN_EXTENSIONS

_LINK_RE = re.compile(r"\[([^\]]+)\]\(([^)]+)\)")
_SCHEME_RE = re.compile(r"^[a-zA-Z][a-zA-Z0-9+.-]*:")


def _strip_suffixes(href: str) -> str:
    return href.split("#", 1)[0].split("?", 1)[0]


def is_relative_markdown_link(href: str) -> bool:
    """Same-repository relative link to a markdown document.

    Absolute URLs, protocol-relative and root-absolute paths, and pure
    anchors are excluded.
    """
    if not href or href.startswith(("#", "/")) or _SCHEME_RE.match(href):
        return False
    return _strip_suffixes(href).lower().endswith(MARKDOWN_EXTENSIONS)


def extract_markdown_links(content: str) -> list[str]:
    """Relative markdown link targets in document order, fragments removed."""
    links = []
    for match in _LINK_RE.finditer(content):
        target = match.group(2).strip()
        if not target:
            continue
        # [text](path "title")
        href = target.split()[0].strip("<>")
        if is_relative_markdown_link(href):
            links.append(_strip_suffixes(href))
    return links


def resolve_relative_path(link: str, current_path: str) -> str | None:
    """Resolve ``link`` against the directory of ``current_path``.

    Returns None when the result would climb above the repository root.
    """
    if link.startswith("/"):
        return None
    parts = [p for p in current_path.split("/")[:-1] if p]
    for segment in link.split("/"):
        if segment in ("", "."):
            continue
        if segment == "..":
            if not parts:
                return None
            parts.pop()
        else:
            parts.append(segment)
    return "/".join(parts) or None
