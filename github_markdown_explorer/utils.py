"""Boundary helpers: identifier validation, URL parsing, content decoding."""

import base64
import binascii
import re

_OWNER_RE = re.compile(r"^[a-zA-Z0-9](?:[a-zA-Z0-9-]*[a-zA-Z0-9])?$")
_REPO_RE = re.compile(r"^[a-zA-Z0-9._-]+$")
_REF_RE = re.compile(r"^[a-zA-Z0-9._\-/]+$")
_DANGEROUS_PATH_CHARS = re.compile(r'[<>:"|?*\x00-\x1f]')
_HEADING_RE = re.compile(r"^#{1,6}\s+(.+?)\s*#*\s*$", re.MULTILINE)


def is_valid_owner(owner: str | None) -> bool:
    """GitHub user/org names: 1-39 chars, alphanumeric and inner hyphens."""
    if not owner or len(owner) > 39:
        return False
    return bool(_OWNER_RE.match(owner))


def is_valid_repo(repo: str | None) -> bool:
    if not repo or len(repo) > 100:
        return False
    return bool(_REPO_RE.match(repo))


def is_valid_ref(ref: str | None) -> bool:
    if not ref or len(ref) > 255:
        return False
    if ".." in ref or "//" in ref:
        return False
    return bool(_REF_RE.match(ref))


def is_valid_repo_path(path: str | None) -> bool:
    """Repository-relative file path without traversal or absolute prefixes."""
    if not path:
        return False
    if ".." in path or "//" in path or path.startswith("/"):
        return False
    return not _DANGEROUS_PATH_CHARS.search(path)


def sanitize_repo_path(path: str | None) -> str | None:
    if not path:
        return None
    normalized = path.strip().strip("/")
    return normalized if is_valid_repo_path(normalized) else None


def sanitize_ref(ref: str | None) -> str | None:
    if not ref:
        return None
    normalized = ref.strip()
    return normalized if is_valid_ref(normalized) else None


def parse_github_url(url: str) -> tuple[str, str, str, str] | None:
    """Parse https://github.com/owner/repo/blob/ref/path into (owner, repo, ref, path).

    The ref is only the first segment after ``blob``.
    """
    prefix = "https://github.com/"
    if not url.startswith(prefix):
        return None
    parts = url[len(prefix):].split("/")
    if len(parts) < 5 or parts[2] != "blob":
        return None
    owner, repo, _, ref = parts[:4]
    path = "/".join(parts[4:])
    if not path:
        return None
    return owner, repo, ref, path


def truncate_text(text: str, max_len: int = 100) -> str:
    """Truncate at a word boundary, appending '...'."""
    if len(text) <= max_len:
        return text
    cut = text[: max_len - 3]
    if " " in cut:
        cut = cut.rsplit(" ", 1)[0]
    return cut + "..."


def decode_content(content: str, encoding: str = "base64") -> str:
    """Decode a contents-API payload to text.

    The API wraps base64 at 60 columns; newlines are dropped before
    decoding. Invalid UTF-8 sequences are replaced rather than raised.
    """
    if encoding != "base64":
        return content
    try:
        raw = base64.b64decode(content.replace("\n", ""), validate=False)
    except (binascii.Error, ValueError) as e:
        raise ValueError(f"Invalid base64 content: {e}") from e
    return raw.decode("utf-8", errors="replace")


def extract_title(markdown: str, fallback: str) -> str:
    """First markdown heading, or ``fallback`` when the document has none."""
    match = _HEADING_RE.search(markdown)
    return match.group(1) if match else fallback
