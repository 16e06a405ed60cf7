from .engine import DiscoveryEngine, build_search_query
from .links import extract_markdown_links, is_relative_markdown_link, resolve_relative_path

__all__ = [
    "DiscoveryEngine",
    "build_search_query",
    "extract_markdown_links",
    "is_relative_markdown_link",
    "resolve_relative_path",
]
