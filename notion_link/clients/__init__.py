"""Expose constructed client wrappers."""

from .cache import InMemoryCache, RedisCache, SharedCache, build_cache
from .notion_api import NotionAPIClient
from .notion_oauth import NotionOAuthClient
from .sqlite_store import SQLiteStore

__all__ = [
    "InMemoryCache",
    "NotionAPIClient",
    "NotionOAuthClient",
    "RedisCache",
    "SQLiteStore",
    "SharedCache",
    "build_cache",
]
