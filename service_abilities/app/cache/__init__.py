"""
Cache package.

Provides key-value stores (in-process and Redis-backed), a tagged view
that namespaces a store per tag, and the cached clipboard that memoizes
each authority's abilities and roles until explicitly refreshed.
"""

from .stores import ArrayStore, TaggableArrayStore, TaggedCache, RedisStore, supports_tags
from .cached_clipboard import CachedClipboard

__all__ = [
    "ArrayStore",
    "CachedClipboard",
    "RedisStore",
    "TaggableArrayStore",
    "TaggedCache",
    "supports_tags",
]
