"""
Cache stores.

Every store speaks the same small contract: ``get``, ``forever`` and
``forget``. Values are plain JSON-compatible data. Stores that can also
hand out a ``TaggedCache`` through ``tags(name)`` let a whole tag be
flushed at once; the rest can only forget one key at a time.
"""

import hashlib
import json
import uuid
from typing import Any, Dict, Optional, Protocol

import redis.asyncio as redis

from shared.logging import get_logger
from shared.errors import StoreUnavailableError


class CacheStore(Protocol):
    async def get(self, key: str) -> Any:
        ...

    async def forever(self, key: str, value: Any) -> None:
        ...

    async def forget(self, key: str) -> bool:
        ...


def supports_tags(store: Any) -> bool:
    """Whether the store can hand out tag-scoped views."""
    return callable(getattr(store, "tags", None))


class ArrayStore:
    """In-process store without tag support.

    Values are kept JSON-encoded, so reads never share objects with writers.
    """

    def __init__(self):
        self._storage: Dict[str, str] = {}

    async def get(self, key: str) -> Any:
        raw = self._storage.get(key)
        return json.loads(raw) if raw is not None else None

    async def forever(self, key: str, value: Any) -> None:
        self._storage[key] = json.dumps(value)

    async def forget(self, key: str) -> bool:
        return self._storage.pop(key, None) is not None

    async def forget_prefix(self, prefix: str) -> int:
        doomed = [key for key in self._storage if key.startswith(prefix)]
        for key in doomed:
            del self._storage[key]
        return len(doomed)

    def keys(self):
        return list(self._storage)

    async def health_check(self) -> bool:
        return True


class TaggableArrayStore(ArrayStore):
    """In-process store with tag support."""

    def tags(self, name: str) -> "TaggedCache":
        return TaggedCache(self, name)


class TaggedCache:
    """A view of a store whose keys all live under one tag's namespace.

    The namespace is a random version token kept in the store itself.
    Flushing rotates the token and drops the old namespace's keys, leaving
    every other tag untouched.
    """

    def __init__(self, store: Any, tag: str):
        self.store = store
        self.tag = tag

    def _version_key(self) -> str:
        return f"tag:{self.tag}:key"

    async def _namespace(self, reset: bool = False) -> str:
        version = None if reset else await self.store.get(self._version_key())

        if version is None:
            version = uuid.uuid4().hex
            await self.store.forever(self._version_key(), version)

        return self._prefix(version)

    def _prefix(self, version: str) -> str:
        return hashlib.sha1(f"{self.tag}|{version}".encode()).hexdigest() + ":"

    async def tagged_key(self, key: str) -> str:
        return await self._namespace() + key

    async def get(self, key: str) -> Any:
        return await self.store.get(await self.tagged_key(key))

    async def forever(self, key: str, value: Any) -> None:
        await self.store.forever(await self.tagged_key(key), value)

    async def forget(self, key: str) -> bool:
        return await self.store.forget(await self.tagged_key(key))

    async def flush(self) -> None:
        version = await self.store.get(self._version_key())
        await self._namespace(reset=True)

        if version is not None:
            await self.store.forget_prefix(self._prefix(version))


class RedisStore:
    """Redis-backed store with tag support."""

    def __init__(self, redis_url: str, prefix: str = "", client: Optional[redis.Redis] = None):
        self.redis_url = redis_url
        self.prefix = prefix
        self.logger = get_logger("abilities.cache.redis")
        self.redis: Optional[redis.Redis] = client

    async def start(self):
        """Start the Redis store."""
        if self.redis is not None:
            return

        try:
            self.redis = redis.from_url(
                self.redis_url,
                encoding="utf-8",
                decode_responses=True,
                socket_connect_timeout=5,
                socket_timeout=5,
                retry_on_timeout=True,
                health_check_interval=30
            )

            await self.redis.ping()

            self.logger.info("Redis cache started")

        except Exception as e:
            self.logger.error("Failed to start Redis cache", error=str(e))
            raise StoreUnavailableError("redis", str(e))

    async def stop(self):
        """Stop the Redis store."""
        if self.redis:
            await self.redis.close()
            self.logger.info("Redis cache stopped")

    async def get(self, key: str) -> Any:
        raw = await self.redis.get(self.prefix + key)
        return json.loads(raw) if raw is not None else None

    async def forever(self, key: str, value: Any) -> None:
        await self.redis.set(self.prefix + key, json.dumps(value))

    async def forget(self, key: str) -> bool:
        return bool(await self.redis.delete(self.prefix + key))

    async def forget_prefix(self, prefix: str) -> int:
        keys = [key async for key in self.redis.scan_iter(match=f"{self.prefix}{prefix}*")]

        if keys:
            await self.redis.delete(*keys)

        return len(keys)

    def tags(self, name: str) -> TaggedCache:
        return TaggedCache(self, name)

    async def health_check(self) -> bool:
        """Check Redis health."""
        try:
            await self.redis.ping()
            return True
        except Exception:
            return False
