"""
Unit tests for cache stores.
"""

import json
import pytest
from unittest.mock import AsyncMock, MagicMock, patch

from service_abilities.app.cache.stores import (
    ArrayStore, RedisStore, TaggableArrayStore, TaggedCache, supports_tags
)
from shared.errors import StoreUnavailableError


class TestArrayStore:
    """Test cases for ArrayStore."""

    @pytest.mark.asyncio
    async def test_get_forever_forget(self):
        """Values are stored until forgotten."""
        store = ArrayStore()

        assert await store.get("key") is None

        await store.forever("key", [{"id": 1}])
        assert await store.get("key") == [{"id": 1}]

        assert await store.forget("key") is True
        assert await store.forget("key") is False
        assert await store.get("key") is None

    @pytest.mark.asyncio
    async def test_values_are_copied(self):
        """Mutating a read value does not change the stored one."""
        store = ArrayStore()
        await store.forever("key", [1, 2])

        value = await store.get("key")
        value.append(3)

        assert await store.get("key") == [1, 2]

    @pytest.mark.asyncio
    async def test_forget_prefix(self):
        """Only keys under the prefix are removed."""
        store = ArrayStore()
        await store.forever("a:1", 1)
        await store.forever("a:2", 2)
        await store.forever("b:1", 3)

        assert await store.forget_prefix("a:") == 2
        assert store.keys() == ["b:1"]

    def test_tag_support(self):
        """Only the taggable store advertises tags."""
        assert not supports_tags(ArrayStore())
        assert supports_tags(TaggableArrayStore())
        assert supports_tags(RedisStore("redis://localhost:6379/0"))


class TestTaggedCache:
    """Test cases for TaggedCache."""

    @pytest.mark.asyncio
    async def test_flush_only_clears_its_tag(self):
        """Flushing one tag leaves other tags and untagged keys intact."""
        store = TaggableArrayStore()
        first = store.tags("abilities-a")
        second = store.tags("abilities-b")

        await first.forever("key", "first")
        await second.forever("key", "second")
        await store.forever("plain", "plain")

        await first.flush()

        assert await first.get("key") is None
        assert await second.get("key") == "second"
        assert await store.get("plain") == "plain"

    @pytest.mark.asyncio
    async def test_flush_drops_stale_entries(self):
        """The old namespace's entries are removed from the store."""
        store = TaggableArrayStore()
        tagged = store.tags("abilities")
        await tagged.forever("one", 1)
        await tagged.forever("two", 2)

        await tagged.flush()

        assert store.keys() == ["tag:abilities:key"]

    @pytest.mark.asyncio
    async def test_views_share_namespace(self):
        """Two views of the same tag see each other's writes and flushes."""
        store = TaggableArrayStore()
        await store.tags("abilities").forever("key", "value")

        assert await store.tags("abilities").get("key") == "value"

        await store.tags("abilities").flush()
        assert await store.tags("abilities").get("key") is None

    @pytest.mark.asyncio
    async def test_flush_before_any_write(self):
        """Flushing an unused tag is harmless."""
        store = TaggableArrayStore()
        tagged = TaggedCache(store, "abilities")

        await tagged.flush()
        await tagged.forever("key", 1)

        assert await tagged.get("key") == 1


class TestRedisStore:
    """Test cases for RedisStore."""

    @pytest.fixture
    def redis_client(self):
        """Create a mock Redis client."""
        client = AsyncMock()

        async def scan_iter(match=None):
            for key in ("app:ns:one", "app:ns:two"):
                yield key

        client.scan_iter = MagicMock(side_effect=scan_iter)
        return client

    @pytest.fixture
    def store(self, redis_client):
        """Create a Redis store around the mock client."""
        return RedisStore("redis://localhost:6379/0", prefix="app:", client=redis_client)

    @pytest.mark.asyncio
    async def test_get_decodes_json(self, store, redis_client):
        """Values are JSON-decoded and keys prefixed."""
        redis_client.get.return_value = json.dumps([{"id": 1}])

        assert await store.get("key") == [{"id": 1}]
        redis_client.get.assert_awaited_once_with("app:key")

    @pytest.mark.asyncio
    async def test_get_miss(self, store, redis_client):
        """A missing key reads as None."""
        redis_client.get.return_value = None

        assert await store.get("key") is None

    @pytest.mark.asyncio
    async def test_forever_sets_without_expiry(self, store, redis_client):
        """Values are written with no TTL."""
        await store.forever("key", {"a": 1})

        redis_client.set.assert_awaited_once_with("app:key", json.dumps({"a": 1}))

    @pytest.mark.asyncio
    async def test_forget(self, store, redis_client):
        """Forget reports whether a key was removed."""
        redis_client.delete.return_value = 1

        assert await store.forget("key") is True
        redis_client.delete.assert_awaited_once_with("app:key")

    @pytest.mark.asyncio
    async def test_forget_prefix_scans(self, store, redis_client):
        """Prefix deletion scans for matching keys and deletes them together."""
        assert await store.forget_prefix("ns:") == 2

        redis_client.scan_iter.assert_called_once_with(match="app:ns:*")
        redis_client.delete.assert_awaited_once_with("app:ns:one", "app:ns:two")

    @pytest.mark.asyncio
    async def test_health_check(self, store, redis_client):
        """Health follows Redis ping."""
        assert await store.health_check() is True

        redis_client.ping.side_effect = ConnectionError("down")
        assert await store.health_check() is False

    @pytest.mark.asyncio
    async def test_start_failure(self):
        """A failed connection surfaces as an access layer error."""
        store = RedisStore("redis://localhost:6379/0")
        client = AsyncMock()
        client.ping.side_effect = ConnectionError("refused")

        with patch("service_abilities.app.cache.stores.redis.from_url", return_value=client):
            with pytest.raises(StoreUnavailableError) as exc_info:
                await store.start()

        assert exc_info.value.code == "REDIS_START_FAILED"

    @pytest.mark.asyncio
    async def test_tags_wrap_store(self, store):
        """Tagged views write through the Redis store."""
        tagged = store.tags("abilities")

        assert isinstance(tagged, TaggedCache)
        assert tagged.store is store
