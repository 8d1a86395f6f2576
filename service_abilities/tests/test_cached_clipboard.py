"""
Unit tests for the cached clipboard.
"""

import pytest
from unittest.mock import AsyncMock

from service_abilities.app.cache.cached_clipboard import (
    CachedClipboard, IterativeInvalidator, TagFlushInvalidator
)
from service_abilities.app.cache.stores import ArrayStore, TaggableArrayStore
from service_abilities.app.clipboard.models import Ability
from service_abilities.app.conductors import AbilityConductor
from service_abilities.app.scope import TenantScope


class TestCachedClipboard:
    """Test cases for CachedClipboard."""

    @pytest.fixture
    def store(self):
        """Create a store without tag support, so keys are inspectable."""
        return ArrayStore()

    @pytest.fixture
    def cached(self, store, repository):
        """Create a cached clipboard for tenant t1."""
        return CachedClipboard(store, repository, TenantScope("t1"))

    @pytest.fixture
    def writer(self, repository):
        """Create a conductor that does not refresh any cache."""
        return AbilityConductor(repository)

    def test_cache_keys(self, cached, user):
        """Keys carry the tenant tag, kind, authority and mode."""
        assert cached.tag() == "abilities-t1"
        assert cached.get_cache_key(user, "abilities", True) == f"abilities-t1-abilities-user-{user.id}-a"
        assert cached.get_cache_key(user, "abilities", False) == f"abilities-t1-abilities-user-{user.id}-f"
        assert cached.get_cache_key(user, "roles") == f"abilities-t1-roles-user-{user.id}"

    def test_cache_keys_without_tenant(self, store, repository, user):
        """Without a tenant the base tag is used as-is."""
        cached = CachedClipboard(store, repository, tag="bouncer")

        assert cached.get_cache_key(user, "abilities") == f"bouncer-abilities-user-{user.id}-a"

    def test_serialization_round_trip(self, cached):
        """Serialized abilities hydrate back to equal records."""
        abilities = [
            Ability(id=1, name="ban-users"),
            Ability(id=2, name="update", entity_type="account", entity_id=42, scope="t1"),
            Ability(id=3, name="edit", entity_type="post", only_owned=True, forbidden=True, title="Edit posts"),
        ]

        rows = cached.serialize_abilities(abilities)

        assert all(isinstance(row, dict) for row in rows)
        assert cached.deserialize_abilities(rows) == abilities

    @pytest.mark.asyncio
    async def test_round_trip_through_store(self, cached, store, writer, repository, user):
        """A cache hit returns the same records the miss computed."""
        account = repository.create_entity("account")
        await writer.allow(user, ["ban-users", "throw-dishes"])
        await writer.allow(user, "update", account)

        fresh = await cached.get_abilities(user)
        cached_rows = await store.get(cached.get_cache_key(user, "abilities", True))
        hit = await cached.get_abilities(user)

        assert len(cached_rows) == 3
        assert hit == fresh
        assert [ability.identifier for ability in hit] == [
            "ban-users", "throw-dishes", f"update-account-{account.id}"
        ]

    @pytest.mark.asyncio
    async def test_abilities_loaded_once(self, cached, repository, writer, user):
        """Repeated checks hit the repository once per mode."""
        await writer.allow(user, "ban-users")
        repository.get_abilities = AsyncMock(wraps=repository.get_abilities)

        assert await cached.check(user, "ban-users")
        assert await cached.check(user, "ban-users")
        assert await cached.check(user, "ban-users")

        assert repository.get_abilities.await_count == 2

    @pytest.mark.asyncio
    async def test_empty_result_is_cached(self, cached, repository, user):
        """An authority with no abilities is cached as an empty list."""
        repository.get_abilities = AsyncMock(return_value=[])

        await cached.get_abilities(user)
        await cached.get_abilities(user)

        repository.get_abilities.assert_awaited_once_with(user, True)

    @pytest.mark.asyncio
    async def test_cached_until_refreshed(self, cached, writer, user):
        """Cache entries never expire on their own."""
        assert not await cached.check(user, "ban-users")

        await writer.allow(user, "ban-users")
        assert not await cached.check(user, "ban-users")

        await cached.refresh_for(user)
        assert await cached.check(user, "ban-users")

    @pytest.mark.asyncio
    async def test_roles_lookup_seared(self, cached, repository, writer, user):
        """Role lookups are computed once and stored forever."""
        await writer.assign(["admin", "editor"], user)
        repository.get_roles_lookup = AsyncMock(wraps=repository.get_roles_lookup)

        first = await cached.get_roles_lookup(user)
        second = await cached.get_roles_lookup(user)

        assert first == second
        assert sorted(first.values()) == ["admin", "editor"]
        assert all(isinstance(role_id, int) for role_id in first)
        repository.get_roles_lookup.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_refresh_for_forgets_exactly_three_keys(self, cached, store, repository, user):
        """Refreshing one authority leaves everybody else cached."""
        other = repository.create_entity("user")
        for authority in (user, other):
            await cached.check(authority, "ban-users")
            await cached.get_roles_lookup(authority)

        before = set(store.keys())
        await cached.refresh_for(user)
        after = set(store.keys())

        assert before - after == {
            f"abilities-t1-abilities-user-{user.id}-a",
            f"abilities-t1-abilities-user-{user.id}-f",
            f"abilities-t1-roles-user-{user.id}",
        }
        assert {key for key in after if f"user-{other.id}" in key} == {
            f"abilities-t1-abilities-user-{other.id}-a",
            f"abilities-t1-abilities-user-{other.id}-f",
            f"abilities-t1-roles-user-{other.id}",
        }

    @pytest.mark.asyncio
    async def test_refresh_for_is_idempotent(self, cached, store, user):
        """Refreshing an uncached authority is a no-op."""
        await cached.refresh_for(user)
        await cached.refresh_for(user)

        assert store.keys() == []

    @pytest.mark.asyncio
    async def test_refresh_iterates_users_and_roles(self, cached, store, repository, writer, user):
        """Without tags, a full refresh forgets every user's and role's keys."""
        role = await repository.find_or_create_role("admin")
        await cached.get_abilities(user)
        await cached.get_abilities(role)
        await cached.get_roles_lookup(role)

        assert isinstance(cached.invalidator, IterativeInvalidator)
        await cached.refresh()

        assert store.keys() == []

    @pytest.mark.asyncio
    async def test_refresh_with_authority_delegates(self, cached, user):
        """refresh(authority) refreshes only that authority."""
        cached.refresh_for = AsyncMock(return_value=cached)

        await cached.refresh(user)

        cached.refresh_for.assert_awaited_once_with(user)

    @pytest.mark.asyncio
    async def test_conductor_refreshes_cache(self, store, repository, user):
        """Writes through a conductor invalidate the affected cache entries."""
        cached = CachedClipboard(store, repository)
        conductor = AbilityConductor(repository, cached)

        assert not await cached.check(user, "ban-users")
        await conductor.allow(user, "ban-users")
        assert await cached.check(user, "ban-users")

        await conductor.allow("admin", "throw-dishes")
        await conductor.assign("admin", user)
        assert await cached.check(user, "throw-dishes")
        assert await cached.check_role(user, "admin")

        await conductor.forbid("admin", "ban-users")
        assert not await cached.check(user, "ban-users")


class TestCacheStrategy:
    """Test cases for choosing an invalidation strategy."""

    def test_taggable_store_selects_tag_flush(self, repository):
        """A store with tags is wrapped in a tagged view."""
        cached = CachedClipboard(TaggableArrayStore(), repository, TenantScope("t1"))

        assert isinstance(cached.invalidator, TagFlushInvalidator)
        assert cached.get_cache().tag == "abilities-t1"

    def test_plain_store_selects_iteration(self, repository):
        """A store without tags is used directly."""
        store = ArrayStore()
        cached = CachedClipboard(store, repository)

        assert isinstance(cached.invalidator, IterativeInvalidator)
        assert cached.get_cache() is store

    def test_set_cache_reselects(self, repository):
        """Swapping the store re-probes its capabilities."""
        cached = CachedClipboard(ArrayStore(), repository)
        cached.set_cache(TaggableArrayStore())

        assert isinstance(cached.invalidator, TagFlushInvalidator)

    @pytest.mark.asyncio
    async def test_tenant_flush_is_isolated(self, repository, user):
        """Flushing one tenant's tag leaves another tenant's entries intact."""
        store = TaggableArrayStore()
        tenant_a = CachedClipboard(store, repository.with_scope(TenantScope("a")), TenantScope("a"))
        tenant_b = CachedClipboard(store, repository.with_scope(TenantScope("b")), TenantScope("b"))

        await AbilityConductor(repository.with_scope(TenantScope("b"))).allow(user, "ban-users")
        await tenant_a.get_abilities(user)
        await tenant_b.get_abilities(user)
        key_b = tenant_b.get_cache_key(user, "abilities", True)
        cached_b = await tenant_b.get_cache().get(key_b)

        await tenant_a.refresh()

        assert await tenant_a.get_cache().get(tenant_a.get_cache_key(user, "abilities", True)) is None
        assert await tenant_b.get_cache().get(key_b) == cached_b
        assert len(cached_b) == 1
        assert await tenant_b.check(user, "ban-users")
        assert not await tenant_a.check(user, "ban-users")
