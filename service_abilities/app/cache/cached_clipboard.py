"""
Cached clipboard.

Each authority's allowed abilities, forbidden abilities and roles are
cached forever under tenant-tagged keys::

    {tag}-abilities-{type}-{id}-a
    {tag}-abilities-{type}-{id}-f
    {tag}-roles-{type}-{id}

Entries leave the cache only through ``refresh_for`` (one authority) or
``refresh`` (the whole tenant).
"""

from typing import Any, Awaitable, Callable, Dict, List, Optional

from shared.logging import get_logger
from shared.metrics import MetricsCollector
from ..clipboard.engine import Clipboard
from ..clipboard.models import Ability, Entity
from ..clipboard.ownership import Ownership
from ..persistence.base import AbilityRepository
from ..scope import TenantScope
from .stores import CacheStore, supports_tags


class TagFlushInvalidator:
    """Refreshes a tenant by flushing its cache tag."""

    def __init__(self, cache):
        self.cache = cache

    async def refresh_all(self) -> None:
        await self.cache.flush()


class IterativeInvalidator:
    """Refreshes a tenant by forgetting the keys of every user and every role."""

    def __init__(self, clipboard: "CachedClipboard"):
        self.clipboard = clipboard

    async def refresh_all(self) -> None:
        repository = self.clipboard.repository

        for user in await repository.get_users():
            await self.clipboard.refresh_for(user)

        for role in await repository.get_roles():
            await self.clipboard.refresh_for(role)


class CachedClipboard(Clipboard):
    """Clipboard that memoizes lookups in a cache store."""

    def __init__(
        self,
        cache: CacheStore,
        repository: AbilityRepository,
        scope: Optional[TenantScope] = None,
        ownership: Optional[Ownership] = None,
        tag: str = "abilities",
        metrics: Optional[MetricsCollector] = None
    ):
        super().__init__(repository, scope, ownership)
        self.base_tag = tag
        self.metrics = metrics
        self.logger = get_logger("abilities.cache.clipboard")
        self.set_cache(cache)

    def set_cache(self, cache: CacheStore) -> "CachedClipboard":
        """Use the given store, scoped to this tenant's tag when it supports tags."""
        if supports_tags(cache):
            self.cache = cache.tags(self.tag())
            self.invalidator = TagFlushInvalidator(self.cache)
        else:
            self.cache = cache
            self.invalidator = IterativeInvalidator(self)

        return self

    def get_cache(self):
        return self.cache

    async def get_abilities(self, authority: Entity, allowed: bool = True) -> List[Ability]:
        key = self.get_cache_key(authority, "abilities", allowed)

        abilities = await self.cache.get(key)
        if isinstance(abilities, list):
            self._record_lookup("abilities", "hit")
            return self.deserialize_abilities(abilities)

        self._record_lookup("abilities", "miss")
        abilities = await self.get_fresh_abilities(authority, allowed)

        await self.cache.forever(key, self.serialize_abilities(abilities))

        return abilities

    async def get_fresh_abilities(self, authority: Entity, allowed: bool = True) -> List[Ability]:
        """Load the authority's abilities, bypassing the cache."""
        return await super().get_abilities(authority, allowed)

    async def get_roles_lookup(self, authority: Entity) -> Dict[int, str]:
        key = self.get_cache_key(authority, "roles")

        async def fresh_lookup():
            lookup = await super(CachedClipboard, self).get_roles_lookup(authority)
            return [[role_id, name] for role_id, name in lookup.items()]

        pairs = await self.sear(key, fresh_lookup)
        return {role_id: name for role_id, name in pairs}

    async def sear(self, key: str, callback: Callable[[], Awaitable[Any]]) -> Any:
        """Get an item from the cache, or compute it and store it forever."""
        value = await self.cache.get(key)

        if value is None:
            value = await callback()
            await self.cache.forever(key, value)

        return value

    async def refresh(self, authority: Optional[Entity] = None) -> "CachedClipboard":
        """Clear the cache for one authority, or for the whole tenant."""
        if authority is not None:
            return await self.refresh_for(authority)

        await self.invalidator.refresh_all()
        self.logger.info("Ability cache refreshed", tag=self.tag())

        return self

    async def refresh_for(self, authority: Entity) -> "CachedClipboard":
        await self.cache.forget(self.get_cache_key(authority, "abilities", True))
        await self.cache.forget(self.get_cache_key(authority, "abilities", False))
        await self.cache.forget(self.get_cache_key(authority, "roles"))

        return self

    def get_cache_key(self, authority: Entity, kind: str, allowed: bool = True) -> str:
        parts = [self.tag(), kind, authority.type, str(authority.id)]

        if kind == "abilities":
            parts.append("a" if allowed else "f")

        return "-".join(parts)

    def tag(self) -> str:
        return self.scope.append_to_cache_key(self.base_tag)

    def deserialize_abilities(self, abilities: List[Dict[str, Any]]) -> List[Ability]:
        return Ability.hydrate(abilities)

    def serialize_abilities(self, abilities: List[Ability]) -> List[Dict[str, Any]]:
        return [ability.to_attributes() for ability in abilities]

    def _record_lookup(self, cache_type: str, result: str) -> None:
        self.logger.debug("Ability cache lookup", cache_type=cache_type, result=result)
        if self.metrics:
            self.metrics.increment_counter("cache_requests_total", cache_type=cache_type, result=result)
