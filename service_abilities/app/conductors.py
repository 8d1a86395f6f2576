"""
Granting and revoking abilities.

An authority is a user or role entity, a role name (the role is created
on demand), or ``None`` for everyone. Abilities are names, optionally
scoped to a target: the wildcard ``*``, a type name, or an entity.

After each write the clipboard cache is refreshed: for a user only that
user's keys, for a role or everyone the whole tenant.
"""

from typing import Iterable, List, Optional, Tuple, Union

from shared.logging import get_logger
from .clipboard.engine import Clipboard
from .clipboard.models import Entity, Target, WILDCARD
from .persistence.base import AbilityRepository

Authority = Union[None, str, Entity]
Abilities = Union[str, Iterable[str]]


def target_columns(target: Target) -> Tuple[Optional[str], Optional[int]]:
    """The (entity_type, entity_id) an ability on ``target`` is stored with."""
    if target is None:
        return None, None

    if isinstance(target, Entity):
        return target.type, target.id

    return target, None


class AbilityConductor:
    """Writes grants, forbids and role assignments."""

    def __init__(self, repository: AbilityRepository, clipboard: Optional[Clipboard] = None):
        self.repository = repository
        self.clipboard = clipboard
        self.logger = get_logger("abilities.conductor")

    async def allow(
        self,
        authority: Authority,
        abilities: Abilities,
        target: Target = None,
        only_owned: bool = False
    ) -> List[int]:
        """Allow the abilities, creating ability records as needed."""
        return await self._associate(authority, abilities, target, only_owned, forbidden=False)

    async def allow_everything(self, authority: Authority) -> List[int]:
        return await self.allow(authority, WILDCARD, WILDCARD)

    async def forbid(
        self,
        authority: Authority,
        abilities: Abilities,
        target: Target = None,
        only_owned: bool = False
    ) -> List[int]:
        """Forbid the abilities; a forbid overrides any allow."""
        return await self._associate(authority, abilities, target, only_owned, forbidden=True)

    async def disallow(
        self,
        authority: Authority,
        abilities: Abilities,
        target: Target = None,
        only_owned: bool = False
    ) -> int:
        """Remove allow grants. Ability records are kept, even if now unused."""
        return await self._disassociate(authority, abilities, target, only_owned, forbidden=False)

    async def unforbid(
        self,
        authority: Authority,
        abilities: Abilities,
        target: Target = None,
        only_owned: bool = False
    ) -> int:
        """Remove forbid grants."""
        return await self._disassociate(authority, abilities, target, only_owned, forbidden=True)

    async def assign(self, roles: Abilities, authority: Entity) -> List[Entity]:
        """Assign roles, by name, to the authority."""
        assigned = []

        for name in self._names(roles):
            role = await self.repository.find_or_create_role(name)
            await self.repository.assign_role(role, authority)
            assigned.append(role)

        await self._refresh(authority)
        return assigned

    async def retract(self, roles: Abilities, authority: Entity) -> int:
        """Retract roles, by name, from the authority."""
        retracted = 0
        names = set(self._names(roles))

        for role in await self.repository.get_roles():
            if role.name in names and await self.repository.retract_role(role, authority):
                retracted += 1

        await self._refresh(authority)
        return retracted

    async def _associate(
        self,
        authority: Authority,
        abilities: Abilities,
        target: Target,
        only_owned: bool,
        forbidden: bool
    ) -> List[int]:
        authority = await self._resolve_authority(authority)
        entity_type, entity_id = target_columns(target)

        ability_ids = []
        for name in self._names(abilities):
            ability = await self.repository.find_ability(name, entity_type, entity_id, only_owned)

            if ability is None:
                ability = await self.repository.create_ability(name, entity_type, entity_id, only_owned)

            ability_ids.append(ability.id)

        attached = await self.repository.attach_abilities(authority, ability_ids, forbidden)

        self.logger.info(
            "Abilities forbidden" if forbidden else "Abilities allowed",
            authority=str(authority) if authority else "everyone",
            abilities=ability_ids,
            attached=attached
        )

        await self._refresh(authority)
        return ability_ids

    async def _disassociate(
        self,
        authority: Authority,
        abilities: Abilities,
        target: Target,
        only_owned: bool,
        forbidden: bool
    ) -> int:
        authority = await self._resolve_authority(authority)
        entity_type, entity_id = target_columns(target)

        ability_ids = []
        for name in self._names(abilities):
            ability = await self.repository.find_ability(name, entity_type, entity_id, only_owned)
            if ability is not None:
                ability_ids.append(ability.id)

        detached = 0
        if ability_ids:
            detached = await self.repository.detach_abilities(authority, ability_ids, forbidden)

        self.logger.info(
            "Abilities unforbidden" if forbidden else "Abilities disallowed",
            authority=str(authority) if authority else "everyone",
            abilities=ability_ids,
            detached=detached
        )

        await self._refresh(authority)
        return detached

    async def _resolve_authority(self, authority: Authority) -> Optional[Entity]:
        if isinstance(authority, str):
            return await self.repository.find_or_create_role(authority)
        return authority

    async def _refresh(self, authority: Optional[Entity]) -> None:
        if self.clipboard is None:
            return

        if authority is None or authority.type == "role":
            await self.clipboard.refresh()
        else:
            await self.clipboard.refresh_for(authority)

    @staticmethod
    def _names(abilities: Abilities) -> List[str]:
        if isinstance(abilities, str):
            return [abilities]
        return list(abilities)
