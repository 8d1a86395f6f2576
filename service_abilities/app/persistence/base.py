"""
Repository protocol for abilities, roles and grants.
"""

from typing import Dict, Iterable, List, Optional, Protocol, Set

from ..clipboard.models import Ability, Entity


class AbilityRepository(Protocol):
    """Storage boundary used by the clipboard, conductor and cleanup service.

    Ability lists are returned in ascending ID order; matching relies on it.
    """

    # Reads used by the clipboard

    async def get_abilities(self, authority: Entity, allowed: bool = True) -> List[Ability]:
        """Abilities granted to the authority directly, via its roles, or to everyone."""
        ...

    async def get_roles_lookup(self, authority: Entity) -> Dict[int, str]:
        """Role ID -> role name for the roles assigned to the authority."""
        ...

    async def get_users(self) -> List[Entity]:
        ...

    async def get_roles(self) -> List[Entity]:
        ...

    async def find_entity(self, entity_type: str, entity_id: int) -> Optional[Entity]:
        ...

    # Writes used by the conductor

    async def find_or_create_role(self, name: str, title: Optional[str] = None) -> Entity:
        ...

    async def find_ability(
        self,
        name: str,
        entity_type: Optional[str] = None,
        entity_id: Optional[int] = None,
        only_owned: bool = False
    ) -> Optional[Ability]:
        ...

    async def create_ability(
        self,
        name: str,
        entity_type: Optional[str] = None,
        entity_id: Optional[int] = None,
        only_owned: bool = False,
        title: Optional[str] = None
    ) -> Ability:
        ...

    async def attach_abilities(
        self, authority: Optional[Entity], ability_ids: Iterable[int], forbidden: bool = False
    ) -> int:
        """Grant abilities, skipping existing grants. Returns the number attached."""
        ...

    async def detach_abilities(
        self, authority: Optional[Entity], ability_ids: Iterable[int], forbidden: bool = False
    ) -> int:
        """Remove grants of the given mode. Returns the number detached."""
        ...

    async def assign_role(self, role: Entity, authority: Entity) -> bool:
        ...

    async def retract_role(self, role: Entity, authority: Entity) -> bool:
        ...

    # Reads and writes used by cleanup

    async def all_abilities(self) -> List[Ability]:
        ...

    async def referenced_ability_ids(self) -> Set[int]:
        """IDs of abilities referenced by any grant, of any authority kind."""
        ...

    async def existing_entity_ids(self, entity_type: str, entity_ids: Iterable[int]) -> Set[int]:
        """The subset of ``entity_ids`` whose rows still exist."""
        ...

    async def delete_abilities(self, ability_ids: Iterable[int]) -> int:
        """Delete abilities and their grants. Returns the number of abilities deleted."""
        ...
