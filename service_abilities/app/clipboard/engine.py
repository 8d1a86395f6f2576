"""
Ability decision engine.
"""

from typing import Dict, Iterable, List, Optional, Union

from shared.errors import ValidationError
from shared.logging import get_logger
from .identifiers import compile_ability_identifiers, get_matched_ability_id, owned_identifiers
from .models import Ability, Entity, Target
from .ownership import Ownership
from ..persistence.base import AbilityRepository
from ..scope import TenantScope, NullScope

# An ability ID when allowed, False when forbidden, None when nothing matched
CheckResult = Union[int, bool, None]


class Clipboard:
    """Answers ability and role questions straight from the repository.

    Subclasses may override ``get_abilities`` and ``get_roles_lookup`` to
    put a cache in front of the repository.
    """

    def __init__(
        self,
        repository: AbilityRepository,
        scope: Optional[TenantScope] = None,
        ownership: Optional[Ownership] = None
    ):
        self.repository = repository
        self.scope = scope or NullScope()
        self.ownership = ownership or Ownership()
        self.logger = get_logger("abilities.clipboard")

    async def check(self, authority: Entity, ability: str, target: Target = None) -> bool:
        """Determine if the authority has the ability."""
        result = await self.check_get_id(authority, ability, target)
        return result is not None and result is not False

    async def check_get_id(self, authority: Entity, ability: str, target: Target = None) -> CheckResult:
        """Determine if the authority has the ability, and return the matched ability ID."""
        applicable = compile_ability_identifiers(ability, target)

        # Forbidden abilities are checked first and can never be overridden
        # by an allowed one, however specific.
        forbidden_id = self.find_matching_ability(
            await self.get_forbidden_abilities(authority),
            applicable,
            target,
            authority
        )

        if forbidden_id is not None:
            self.logger.debug(
                "Ability forbidden",
                authority=str(authority),
                ability=ability,
                ability_id=forbidden_id
            )
            return False

        return self.find_matching_ability(
            await self.get_abilities(authority),
            applicable,
            target,
            authority
        )

    def find_matching_ability(
        self,
        abilities: Iterable[Ability],
        applicable: List[str],
        target: Target,
        authority: Entity
    ) -> Optional[int]:
        ability_map = {ability.id: ability.identifier for ability in abilities}

        ability_id = get_matched_ability_id(ability_map, applicable)
        if ability_id is not None:
            return ability_id

        if self.is_owned_by(authority, target):
            return get_matched_ability_id(ability_map, owned_identifiers(applicable))

        return None

    def is_owned_by(self, authority: Entity, target: Target) -> bool:
        return self.ownership.is_owned_by(authority, target)

    async def check_role(self, authority: Entity, roles: Union[str, Iterable[str]], boolean: str = "or") -> bool:
        """Check the authority's roles: any of them ("or"), all ("and") or none ("not")."""
        if isinstance(roles, str):
            roles = [roles]

        wanted = set(roles)
        available = set(await self.get_roles(authority)) & wanted

        if boolean == "or":
            return bool(available)
        if boolean == "not":
            return not available
        if boolean == "and":
            return available == wanted

        raise ValidationError(f"Unknown boolean operator '{boolean}'")

    async def get_roles(self, authority: Entity) -> List[str]:
        return list((await self.get_roles_lookup(authority)).values())

    async def get_roles_lookup(self, authority: Entity) -> Dict[int, str]:
        return await self.repository.get_roles_lookup(authority)

    async def get_abilities(self, authority: Entity, allowed: bool = True) -> List[Ability]:
        return await self.repository.get_abilities(authority, allowed)

    async def get_forbidden_abilities(self, authority: Entity) -> List[Ability]:
        return await self.get_abilities(authority, False)

    async def refresh(self, authority: Optional[Entity] = None) -> "Clipboard":
        """Nothing is cached here; kept so callers can refresh any clipboard."""
        return self

    async def refresh_for(self, authority: Entity) -> "Clipboard":
        return self
