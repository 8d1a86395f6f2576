"""
In-process repository.

Backs tests and local development. Rows live in plain dicts and lists and
are copied on the way out, so callers can never mutate stored state.
"""

import itertools
from dataclasses import replace
from typing import Dict, Iterable, List, Optional, Set

from shared.logging import get_logger
from ..clipboard.models import Ability, AssignedRole, Entity, Permission
from ..scope import TenantScope, NullScope

ROLE = "role"
USER = "user"


class InMemoryRepository:
    """Dictionary-backed ability repository."""

    def __init__(self, scope: Optional[TenantScope] = None):
        self.scope = scope or NullScope()
        self.logger = get_logger("abilities.persistence.memory")

        self._entities: Dict[str, Dict[int, Entity]] = {}
        self._abilities: Dict[int, Ability] = {}
        self._permissions: List[Permission] = []
        self._assigned_roles: List[AssignedRole] = []
        self._ids: Dict[str, itertools.count] = {}

    def with_scope(self, scope: TenantScope) -> "InMemoryRepository":
        """A view of the same rows under another scope.

        Views share containers, so tables are only ever mutated in place.
        """
        view = InMemoryRepository.__new__(InMemoryRepository)
        view.__dict__.update(self.__dict__)
        view.scope = scope
        return view

    def _next_id(self, table: str) -> int:
        if table not in self._ids:
            self._ids[table] = itertools.count(1)
        return next(self._ids[table])

    # Entities

    async def start(self):
        """Nothing to connect."""

    async def stop(self):
        """Nothing to release."""

    async def health_check(self) -> bool:
        return True

    def create_entity(self, entity_type: str, **attributes) -> Entity:
        entity = Entity(type=entity_type, id=self._next_id(entity_type), attributes=attributes)
        self._entities.setdefault(entity_type, {})[entity.id] = entity
        return replace(entity, attributes=dict(entity.attributes))

    def delete_entity(self, entity: Entity) -> bool:
        removed = self._entities.get(entity.type, {}).pop(entity.id, None)

        if removed is not None and entity.type == ROLE:
            self._assigned_roles[:] = [a for a in self._assigned_roles if a.role_id != entity.id]
            self._permissions[:] = [
                p for p in self._permissions
                if not (p.entity_type == ROLE and p.entity_id == entity.id)
            ]

        return removed is not None

    async def find_entity(self, entity_type: str, entity_id: int) -> Optional[Entity]:
        entity = self._entities.get(entity_type, {}).get(entity_id)
        if entity is None:
            return None
        return replace(entity, attributes=dict(entity.attributes))

    async def get_users(self) -> List[Entity]:
        return [replace(user) for _, user in sorted(self._entities.get(USER, {}).items())]

    async def get_roles(self) -> List[Entity]:
        roles = [role for _, role in sorted(self._entities.get(ROLE, {}).items())]
        return [replace(role) for role in self.scope.apply_to_models(roles)]

    async def find_or_create_role(self, name: str, title: Optional[str] = None) -> Entity:
        for role in await self.get_roles():
            if role.name == name:
                return role

        return self.create_entity(ROLE, name=name, title=title, **self.scope.model_attributes())

    # Reads

    def _roles_for(self, authority: Entity) -> List[Entity]:
        assigned = {
            assignment.role_id
            for assignment in self.scope.apply_to_relations(self._assigned_roles)
            if assignment.entity_type == authority.type and assignment.entity_id == authority.id
        }
        roles = [role for role_id, role in sorted(self._entities.get(ROLE, {}).items()) if role_id in assigned]
        return self.scope.apply_to_models(roles)

    async def get_abilities(self, authority: Entity, allowed: bool = True) -> List[Ability]:
        forbidden = not allowed
        role_ids = {role.id for role in self._roles_for(authority)}

        ability_ids = set()
        for permission in self.scope.apply_to_relations(self._permissions):
            if permission.forbidden != forbidden:
                continue

            if (
                permission.belongs_to(authority)
                or permission.belongs_to(None)
                or (permission.entity_type == ROLE and permission.entity_id in role_ids)
            ):
                ability_ids.add(permission.ability_id)

        abilities = [
            ability for ability_id, ability in sorted(self._abilities.items())
            if ability_id in ability_ids
        ]

        return [replace(ability, forbidden=forbidden) for ability in self.scope.apply_to_models(abilities)]

    async def get_roles_lookup(self, authority: Entity) -> Dict[int, str]:
        return {role.id: role.name for role in self._roles_for(authority)}

    # Grants

    async def find_ability(
        self,
        name: str,
        entity_type: Optional[str] = None,
        entity_id: Optional[int] = None,
        only_owned: bool = False
    ) -> Optional[Ability]:
        for ability in self.scope.apply_to_models(sorted(self._abilities.values(), key=lambda a: a.id)):
            if (
                ability.name == name
                and ability.entity_type == entity_type
                and ability.entity_id == entity_id
                and ability.only_owned == only_owned
            ):
                return replace(ability)
        return None

    async def create_ability(
        self,
        name: str,
        entity_type: Optional[str] = None,
        entity_id: Optional[int] = None,
        only_owned: bool = False,
        title: Optional[str] = None
    ) -> Ability:
        ability = Ability(
            id=self._next_id("abilities"),
            name=name,
            title=title,
            entity_type=entity_type,
            entity_id=entity_id,
            only_owned=only_owned,
            **self.scope.model_attributes()
        )
        self._abilities[ability.id] = ability
        return replace(ability)

    def _grants_of(self, authority: Optional[Entity], forbidden: bool) -> List[Permission]:
        return [
            permission for permission in self.scope.apply_to_relations(self._permissions)
            if permission.belongs_to(authority) and permission.forbidden == forbidden
        ]

    async def attach_abilities(
        self, authority: Optional[Entity], ability_ids: Iterable[int], forbidden: bool = False
    ) -> int:
        existing = {permission.ability_id for permission in self._grants_of(authority, forbidden)}
        attached = 0

        for ability_id in ability_ids:
            if ability_id in existing or ability_id not in self._abilities:
                continue

            self._permissions.append(Permission(
                id=self._next_id("permissions"),
                ability_id=ability_id,
                entity_type=authority.type if authority else None,
                entity_id=authority.id if authority else None,
                forbidden=forbidden,
                **self.scope.attach_attributes()
            ))
            existing.add(ability_id)
            attached += 1

        return attached

    async def detach_abilities(
        self, authority: Optional[Entity], ability_ids: Iterable[int], forbidden: bool = False
    ) -> int:
        ability_ids = set(ability_ids)
        doomed = {
            permission.id for permission in self._grants_of(authority, forbidden)
            if permission.ability_id in ability_ids
        }
        self._permissions[:] = [p for p in self._permissions if p.id not in doomed]
        return len(doomed)

    async def assign_role(self, role: Entity, authority: Entity) -> bool:
        for assignment in self.scope.apply_to_relations(self._assigned_roles):
            if (
                assignment.role_id == role.id
                and assignment.entity_type == authority.type
                and assignment.entity_id == authority.id
            ):
                return False

        self._assigned_roles.append(AssignedRole(
            id=self._next_id("assigned_roles"),
            role_id=role.id,
            entity_type=authority.type,
            entity_id=authority.id,
            **self.scope.attach_attributes()
        ))
        return True

    async def retract_role(self, role: Entity, authority: Entity) -> bool:
        doomed = {
            assignment.id for assignment in self.scope.apply_to_relations(self._assigned_roles)
            if assignment.role_id == role.id
            and assignment.entity_type == authority.type
            and assignment.entity_id == authority.id
        }
        self._assigned_roles[:] = [a for a in self._assigned_roles if a.id not in doomed]
        return bool(doomed)

    # Cleanup

    async def all_abilities(self) -> List[Ability]:
        abilities = [ability for _, ability in sorted(self._abilities.items())]
        return [replace(ability) for ability in self.scope.apply_to_models(abilities)]

    async def referenced_ability_ids(self) -> Set[int]:
        return {permission.ability_id for permission in self._permissions}

    async def existing_entity_ids(self, entity_type: str, entity_ids: Iterable[int]) -> Set[int]:
        return set(entity_ids) & set(self._entities.get(entity_type, {}))

    async def delete_abilities(self, ability_ids: Iterable[int]) -> int:
        ability_ids = set(ability_ids)
        deleted = 0

        for ability_id in ability_ids:
            if self._abilities.pop(ability_id, None) is not None:
                deleted += 1

        self._permissions[:] = [p for p in self._permissions if p.ability_id not in ability_ids]

        self.logger.info("Abilities deleted", count=deleted)
        return deleted

    async def count_abilities(self) -> int:
        return len(await self.all_abilities())
