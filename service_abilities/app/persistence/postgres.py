"""
PostgreSQL persistence layer for abilities, roles and grants.
"""

import re
from typing import Any, Dict, Iterable, List, Optional, Set

import asyncpg

from shared.logging import get_logger
from shared.errors import StoreUnavailableError, UnknownEntityTypeError
from ..clipboard.models import Ability, Entity
from ..scope import TenantScope, NullScope

ROLE = "role"
USER = "user"

ABILITY_COLUMNS = "a.id, a.name, a.title, a.entity_type, a.entity_id, a.only_owned, a.scope"

_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def _affected(status: str) -> int:
    """Row count from a command status such as ``DELETE 3`` or ``INSERT 0 1``."""
    try:
        return int(status.rsplit(" ", 1)[-1])
    except (AttributeError, ValueError):
        return 0


class PostgreSQLPersistence:
    """PostgreSQL ability repository."""
    
    def __init__(
        self,
        dsn: str,
        scope: Optional[TenantScope] = None,
        entity_tables: Optional[Dict[str, str]] = None
    ):
        self.dsn = dsn
        self.scope = scope or NullScope()
        self.entity_tables = dict(entity_tables or {USER: "users"})
        self.entity_tables[ROLE] = "roles"
        self.logger = get_logger("abilities.persistence.postgres")
        self.pool: Optional[asyncpg.Pool] = None
    
    async def start(self):
        """Start the persistence layer."""
        try:
            self.pool = await asyncpg.create_pool(
                self.dsn,
                min_size=2,
                max_size=10,
                command_timeout=30
            )
            
            await self._create_tables()
            
            self.logger.info("PostgreSQL persistence started")
            
        except Exception as e:
            self.logger.error("Failed to start PostgreSQL persistence", error=str(e))
            raise StoreUnavailableError("postgres", str(e))
    
    async def stop(self):
        """Stop the persistence layer."""
        if self.pool:
            await self.pool.close()
            self.logger.info("PostgreSQL persistence stopped")
    
    async def _create_tables(self):
        """Create ability tables. Tables of target models are owned by the application."""
        async with self.pool.acquire() as conn:
            await conn.execute("""
                CREATE TABLE IF NOT EXISTS abilities (
                    id BIGSERIAL PRIMARY KEY,
                    name VARCHAR(255) NOT NULL,
                    title VARCHAR(255),
                    entity_type VARCHAR(255),
                    entity_id BIGINT,
                    only_owned BOOLEAN NOT NULL DEFAULT FALSE,
                    scope VARCHAR(255),
                    created_at TIMESTAMP WITH TIME ZONE NOT NULL DEFAULT NOW(),
                    updated_at TIMESTAMP WITH TIME ZONE NOT NULL DEFAULT NOW()
                );
            """)
            await conn.execute("""
                CREATE TABLE IF NOT EXISTS roles (
                    id BIGSERIAL PRIMARY KEY,
                    name VARCHAR(255) NOT NULL,
                    title VARCHAR(255),
                    scope VARCHAR(255),
                    created_at TIMESTAMP WITH TIME ZONE NOT NULL DEFAULT NOW(),
                    updated_at TIMESTAMP WITH TIME ZONE NOT NULL DEFAULT NOW()
                );
            """)
            await conn.execute("""
                CREATE TABLE IF NOT EXISTS permissions (
                    id BIGSERIAL PRIMARY KEY,
                    ability_id BIGINT NOT NULL REFERENCES abilities(id) ON DELETE CASCADE,
                    entity_type VARCHAR(255),
                    entity_id BIGINT,
                    forbidden BOOLEAN NOT NULL DEFAULT FALSE,
                    scope VARCHAR(255)
                );
            """)
            await conn.execute("""
                CREATE TABLE IF NOT EXISTS assigned_roles (
                    id BIGSERIAL PRIMARY KEY,
                    role_id BIGINT NOT NULL REFERENCES roles(id) ON DELETE CASCADE,
                    entity_type VARCHAR(255) NOT NULL,
                    entity_id BIGINT NOT NULL,
                    scope VARCHAR(255)
                );
            """)
            
            await conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_abilities_entity ON abilities(entity_type, entity_id);
            """)
            await conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_abilities_scope ON abilities(scope);
            """)
            await conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_permissions_entity ON permissions(entity_type, entity_id);
            """)
            await conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_permissions_ability ON permissions(ability_id);
            """)
            await conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_assigned_roles_entity ON assigned_roles(entity_type, entity_id);
            """)
    
    def _table_for(self, entity_type: str) -> str:
        table = self.entity_tables.get(entity_type)
        
        if table is None or not _IDENTIFIER.match(table):
            raise UnknownEntityTypeError(entity_type)
        
        return table
    
    # Reads
    
    async def get_abilities(self, authority: Entity, allowed: bool = True) -> List[Ability]:
        """Abilities granted to the authority directly, via its roles, or to everyone."""
        args: List[Any] = [not allowed, authority.type, authority.id]
        abilities_scope = self.scope.model_condition("a.scope", args)
        permissions_scope = self.scope.relation_condition("p.scope", args)
        assigned_scope = self.scope.relation_condition("ar.scope", args)
        roles_scope = self.scope.model_condition("r.scope", args)
        
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(f"""
                SELECT DISTINCT {ABILITY_COLUMNS}
                FROM abilities a
                JOIN permissions p ON p.ability_id = a.id
                WHERE p.forbidden = $1
                  AND {abilities_scope}
                  AND {permissions_scope}
                  AND (
                    (p.entity_type = $2 AND p.entity_id = $3)
                    OR (p.entity_type = '{ROLE}' AND p.entity_id IN (
                        SELECT ar.role_id FROM assigned_roles ar
                        JOIN roles r ON r.id = ar.role_id
                        WHERE ar.entity_type = $2 AND ar.entity_id = $3
                          AND {assigned_scope}
                          AND {roles_scope}
                    ))
                    OR (p.entity_type IS NULL AND p.entity_id IS NULL)
                  )
                ORDER BY a.id
            """, *args)
        
        return [self._row_to_ability(row, forbidden=not allowed) for row in rows]
    
    async def get_roles_lookup(self, authority: Entity) -> Dict[int, str]:
        args: List[Any] = [authority.type, authority.id]
        assigned_scope = self.scope.relation_condition("ar.scope", args)
        roles_scope = self.scope.model_condition("r.scope", args)
        
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(f"""
                SELECT r.id, r.name FROM roles r
                JOIN assigned_roles ar ON ar.role_id = r.id
                WHERE ar.entity_type = $1 AND ar.entity_id = $2
                  AND {assigned_scope}
                  AND {roles_scope}
                ORDER BY r.id
            """, *args)
        
        return {row["id"]: row["name"] for row in rows}
    
    async def get_users(self) -> List[Entity]:
        table = self._table_for(USER)
        
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(f'SELECT * FROM "{table}" ORDER BY id')
        
        return [self._row_to_entity(USER, row) for row in rows]
    
    async def get_roles(self) -> List[Entity]:
        args: List[Any] = []
        roles_scope = self.scope.model_condition("scope", args)
        
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(f"SELECT * FROM roles WHERE {roles_scope} ORDER BY id", *args)
        
        return [self._row_to_entity(ROLE, row) for row in rows]
    
    async def find_entity(self, entity_type: str, entity_id: int) -> Optional[Entity]:
        table = self._table_for(entity_type)
        
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(f'SELECT * FROM "{table}" WHERE id = $1', entity_id)
        
        return self._row_to_entity(entity_type, row) if row else None
    
    # Grants
    
    async def find_or_create_role(self, name: str, title: Optional[str] = None) -> Entity:
        args: List[Any] = [name]
        roles_scope = self.scope.model_condition("scope", args)
        
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                f"SELECT * FROM roles WHERE name = $1 AND {roles_scope} ORDER BY id LIMIT 1", *args
            )
            
            if row is None:
                row = await conn.fetchrow("""
                    INSERT INTO roles (name, title, scope) VALUES ($1, $2, $3) RETURNING *
                """, name, title, self.scope.model_attributes()["scope"])
                self.logger.info("Role created", role=name)
        
        return self._row_to_entity(ROLE, row)
    
    async def find_ability(
        self,
        name: str,
        entity_type: Optional[str] = None,
        entity_id: Optional[int] = None,
        only_owned: bool = False
    ) -> Optional[Ability]:
        args: List[Any] = [name, entity_type, entity_id, only_owned]
        abilities_scope = self.scope.model_condition("a.scope", args)
        
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(f"""
                SELECT {ABILITY_COLUMNS} FROM abilities a
                WHERE a.name = $1
                  AND a.entity_type IS NOT DISTINCT FROM $2
                  AND a.entity_id IS NOT DISTINCT FROM $3
                  AND a.only_owned = $4
                  AND {abilities_scope}
                ORDER BY a.id LIMIT 1
            """, *args)
        
        return self._row_to_ability(row) if row else None
    
    async def create_ability(
        self,
        name: str,
        entity_type: Optional[str] = None,
        entity_id: Optional[int] = None,
        only_owned: bool = False,
        title: Optional[str] = None
    ) -> Ability:
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(f"""
                INSERT INTO abilities AS a (name, title, entity_type, entity_id, only_owned, scope)
                VALUES ($1, $2, $3, $4, $5, $6)
                RETURNING {ABILITY_COLUMNS}
            """, name, title, entity_type, entity_id, only_owned, self.scope.model_attributes()["scope"])
        
        return self._row_to_ability(row)
    
    async def attach_abilities(
        self, authority: Optional[Entity], ability_ids: Iterable[int], forbidden: bool = False
    ) -> int:
        entity_type = authority.type if authority else None
        entity_id = authority.id if authority else None
        scope = self.scope.attach_attributes()["scope"]
        attached = 0
        
        async with self.pool.acquire() as conn:
            async with conn.transaction():
                for ability_id in ability_ids:
                    args: List[Any] = [ability_id, entity_type, entity_id, forbidden, scope]
                    permissions_scope = self.scope.relation_condition("p.scope", args)
                    status = await conn.execute(f"""
                        INSERT INTO permissions (ability_id, entity_type, entity_id, forbidden, scope)
                        SELECT $1::bigint, $2::varchar, $3::bigint, $4::boolean, $5::varchar
                        WHERE NOT EXISTS (
                            SELECT 1 FROM permissions p
                            WHERE p.ability_id = $1
                              AND p.entity_type IS NOT DISTINCT FROM $2
                              AND p.entity_id IS NOT DISTINCT FROM $3
                              AND p.forbidden = $4
                              AND {permissions_scope}
                        )
                    """, *args)
                    attached += _affected(status)
        
        return attached
    
    async def detach_abilities(
        self, authority: Optional[Entity], ability_ids: Iterable[int], forbidden: bool = False
    ) -> int:
        args: List[Any] = [
            list(ability_ids),
            authority.type if authority else None,
            authority.id if authority else None,
            forbidden,
        ]
        permissions_scope = self.scope.relation_condition("scope", args)
        
        async with self.pool.acquire() as conn:
            status = await conn.execute(f"""
                DELETE FROM permissions
                WHERE ability_id = ANY($1::bigint[])
                  AND entity_type IS NOT DISTINCT FROM $2
                  AND entity_id IS NOT DISTINCT FROM $3
                  AND forbidden = $4
                  AND {permissions_scope}
            """, *args)
        
        return _affected(status)
    
    async def assign_role(self, role: Entity, authority: Entity) -> bool:
        args: List[Any] = [role.id, authority.type, authority.id, self.scope.attach_attributes()["scope"]]
        assigned_scope = self.scope.relation_condition("ar.scope", args)
        
        async with self.pool.acquire() as conn:
            status = await conn.execute(f"""
                INSERT INTO assigned_roles (role_id, entity_type, entity_id, scope)
                SELECT $1::bigint, $2::varchar, $3::bigint, $4::varchar
                WHERE NOT EXISTS (
                    SELECT 1 FROM assigned_roles ar
                    WHERE ar.role_id = $1 AND ar.entity_type = $2 AND ar.entity_id = $3
                      AND {assigned_scope}
                )
            """, *args)
        
        return _affected(status) > 0
    
    async def retract_role(self, role: Entity, authority: Entity) -> bool:
        args: List[Any] = [role.id, authority.type, authority.id]
        assigned_scope = self.scope.relation_condition("scope", args)
        
        async with self.pool.acquire() as conn:
            status = await conn.execute(f"""
                DELETE FROM assigned_roles
                WHERE role_id = $1 AND entity_type = $2 AND entity_id = $3
                  AND {assigned_scope}
            """, *args)
        
        return _affected(status) > 0
    
    # Cleanup
    
    async def all_abilities(self) -> List[Ability]:
        args: List[Any] = []
        abilities_scope = self.scope.model_condition("a.scope", args)
        
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                f"SELECT {ABILITY_COLUMNS} FROM abilities a WHERE {abilities_scope} ORDER BY a.id", *args
            )
        
        return [self._row_to_ability(row) for row in rows]
    
    async def referenced_ability_ids(self) -> Set[int]:
        async with self.pool.acquire() as conn:
            rows = await conn.fetch("SELECT DISTINCT ability_id FROM permissions")
        
        return {row["ability_id"] for row in rows}
    
    async def existing_entity_ids(self, entity_type: str, entity_ids: Iterable[int]) -> Set[int]:
        table = self._table_for(entity_type)
        
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                f'SELECT id FROM "{table}" WHERE id = ANY($1::bigint[])', list(entity_ids)
            )
        
        return {row["id"] for row in rows}
    
    async def delete_abilities(self, ability_ids: Iterable[int]) -> int:
        ability_ids = list(ability_ids)
        
        if not ability_ids:
            return 0
        
        async with self.pool.acquire() as conn:
            status = await conn.execute(
                "DELETE FROM abilities WHERE id = ANY($1::bigint[])", ability_ids
            )
        
        deleted = _affected(status)
        self.logger.info("Abilities deleted", count=deleted)
        return deleted
    
    async def health_check(self) -> bool:
        """Check database health."""
        try:
            async with self.pool.acquire() as conn:
                await conn.fetchval("SELECT 1")
                return True
        except Exception:
            return False
    
    def _row_to_ability(self, row, forbidden: bool = False) -> Ability:
        """Convert database row to Ability object."""
        return Ability(
            id=row["id"],
            name=row["name"],
            title=row["title"],
            entity_type=row["entity_type"],
            entity_id=row["entity_id"],
            only_owned=row["only_owned"],
            forbidden=forbidden,
            scope=row["scope"]
        )
    
    def _row_to_entity(self, entity_type: str, row) -> Entity:
        """Convert database row to Entity object."""
        attributes = dict(row)
        return Entity(type=entity_type, id=attributes.pop("id"), attributes=attributes)
