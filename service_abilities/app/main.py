"""
Ability service.
"""

import time
from typing import Optional

from fastapi import Response

from shared.base_service import BaseService
from shared.config import ServiceConfig, get_config
from shared.errors import EntityNotFoundError, ValidationError
from shared.logging import set_authority_context

from .cache.cached_clipboard import CachedClipboard
from .cache.stores import RedisStore, TaggableArrayStore
from .cleanup import CleanupService
from .clipboard.models import (
    AbilityCheckRequest, AbilityCheckResponse,
    CleanupRequest, CleanupResponse,
    Entity, RefreshRequest, WILDCARD
)
from .conductors import AbilityConductor
from .persistence.memory import InMemoryRepository
from .persistence.postgres import PostgreSQLPersistence
from .scope import NullScope, TenantScope


SERVICE_NAME = "abilities"
SERVICE_PORT = 8011


class AbilitiesService(BaseService):
    """Ability service implementation."""
    
    def __init__(self, config: Optional[ServiceConfig] = None):
        super().__init__(SERVICE_NAME, SERVICE_PORT, config or get_config(SERVICE_NAME, SERVICE_PORT))
        
        if self.config.tenant is None and not self.config.only_scope_relations:
            self.scope = NullScope()
        else:
            self.scope = TenantScope(self.config.tenant, self.config.only_scope_relations)
        
        if self.config.storage_backend == "memory":
            self.repository = InMemoryRepository(self.scope)
        else:
            self.repository = PostgreSQLPersistence(
                self.config.postgres_dsn,
                self.scope,
                entity_tables=self.config.entity_tables
            )
        
        if self.config.cache_backend == "array":
            self.cache = TaggableArrayStore()
        else:
            self.cache = RedisStore(self.config.redis_url, prefix=self.config.cache_prefix)
        
        self.clipboard = CachedClipboard(
            self.cache,
            self.repository,
            self.scope,
            tag=self.config.cache_tag,
            metrics=self.metrics
        )
        self.conductor = AbilityConductor(self.repository, self.clipboard)
        self.cleanup = CleanupService(self.repository, self.metrics)
        
        self._setup_ability_routes()
    
    def _setup_ability_routes(self):
        """Set up ability-specific routes."""
        
        @self.app.get("/")
        async def root():
            """Root endpoint."""
            return {
                "service": SERVICE_NAME,
                "message": "Ability authorization service",
                "version": "1.0.0",
                "tenant": self.scope.get(),
                "capabilities": ["ability_checks", "caching", "cleanup"]
            }
        
        @self.app.post("/abilities/check", response_model=AbilityCheckResponse)
        async def check_ability(request: AbilityCheckRequest):
            """Check whether an authority has an ability."""
            start_time = time.time()
            
            authority = await self._find_entity(request.authority_type, request.authority_id)
            set_authority_context(str(authority), self.scope.get())
            target = await self._resolve_target(request.target_type, request.target_id)
            
            result = await self.clipboard.check_get_id(authority, request.ability, target)
            
            if result is False:
                decision = "deny"
            elif result is None:
                decision = "unknown"
            else:
                decision = "allow"
            
            self.metrics.record_ability_check(decision, time.time() - start_time)
            self.logger.info(
                "Ability checked",
                authority=str(authority),
                ability=request.ability,
                target=str(target) if target is not None else None,
                decision=decision
            )
            
            return AbilityCheckResponse(
                allowed=decision == "allow",
                decision=decision,
                ability_id=result if decision == "allow" else None
            )
        
        @self.app.post("/abilities/refresh")
        async def refresh_cache(request: RefreshRequest):
            """Refresh the ability cache for one authority or the whole tenant."""
            if (request.authority_type is None) != (request.authority_id is None):
                raise ValidationError(
                    "authority_type and authority_id must be given together",
                    {"authority_type": request.authority_type, "authority_id": request.authority_id}
                )
            
            if request.authority_type is not None:
                authority = Entity(type=request.authority_type, id=request.authority_id)
                await self.clipboard.refresh_for(authority)
                return {"success": True, "refreshed": str(authority)}
            
            await self.clipboard.refresh()
            return {"success": True, "refreshed": "all"}
        
        @self.app.post("/abilities/clean", response_model=CleanupResponse)
        async def clean_abilities(request: CleanupRequest, response: Response):
            """Delete orphaned abilities and abilities with missing models.
            
            A failed pass is reported in ``errors`` with a 500 status, alongside
            the counts of any pass that completed.
            """
            result = await self.cleanup.run(request.orphaned, request.missing)
            
            for kind in result.errors:
                self.metrics.record_error(f"CLEANUP_{kind.upper()}_FAILED")
            if result.failed:
                response.status_code = 500
            
            return CleanupResponse(
                orphaned=result.orphaned,
                missing=result.missing,
                messages=result.messages(),
                errors=result.errors
            )
    
    async def _find_entity(self, entity_type: str, entity_id: int) -> Entity:
        entity = await self.repository.find_entity(entity_type, entity_id)
        if entity is None:
            raise EntityNotFoundError(entity_type, entity_id)
        return entity
    
    async def _resolve_target(self, target_type: Optional[str], target_id: Optional[int]):
        if target_type is None:
            return None
        if target_type == WILDCARD or target_id is None:
            return target_type
        return await self._find_entity(target_type, target_id)
    
    async def _check_dependencies(self):
        """Check ability service dependencies."""
        dependencies = {}
        
        try:
            dependencies["cache"] = "ok" if await self.cache.health_check() else "error"
        except Exception:
            dependencies["cache"] = "error"
        
        try:
            dependencies["storage"] = "ok" if await self.repository.health_check() else "error"
        except Exception:
            dependencies["storage"] = "error"
        
        return dependencies
    
    async def start(self):
        """Start ability service components."""
        await self.repository.start()
        if isinstance(self.cache, RedisStore):
            await self.cache.start()
        
        self.logger.info("Ability service started", tenant=self.scope.get())
    
    async def stop(self):
        """Stop ability service components."""
        await self.repository.stop()
        if isinstance(self.cache, RedisStore):
            await self.cache.stop()
        
        self.logger.info("Ability service stopped")


def create_app(config: Optional[ServiceConfig] = None):
    """Create ability service application."""
    service = AbilitiesService(config)
    return service.app


if __name__ == "__main__":
    AbilitiesService().run()
