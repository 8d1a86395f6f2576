"""
Ability service package.

This package decides whether an authority (a user or a role) may perform
an ability, optionally against a target model. It provides:

- app.clipboard: Identifier compilation, matching, ownership and the decision engine.
- app.cache: Cache stores and the cached clipboard with per-tenant invalidation.
- app.persistence: Repositories for abilities, roles and their grants.
- app.scope: Tenant scoping for cache keys and storage queries.
- app.conductors: Granting, revoking and forbidding abilities.
- app.cleanup: Removal of orphaned abilities and abilities with missing models.
- app.main: API surface for checks, cache refresh and cleanup.

Guidelines:
- The service is stateless; rely on the external cache/DB.
- A forbidden grant always wins over an allowed one.
- Every cache key carries the tenant tag.
"""
