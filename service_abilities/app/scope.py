"""
Tenant scoping.

A scope partitions two things independently: the cache (by appending the
tenant to the cache tag) and storage (by filtering rows on their ``scope``
column). Rows with no scope are shared by every tenant.

Abilities and roles are "models"; permissions and role assignments are
"relations". With ``only_relations`` the models are shared across tenants
and only the relations are scoped.
"""

from typing import Any, Dict, Iterable, List, Optional, TypeVar

T = TypeVar("T")


class TenantScope:
    """Scope bound to one tenant, or to none."""

    def __init__(self, tenant: Optional[str] = None, only_relations: bool = False):
        self.tenant = tenant
        self.only_relations = only_relations

    def to(self, tenant: Optional[str]) -> "TenantScope":
        return TenantScope(tenant, self.only_relations)

    def get(self) -> Optional[str]:
        return self.tenant

    def append_to_cache_key(self, key: str) -> str:
        if self.tenant is None:
            return key
        return f"{key}-{self.tenant}"

    def applies_to(self, record: Any) -> bool:
        if self.tenant is None:
            return True
        return getattr(record, "scope", None) in (None, self.tenant)

    def apply_to_models(self, records: Iterable[T]) -> List[T]:
        if self.tenant is None or self.only_relations:
            return list(records)
        return [record for record in records if self.applies_to(record)]

    def apply_to_relations(self, records: Iterable[T]) -> List[T]:
        return [record for record in records if self.applies_to(record)]

    def model_condition(self, column: str, args: List[Any]) -> str:
        """SQL condition scoping a model column; appends its parameter to ``args``."""
        if self.tenant is None or self.only_relations:
            return "TRUE"
        return self._condition(column, args)

    def relation_condition(self, column: str, args: List[Any]) -> str:
        """SQL condition scoping a relation column; appends its parameter to ``args``."""
        if self.tenant is None:
            return "TRUE"
        return self._condition(column, args)

    def _condition(self, column: str, args: List[Any]) -> str:
        args.append(self.tenant)
        return f"({column} = ${len(args)} OR {column} IS NULL)"

    def model_attributes(self) -> Dict[str, Optional[str]]:
        """Scope attributes for a newly created ability or role."""
        if self.only_relations:
            return {"scope": None}
        return {"scope": self.tenant}

    def attach_attributes(self) -> Dict[str, Optional[str]]:
        """Scope attributes for a newly created permission or role assignment."""
        return {"scope": self.tenant}

    def __repr__(self) -> str:
        return f"TenantScope(tenant={self.tenant!r}, only_relations={self.only_relations})"


class NullScope(TenantScope):
    """Scope for single-tenant deployments: no key fragment, no filtering."""

    def __init__(self):
        super().__init__(None)

    def to(self, tenant: Optional[str]) -> "NullScope":
        return self

    def __repr__(self) -> str:
        return "NullScope()"
