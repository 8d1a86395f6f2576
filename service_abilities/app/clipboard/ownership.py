"""
Ownership rules.

A target is owned by an authority when the target's owner attribute holds
the authority's ID. The attribute defaults to ``<authority type>_id``
(``user_id`` for users) and can be overridden per target type, or for
every type with ``*``, by an attribute name or a callable.
"""

from typing import Callable, Dict, Optional, Union

from .models import Entity, Target, WILDCARD

OwnershipRule = Union[str, Callable[[Entity, Entity], bool]]


class Ownership:
    """Registry of ownership rules keyed by target type."""

    def __init__(self, rules: Optional[Dict[str, OwnershipRule]] = None):
        self.rules: Dict[str, OwnershipRule] = dict(rules or {})

    def own_via(self, entity_type: str, rule: Optional[OwnershipRule] = None) -> "Ownership":
        """Register how ownership is determined.

        ``own_via("post", "author_id")`` applies to posts only, while
        ``own_via("author_id")`` applies to every type.
        """
        if rule is None:
            entity_type, rule = WILDCARD, entity_type

        self.rules[entity_type] = rule
        return self

    def is_owned_by(self, authority: Entity, target: Target) -> bool:
        # A class reference has no owner
        if not isinstance(target, Entity) or not target.exists:
            return False

        rule = self.rules.get(target.type, self.rules.get(WILDCARD))

        if rule is None:
            rule = f"{authority.type}_id"

        if callable(rule):
            return bool(rule(target, authority))

        owner = target.get(rule)
        return owner is not None and owner == authority.id
