"""
Ability identifier compilation and matching.

An identifier encodes an ability and what it applies to, e.g.
``update-account-42``, ``update-account``, ``update-*`` or ``*-*``.
"""

from typing import Collection, List, Mapping, Optional

from shared.errors import ValidationError
from .models import Entity, Target, WILDCARD


def compile_ability_identifiers(ability: str, target: Target = None) -> List[str]:
    """Compile the identifiers that would grant ``ability`` on ``target``.

    The result is ordered most specific to least specific. Instance
    identifiers come last but carry the same weight when matching.
    """
    if not ability:
        raise ValidationError("Ability name must not be empty")

    if target is None:
        identifiers = [ability, "*-*", "*"]
    else:
        identifiers = compile_model_ability_identifiers(ability, target)

    return [identifier.lower() for identifier in identifiers]


def compile_model_ability_identifiers(ability: str, target: Target) -> List[str]:
    """Compile identifiers for a wildcard, a target type or a target instance."""
    if target == WILDCARD:
        return [f"{ability}-*", "*-*"]

    entity = target if isinstance(target, Entity) else Entity(type=target)

    identifiers = [
        f"{ability}-{entity.type}",
        f"{ability}-*",
        f"*-{entity.type}",
        "*-*",
    ]

    if entity.exists:
        identifiers.append(f"{ability}-{entity.type}-{entity.id}")
        identifiers.append(f"*-{entity.type}-{entity.id}")

    return identifiers


def owned_identifiers(applicable: Collection[str]) -> List[str]:
    return [f"{identifier}-owned" for identifier in applicable]


def get_matched_ability_id(
    ability_map: Mapping[int, str],
    applicable: Collection[str]
) -> Optional[int]:
    """Return the first ability ID whose identifier is applicable.

    ``ability_map`` is scanned in its own order, so ties go to whichever
    ability the store returned first.
    """
    applicable = set(applicable)

    for ability_id, identifier in ability_map.items():
        if identifier in applicable:
            return ability_id

    return None
