"""
Cleanup of stale ability records.

Two independent passes:

- orphaned: abilities no grant refers to, for any authority kind. A forbid
  grant is a reference, so forbidden abilities are kept while forbidden.
- missing models: abilities bound to one model row that no longer exists.

Each pass classifies every candidate before deleting anything, so a storage
failure mid-scan leaves that pass's records untouched. The cache is not
touched; callers refresh the clipboard afterwards if they need to.
"""

from collections import defaultdict
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Set

from shared.logging import get_logger
from shared.metrics import MetricsCollector
from .persistence.base import AbilityRepository


@dataclass
class CleanupResult:
    """Deleted counts per pass; ``None`` for a pass that was not run or failed."""
    orphaned: Optional[int] = None
    missing: Optional[int] = None
    errors: Dict[str, str] = field(default_factory=dict)

    @property
    def failed(self) -> bool:
        return bool(self.errors)

    def messages(self) -> List[str]:
        """One report line per pass that ran, in run order."""
        lines = []

        if "orphaned" in self.errors:
            lines.append(f"Orphaned ability cleanup failed: {self.errors['orphaned']}")
        elif self.orphaned is not None:
            lines.append(orphaned_message(self.orphaned))

        if "missing" in self.errors:
            lines.append(f"Missing model cleanup failed: {self.errors['missing']}")
        elif self.missing is not None:
            lines.append(missing_message(self.missing))

        return lines


class CleanupService:
    """Finds and deletes orphaned abilities and abilities with missing models."""

    def __init__(self, repository: AbilityRepository, metrics: Optional[MetricsCollector] = None):
        self.repository = repository
        self.metrics = metrics
        self.logger = get_logger("abilities.cleanup")

    async def find_orphaned_ability_ids(self) -> List[int]:
        referenced = await self.repository.referenced_ability_ids()

        return [
            ability.id for ability in await self.repository.all_abilities()
            if ability.id not in referenced
        ]

    async def find_ability_ids_with_missing_models(self) -> List[int]:
        candidates: Dict[str, Dict[int, List[int]]] = defaultdict(lambda: defaultdict(list))

        for ability in await self.repository.all_abilities():
            if ability.targets_model:
                candidates[ability.entity_type][ability.entity_id].append(ability.id)

        missing: List[int] = []
        for entity_type, by_entity in candidates.items():
            existing: Set[int] = await self.repository.existing_entity_ids(entity_type, list(by_entity))

            for entity_id, ability_ids in by_entity.items():
                if entity_id not in existing:
                    missing.extend(ability_ids)

        return sorted(missing)

    async def delete_orphaned_abilities(self) -> int:
        ability_ids = await self.find_orphaned_ability_ids()
        return await self._delete("orphaned", ability_ids)

    async def delete_abilities_with_missing_models(self) -> int:
        ability_ids = await self.find_ability_ids_with_missing_models()
        return await self._delete("missing", ability_ids)

    async def run(self, orphaned: bool = False, missing: bool = False) -> CleanupResult:
        """Run the requested passes; with neither flag set, run both.

        A failing pass is recorded in ``errors`` and does not stop the other.
        """
        if not orphaned and not missing:
            orphaned = missing = True

        result = CleanupResult()

        if orphaned:
            try:
                result.orphaned = await self.delete_orphaned_abilities()
            except Exception as e:
                self.logger.error("Orphaned ability cleanup failed", error=str(e))
                result.errors["orphaned"] = str(e)

        if missing:
            try:
                result.missing = await self.delete_abilities_with_missing_models()
            except Exception as e:
                self.logger.error("Missing model cleanup failed", error=str(e))
                result.errors["missing"] = str(e)

        return result

    async def _delete(self, kind: str, ability_ids: List[int]) -> int:
        if not ability_ids:
            self.logger.info("No abilities to clean", kind=kind)
            return 0

        deleted = await self.repository.delete_abilities(ability_ids)

        self.logger.info("Abilities cleaned", kind=kind, count=deleted, ability_ids=ability_ids)
        if self.metrics:
            self.metrics.record_cleanup(kind, deleted)

        return deleted


def orphaned_message(count: int) -> str:
    if count == 0:
        return "No orphaned abilities."
    return f"Deleted {count} orphaned {'ability' if count == 1 else 'abilities'}."


def missing_message(count: int) -> str:
    if count == 0:
        return "No abilities with missing models."
    if count == 1:
        return "Deleted 1 ability with a missing model."
    return f"Deleted {count} abilities with missing models."
