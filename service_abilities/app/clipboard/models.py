"""
Ability data models.
"""

from dataclasses import dataclass, field, asdict, fields
from typing import Dict, Any, Optional, List, Iterable, Union

from pydantic import BaseModel, Field


WILDCARD = "*"


@dataclass
class Entity:
    """A model instance: an authority (user, role) or an ability target.

    ``id`` is ``None`` for an unsaved instance, which then behaves as a
    reference to its whole type.
    """
    type: str
    id: Optional[int] = None
    attributes: Dict[str, Any] = field(default_factory=dict)

    @property
    def exists(self) -> bool:
        return self.id is not None

    @property
    def scope(self) -> Optional[str]:
        return self.attributes.get("scope")

    @property
    def name(self) -> Optional[str]:
        return self.attributes.get("name")

    def get(self, attribute: str, default: Any = None) -> Any:
        return self.attributes.get(attribute, default)

    def __str__(self) -> str:
        return f"{self.type}:{self.id}"


# None, the wildcard, a type name, or an entity
Target = Union[None, str, Entity]


@dataclass
class Ability:
    """An ability record, as loaded for an authority."""
    id: int
    name: str
    title: Optional[str] = None
    entity_type: Optional[str] = None
    entity_id: Optional[int] = None
    only_owned: bool = False
    forbidden: bool = False
    scope: Optional[str] = None

    @property
    def identifier(self) -> str:
        slug = self.name

        if self.entity_type:
            slug += f"-{self.entity_type}"

        if self.entity_id is not None:
            slug += f"-{self.entity_id}"

        if self.only_owned:
            slug += "-owned"

        return slug.lower()

    @property
    def targets_model(self) -> bool:
        """Whether the ability is bound to one concrete model row."""
        return (
            self.entity_type is not None
            and self.entity_type != WILDCARD
            and self.entity_id is not None
        )

    def to_attributes(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_attributes(cls, attributes: Dict[str, Any]) -> "Ability":
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in attributes.items() if k in known})

    @classmethod
    def hydrate(cls, rows: Iterable[Dict[str, Any]]) -> List["Ability"]:
        return [cls.from_attributes(row) for row in rows]


@dataclass
class Permission:
    """Grant of an ability to an authority; no authority means everyone."""
    id: int
    ability_id: int
    entity_type: Optional[str] = None
    entity_id: Optional[int] = None
    forbidden: bool = False
    scope: Optional[str] = None

    def belongs_to(self, authority: Optional[Entity]) -> bool:
        if authority is None:
            return self.entity_type is None and self.entity_id is None
        return self.entity_type == authority.type and self.entity_id == authority.id


@dataclass
class AssignedRole:
    """Assignment of a role to an authority."""
    id: int
    role_id: int
    entity_type: str
    entity_id: int
    scope: Optional[str] = None


class AbilityCheckRequest(BaseModel):
    """Request model for an ability check."""
    authority_type: str = Field("user", description="Authority morph type")
    authority_id: int = Field(..., description="Authority ID")
    ability: str = Field(..., min_length=1, description="Ability name")
    target_type: Optional[str] = Field(None, description="Target type, or * for any")
    target_id: Optional[int] = Field(None, description="Target ID")


class AbilityCheckResponse(BaseModel):
    """Response model for an ability check."""
    allowed: bool = Field(..., description="Whether the ability is allowed")
    decision: str = Field(..., description="allow, deny or unknown")
    ability_id: Optional[int] = Field(None, description="Matched ability ID when allowed")


class RefreshRequest(BaseModel):
    """Request model for a cache refresh; omit the authority to refresh everyone."""
    authority_type: Optional[str] = Field(None, description="Authority morph type")
    authority_id: Optional[int] = Field(None, description="Authority ID")


class CleanupRequest(BaseModel):
    """Request model for a cleanup run; no flags runs both passes."""
    orphaned: bool = Field(False, description="Delete orphaned abilities")
    missing: bool = Field(False, description="Delete abilities with missing models")


class CleanupResponse(BaseModel):
    """Response model for a cleanup run."""
    orphaned: Optional[int] = Field(None, description="Orphaned abilities deleted")
    missing: Optional[int] = Field(None, description="Abilities with missing models deleted")
    messages: List[str] = Field(default_factory=list)
    errors: Dict[str, str] = Field(default_factory=dict, description="Failure message per failed pass")
