"""
Entity Ownership and Access Collaborators

Every book belongs to an economic entity: the platform operator (ADMIN) or
one vendor. Who may touch which books is decided outside the ledger core by
an EntityAccessPolicy that the caller must supply.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional

from .errors import AccessDeniedError, ValidationError


class EntityType(Enum):
    """Owner of a set of books"""
    ADMIN = "ADMIN"
    VENDOR = "VENDOR"


@dataclass(frozen=True)
class EntityRef:
    """Identifies one set of books: (entity_type, entity_id)"""
    entity_type: EntityType
    entity_id: Optional[str] = None

    def __post_init__(self):
        if self.entity_type == EntityType.VENDOR and not self.entity_id:
            raise ValidationError("Vendor entity requires an entity_id")
        if self.entity_type == EntityType.ADMIN and self.entity_id is not None:
            raise ValidationError("Admin entity cannot carry an entity_id")

    @classmethod
    def admin(cls) -> "EntityRef":
        return cls(EntityType.ADMIN)

    @classmethod
    def vendor(cls, vendor_id: str) -> "EntityRef":
        return cls(EntityType.VENDOR, vendor_id)

    @property
    def is_admin(self) -> bool:
        return self.entity_type == EntityType.ADMIN

    def filters(self) -> Dict[str, Any]:
        """Storage filters selecting rows owned by this entity"""
        return {"entity_type": self.entity_type.value, "entity_id": self.entity_id}

    def __str__(self) -> str:
        if self.entity_id:
            return f"{self.entity_type.value}:{self.entity_id}"
        return self.entity_type.value


class EntityAccessPolicy(ABC):
    """Authorization collaborator consulted before every mutating operation"""

    @abstractmethod
    def validate_entity_access(
        self,
        entity_type: EntityType,
        entity_id: Optional[str],
        actor_id: str
    ) -> bool:
        """Return True if actor_id may mutate the books of the entity"""

    def ensure_access(self, entity: EntityRef, actor_id: str) -> None:
        if not self.validate_entity_access(entity.entity_type, entity.entity_id, actor_id):
            raise AccessDeniedError(
                f"Actor {actor_id} may not modify books of {entity}",
                details={"entity": str(entity), "actor": actor_id},
            )


@dataclass(frozen=True)
class ActorProfile:
    display_name: str
    role: str


class ActorDirectory(ABC):
    """Optional identity collaborator used to enrich audit entries"""

    @abstractmethod
    def describe(self, actor_id: str) -> Optional[ActorProfile]:
        """Return display name and role of an actor, or None if unknown"""
