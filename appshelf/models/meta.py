"""Record metadata shared by every declarative record kind."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import ClassVar

from pydantic import BaseModel, ConfigDict, Field


class Phase(str, Enum):
    """Coarse lifecycle summary of a record."""

    PENDING = "Pending"
    READY = "Ready"
    FAILED = "Failed"


class ObjectKey(BaseModel):
    """Identity of a record within its kind."""

    model_config = ConfigDict(frozen=True)

    namespace: str
    name: str

    def __str__(self) -> str:
        return f"{self.namespace}/{self.name}"


class LocalObjectReference(BaseModel):
    """Reference to a record in the same namespace."""

    model_config = ConfigDict(frozen=True)

    name: str


class ObjectReference(BaseModel):
    """Reference to a record of an explicit kind."""

    model_config = ConfigDict(frozen=True)

    kind: str
    name: str
    namespace: str = ""  # empty -> same namespace as the referrer


class OwnerReference(BaseModel):
    """Marks a record as owned by another; owned records are garbage
    collected when their owner is deleted."""

    model_config = ConfigDict(frozen=True)

    kind: str
    name: str
    controller: bool = True


class ObjectMeta(BaseModel):
    namespace: str = "default"
    name: str
    labels: dict[str, str] = Field(default_factory=dict)
    annotations: dict[str, str] = Field(default_factory=dict)
    finalizers: list[str] = Field(default_factory=list)
    owner_references: list[OwnerReference] = Field(default_factory=list)
    generation: int = 0
    resource_version: int = 0
    creation_timestamp: datetime | None = None
    deletion_timestamp: datetime | None = None


class Record(BaseModel):
    """Base class for declarative records.

    Subclasses set ``kind`` and usually declare ``spec`` and ``status``.
    Records are mutable: a reconciler edits a private copy handed out by the
    record store and persists it with an optimistic-concurrency write.
    """

    kind: ClassVar[str] = ""

    metadata: ObjectMeta

    @property
    def key(self) -> ObjectKey:
        return ObjectKey(namespace=self.metadata.namespace, name=self.metadata.name)

    @property
    def deletion_requested(self) -> bool:
        return self.metadata.deletion_timestamp is not None

    def has_finalizer(self, token: str) -> bool:
        return token in self.metadata.finalizers

    def owned_by(self, owner: Record) -> bool:
        return any(
            ref.kind == owner.kind and ref.name == owner.metadata.name
            for ref in self.metadata.owner_references
        )

    def set_controller_reference(self, owner: Record) -> None:
        """Make ``owner`` the controlling owner of this record."""
        refs = [r for r in self.metadata.owner_references if not r.controller]
        refs.append(OwnerReference(kind=owner.kind, name=owner.metadata.name))
        self.metadata.owner_references = refs


def utcnow() -> datetime:
    return datetime.now(timezone.utc)
