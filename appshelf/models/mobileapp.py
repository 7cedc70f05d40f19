"""MobileApp records — join artifacts by label selector into one view."""

from __future__ import annotations

from typing import ClassVar

from pydantic import BaseModel, ConfigDict, Field

from appshelf.models.conditions import Condition
from appshelf.models.meta import LocalObjectReference, ObjectReference, Phase, Record


class UniversalLinks(BaseModel):
    """Where to publish the app-association documents.

    Delivery is provisioned only when ``host`` is set.
    """

    host: str = ""
    issuer: ObjectReference | None = None


class MobileAppSpec(BaseModel):
    selector: dict[str, str] = Field(default_factory=dict)
    universal_links: UniversalLinks = Field(default_factory=UniversalLinks)

    def matches(self, labels: dict[str, str]) -> bool:
        """Equality-based label selector; an empty selector matches nothing."""
        if not self.selector:
            return False
        return all(labels.get(k) == v for k, v in self.selector.items())


class AppProjection(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    bucket: LocalObjectReference
    key: str
    version: str = ""
    latest: bool = False


class MobileAppStatus(BaseModel):
    phase: Phase = Phase.PENDING
    conditions: list[Condition] = Field(default_factory=list)
    apks: list[AppProjection] = Field(default_factory=list)
    ipas: list[AppProjection] = Field(default_factory=list)
    asset_link_targets: dict[str, list[str]] = Field(default_factory=dict)
    bundle_identifiers: list[str] = Field(default_factory=list)


class MobileApp(Record):
    kind: ClassVar[str] = "MobileApp"

    spec: MobileAppSpec = Field(default_factory=MobileAppSpec)
    status: MobileAppStatus = Field(default_factory=MobileAppStatus)

    def references_issuer(self, kind: str, namespace: str, name: str) -> bool:
        issuer = self.spec.universal_links.issuer
        if issuer is None or issuer.kind != kind or issuer.name != name:
            return False
        # Cluster-scoped issuers match regardless of namespace.
        if kind == "ClusterIssuer":
            return True
        return (issuer.namespace or self.metadata.namespace) == namespace
