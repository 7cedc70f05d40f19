"""Bucket records and the credential sources they may reference."""

from __future__ import annotations

from typing import ClassVar

from pydantic import BaseModel, ConfigDict, Field

from appshelf.models.conditions import Condition
from appshelf.models.meta import Phase, Record


class KeySelector(BaseModel):
    """Selects one field of a Secret or ConfigMap."""

    model_config = ConfigDict(frozen=True)

    name: str
    key: str


class URLSource(BaseModel):
    """Indirect source of a bucket connection string.

    Exactly one of ``secret_key_ref`` / ``config_map_key_ref`` must be set.
    """

    model_config = ConfigDict(frozen=True)

    secret_key_ref: KeySelector | None = None
    config_map_key_ref: KeySelector | None = None


class BucketSpec(BaseModel):
    url: str = ""
    url_from: URLSource | None = None


class BucketStatus(BaseModel):
    phase: Phase = Phase.PENDING
    conditions: list[Condition] = Field(default_factory=list)


class Bucket(Record):
    """Describes how to open an object store."""

    kind: ClassVar[str] = "Bucket"

    spec: BucketSpec = Field(default_factory=BucketSpec)
    status: BucketStatus = Field(default_factory=BucketStatus)

    def references_secret(self, name: str) -> bool:
        src = self.spec.url_from
        return bool(src and src.secret_key_ref and src.secret_key_ref.name == name)

    def references_config_map(self, name: str) -> bool:
        src = self.spec.url_from
        return bool(
            src and src.config_map_key_ref and src.config_map_key_ref.name == name
        )


class Secret(Record):
    kind: ClassVar[str] = "Secret"

    data: dict[str, bytes] = Field(default_factory=dict)


class ConfigMap(Record):
    kind: ClassVar[str] = "ConfigMap"

    data: dict[str, str] = Field(default_factory=dict)
