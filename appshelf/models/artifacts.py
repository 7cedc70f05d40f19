"""Binary artifact records — one record per Android or Apple package."""

from __future__ import annotations

from enum import Enum
from typing import ClassVar, Union

from pydantic import BaseModel, ConfigDict, Field

from appshelf.models.conditions import Condition
from appshelf.models.meta import LocalObjectReference, Phase, Record

CONTENT_TYPE_APK = "application/vnd.android.package-archive"
CONTENT_TYPE_IPA = "application/octet-stream"
CONTENT_TYPE_PNG = "image/png"


class ArtifactKind(str, Enum):
    """The closed set of package kinds."""

    APK = "APK"
    IPA = "IPA"

    @property
    def extension(self) -> str:
        return f".{self.value.lower()}"

    @property
    def content_type(self) -> str:
        return CONTENT_TYPE_APK if self is ArtifactKind.APK else CONTENT_TYPE_IPA

    @property
    def get_condition(self) -> str:
        return f"Get{self.value}"

    @property
    def unpack_condition(self) -> str:
        return f"Unpack{self.value}"


class IconEntry(BaseModel):
    """A published icon derivative.

    ``override`` entries point at images supplied through ``spec.images``;
    they belong to whoever supplied them and are never deleted on
    finalization.
    """

    model_config = ConfigDict(frozen=True)

    key: str
    size: int
    display: bool = False
    full_size: bool = False
    override: bool = False


class IconOverrides(BaseModel):
    """Pre-supplied icon keys that win over best-fit selection."""

    model_config = ConfigDict(frozen=True)

    display: str = ""
    full_size: str = ""


class ArtifactSpec(BaseModel):
    bucket: LocalObjectReference
    key: str
    images: IconOverrides = Field(default_factory=IconOverrides)


class ArtifactStatus(BaseModel):
    phase: Phase = Phase.PENDING
    conditions: list[Condition] = Field(default_factory=list)
    digest: str = ""
    version: str = ""
    icons: list[IconEntry] = Field(default_factory=list)


class AndroidStatus(ArtifactStatus):
    package: str = ""
    sha256_cert_fingerprints: str = ""


class AppleStatus(ArtifactStatus):
    bundle_name: str = ""
    bundle_identifier: str = ""


class AndroidPackage(Record):
    kind: ClassVar[str] = ArtifactKind.APK.value
    artifact_kind: ClassVar[ArtifactKind] = ArtifactKind.APK

    spec: ArtifactSpec
    status: AndroidStatus = Field(default_factory=AndroidStatus)


class ApplePackage(Record):
    kind: ClassVar[str] = ArtifactKind.IPA.value
    artifact_kind: ClassVar[ArtifactKind] = ArtifactKind.IPA

    spec: ArtifactSpec
    status: AppleStatus = Field(default_factory=AppleStatus)


Artifact = Union[AndroidPackage, ApplePackage]

ARTIFACT_TYPES: dict[ArtifactKind, type[AndroidPackage] | type[ApplePackage]] = {
    ArtifactKind.APK: AndroidPackage,
    ArtifactKind.IPA: ApplePackage,
}
