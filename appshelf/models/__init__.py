"""appshelf data models — all Pydantic v2.

Value objects are frozen; records are mutable copies owned by whoever
fetched them from the record store.
"""

from appshelf.models.artifacts import (
    ARTIFACT_TYPES,
    AndroidPackage,
    AndroidStatus,
    ApplePackage,
    AppleStatus,
    Artifact,
    ArtifactKind,
    ArtifactSpec,
    IconEntry,
    IconOverrides,
)
from appshelf.models.bucket import (
    Bucket,
    BucketSpec,
    ConfigMap,
    KeySelector,
    Secret,
    URLSource,
)
from appshelf.models.conditions import Condition, get_condition, set_condition
from appshelf.models.manifest import ClusterIssuer, Issuer, Manifest
from appshelf.models.meta import (
    LocalObjectReference,
    ObjectKey,
    ObjectMeta,
    ObjectReference,
    OwnerReference,
    Phase,
    Record,
)
from appshelf.models.mobileapp import (
    AppProjection,
    MobileApp,
    MobileAppSpec,
    UniversalLinks,
)
from appshelf.models.upload import Upload, UploadSpec

# Every record kind the record store and manifest loader understand.
RECORD_TYPES: dict[str, type[Record]] = {
    cls.kind: cls
    for cls in (
        Bucket,
        Secret,
        ConfigMap,
        AndroidPackage,
        ApplePackage,
        MobileApp,
        Upload,
        Manifest,
        Issuer,
        ClusterIssuer,
    )
}

__all__ = [
    # meta
    "Phase",
    "ObjectKey",
    "ObjectMeta",
    "ObjectReference",
    "OwnerReference",
    "LocalObjectReference",
    "Record",
    # conditions
    "Condition",
    "get_condition",
    "set_condition",
    # bucket
    "Bucket",
    "BucketSpec",
    "URLSource",
    "KeySelector",
    "Secret",
    "ConfigMap",
    # artifacts
    "ArtifactKind",
    "Artifact",
    "ArtifactSpec",
    "AndroidPackage",
    "AndroidStatus",
    "ApplePackage",
    "AppleStatus",
    "IconEntry",
    "IconOverrides",
    "ARTIFACT_TYPES",
    # mobileapp
    "MobileApp",
    "MobileAppSpec",
    "UniversalLinks",
    "AppProjection",
    # upload
    "Upload",
    "UploadSpec",
    # manifests
    "Manifest",
    "Issuer",
    "ClusterIssuer",
    "RECORD_TYPES",
]
