"""Artifact reconcilers — one per package kind, sharing the content pipeline."""

from __future__ import annotations

import logging
import posixpath
import threading
from collections.abc import Callable

from appshelf.config import Settings
from appshelf.controllers.common import (
    FINALIZER,
    get_bucket,
    status_snapshot,
)
from appshelf.controllers.pipeline import ContentPipeline, DecoderCapability
from appshelf.core.errors import NotFoundError, TransientStorageError, ValidationFailure
from appshelf.core.events import EventRecorder
from appshelf.core.gateway import resolve_store
from appshelf.core.manager import KeyMapper, Result
from appshelf.core.record_store import RecordStore, remove_finalizer
from appshelf.core.storage import Store, open_store
from appshelf.decoders.android import AndroidDecoder
from appshelf.decoders.apple import AppleDecoder
from appshelf.decoders.base import DecodedPackage, Decoder
from appshelf.models.artifacts import (
    ARTIFACT_TYPES,
    AndroidStatus,
    AppleStatus,
    ArtifactKind,
    ArtifactStatus,
)
from appshelf.models.meta import ObjectKey, Phase, Record

logger = logging.getLogger(__name__)

REASON_INVALID_KEY = "InvalidKey"


def apply_android(status: ArtifactStatus, decoded: DecodedPackage) -> None:
    if not isinstance(status, AndroidStatus):
        raise TypeError(f"expected AndroidStatus, got {type(status).__name__}")
    status.version = decoded.version
    status.package = decoded.package
    status.sha256_cert_fingerprints = decoded.sha256_cert_fingerprints


def apply_apple(status: ArtifactStatus, decoded: DecodedPackage) -> None:
    if not isinstance(status, AppleStatus):
        raise TypeError(f"expected AppleStatus, got {type(status).__name__}")
    status.version = decoded.version
    status.bundle_name = decoded.bundle_name
    status.bundle_identifier = decoded.bundle_identifier


class ArtifactReconciler:
    """Reconciles one artifact kind.

    Parameters
    ----------
    records:
        Record store.
    recorder:
        Event journal.
    settings:
        Runtime settings.
    capability:
        Decoder and metadata mapping for the kind.
    opener:
        Turns a bucket URL into a store; ``open_store`` by default.
    """

    def __init__(
        self,
        records: RecordStore,
        recorder: EventRecorder,
        settings: Settings,
        capability: DecoderCapability,
        opener: Callable[[str], Store] = open_store,
    ) -> None:
        self._records = records
        self._recorder = recorder
        self._settings = settings
        self._opener = opener
        self.kind = capability.kind
        self.record_type = ARTIFACT_TYPES[capability.kind]
        self.name = f"{capability.kind.value.lower()}-artifact"
        self.pipeline = ContentPipeline(records, recorder, settings, capability)

    def watches(self) -> list[tuple[str, KeyMapper]]:
        return [("Bucket", self._artifacts_for_bucket)]

    def _artifacts_for_bucket(self, bucket: Record) -> list[ObjectKey]:
        return [
            a.key
            for a in self._records.list(self.record_type, namespace=bucket.metadata.namespace)
            if a.spec.bucket.name == bucket.metadata.name
        ]

    def validate(self, record: Record) -> None:
        key = record.spec.key  # type: ignore[attr-defined]
        ext = posixpath.splitext(key)[1].lower()
        if ext != self.kind.extension:
            raise ValidationFailure(
                f"key {key!r} does not have the {self.kind.extension} extension of a {self.kind.value}"
            )

    def reconcile(self, key: ObjectKey, cancel: threading.Event) -> Result:
        try:
            record = self._records.get(self.record_type, key)
        except NotFoundError:
            return Result()
        snapshot = status_snapshot(record)

        if not record.deletion_requested:
            try:
                self.validate(record)
            except ValidationFailure as exc:
                self.pipeline.fail(
                    record, self.kind.get_condition, REASON_INVALID_KEY, str(exc), snapshot
                )
                return Result()

        bucket = get_bucket(self._records, key.namespace, record.spec.bucket.name)
        if bucket is None:
            if record.deletion_requested and record.has_finalizer(FINALIZER):
                self._recorder.warning(
                    record,
                    "BucketNotFound",
                    f"bucket {record.spec.bucket.name} is gone; releasing finalizer "
                    "without deleting icons",
                )
                remove_finalizer(self._records, record, FINALIZER)
            return Result()
        if bucket.status.phase is not Phase.READY:
            logger.debug("%s %s: bucket %s not ready", record.kind, key, bucket.key)
            return Result()

        try:
            store = resolve_store(bucket, self._records, self._opener)
        except Exception as exc:
            raise TransientStorageError(f"bucket {bucket.key}: {exc}") from exc

        if record.deletion_requested:
            if self.pipeline.finalize(record, store):
                return Result()
            return Result(requeue_after=self._settings.resync_seconds)

        self.pipeline.run(record, store, cancel, snapshot)
        return Result(requeue_after=self._settings.resync_seconds)


def android_reconciler(
    records: RecordStore,
    recorder: EventRecorder,
    settings: Settings,
    decoder: Decoder | None = None,
    opener: Callable[[str], Store] = open_store,
) -> ArtifactReconciler:
    decoder = decoder or AndroidDecoder(
        apktool=settings.apktool_path,
        keytool=settings.keytool_path,
        timeout=settings.decoder_timeout_seconds,
        scratch_dir=settings.scratch_dir,
    )
    capability = DecoderCapability(kind=ArtifactKind.APK, decoder=decoder, apply=apply_android)
    return ArtifactReconciler(records, recorder, settings, capability, opener)


def apple_reconciler(
    records: RecordStore,
    recorder: EventRecorder,
    settings: Settings,
    decoder: Decoder | None = None,
    opener: Callable[[str], Store] = open_store,
) -> ArtifactReconciler:
    capability = DecoderCapability(
        kind=ArtifactKind.IPA, decoder=decoder or AppleDecoder(), apply=apply_apple
    )
    return ArtifactReconciler(records, recorder, settings, capability, opener)
