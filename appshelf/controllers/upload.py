"""Upload reconciler — explodes a stored bundle into artifact records.

A bundle is a gzip-compressed tar holding at most one ``.apk`` and one
``.ipa`` plus optional ``*display*.png`` / ``*full*.png`` icon overrides.
Each binary is copied next to the bundle under ``<upload-name>/`` and
described by a child artifact owned by the Upload.
"""

from __future__ import annotations

import io
import logging
import posixpath
import tarfile
import threading
import zlib
from collections.abc import Callable
from typing import IO

from PIL import Image

from appshelf.config import Settings
from appshelf.controllers.common import get_bucket, save_status, status_snapshot
from appshelf.controllers.icons import IMAGE_ERRORS, encode_png
from appshelf.core.errors import NotFoundError, TransientStorageError
from appshelf.core.gateway import resolve_store
from appshelf.core.hasher import DigestingCopier, SinkWriteError, SourceReadError
from appshelf.core.manager import KeyMapper, Result
from appshelf.core.record_store import RecordStore, create_or_patch
from appshelf.core.storage import Store, StorageError, open_store
from appshelf.models.artifacts import (
    ARTIFACT_TYPES,
    CONTENT_TYPE_PNG,
    ArtifactKind,
    ArtifactSpec,
    IconOverrides,
)
from appshelf.models.conditions import get_condition, set_condition
from appshelf.models.meta import ObjectKey, ObjectMeta, Phase, Record
from appshelf.models.upload import Upload

logger = logging.getLogger(__name__)

CONDITION_INGESTED = "Ingested"
REASON_INGESTED = "Ingested"
REASON_READ_BUNDLE = "ReadBundle"
REASON_WRITE_OBJECT = "WriteObject"
REASON_DECODE_IMAGE = "DecodeImage"


class IngestError(RuntimeError):
    def __init__(self, reason: str, message: str) -> None:
        super().__init__(message)
        self.reason = reason


def child_name(upload: Upload, kind: ArtifactKind) -> str:
    return f"{upload.metadata.name}-{kind.value.lower()}"


def bundle_key(upload: Upload, base: str) -> str:
    """``<dirname(spec.key)>/<upload-name>/<base>``."""
    return posixpath.join(posixpath.dirname(upload.spec.key), upload.metadata.name, base)


def classify(member_name: str) -> tuple[str, str] | None:
    """Return ``(role, base)`` for an interesting bundle entry, else None.

    Roles: ``apk``, ``ipa``, ``full_size``, ``display``.
    """
    base = posixpath.basename(member_name).lower()
    if not base or base.startswith("."):
        return None
    if any(part.startswith("._") for part in member_name.split("/")):
        return None
    ext = posixpath.splitext(base)[1]
    if ext == ".apk":
        return "apk", base
    if ext == ".ipa":
        return "ipa", base
    if ext == ".png":
        if "full" in base:
            return "full_size", base
        if "display" in base:
            return "display", base
    return None


class UploadReconciler:
    name = "upload"
    record_type = Upload

    def __init__(
        self,
        records: RecordStore,
        settings: Settings,
        opener: Callable[[str], Store] = open_store,
    ) -> None:
        self._records = records
        self._settings = settings
        self._opener = opener

    def watches(self) -> list[tuple[str, KeyMapper]]:
        return [("Bucket", self._uploads_for_bucket)]

    def _uploads_for_bucket(self, bucket: Record) -> list[ObjectKey]:
        return [
            u.key
            for u in self._records.list(Upload, namespace=bucket.metadata.namespace)
            if u.spec.bucket.name == bucket.metadata.name
        ]

    def reconcile(self, key: ObjectKey, cancel: threading.Event) -> Result:
        try:
            upload = self._records.get(Upload, key)
        except NotFoundError:
            return Result()
        if upload.deletion_requested:
            return Result()

        # Already ingested this generation of the spec.
        ingested = get_condition(upload, CONDITION_INGESTED)
        if (
            upload.status.phase is Phase.READY
            and ingested is not None
            and ingested.status
            and ingested.observed_generation == upload.metadata.generation
        ):
            return Result()

        snapshot = status_snapshot(upload)
        bucket = get_bucket(self._records, key.namespace, upload.spec.bucket.name)
        if bucket is None or bucket.status.phase is not Phase.READY:
            return Result()
        try:
            store = resolve_store(bucket, self._records, self._opener)
        except Exception as exc:
            raise TransientStorageError(f"bucket {bucket.key}: {exc}") from exc

        try:
            binaries, overrides = self._ingest(upload, store, cancel)
        except IngestError as exc:
            logger.warning("upload %s: %s: %s", key, exc.reason, exc)
            upload.status.phase = Phase.FAILED
            set_condition(upload, CONDITION_INGESTED, False, exc.reason, str(exc))
            save_status(self._records, upload, snapshot)
            return Result()

        children = []
        for kind, object_key in binaries.items():
            children.append(self._ensure_child(upload, kind, object_key, overrides))

        upload.status.artifacts = sorted(children)
        upload.status.phase = Phase.READY
        set_condition(
            upload,
            CONDITION_INGESTED,
            True,
            REASON_INGESTED,
            f"{len(children)} artifacts, "
            f"{bool(overrides.display) + bool(overrides.full_size)} icon overrides",
        )
        save_status(self._records, upload, snapshot)
        return Result()

    def _ingest(
        self, upload: Upload, store: Store, cancel: threading.Event
    ) -> tuple[dict[ArtifactKind, str], IconOverrides]:
        """Stream the bundle once, publishing binaries and override images."""
        binaries: dict[ArtifactKind, str] = {}
        images: dict[str, str] = {}

        try:
            source = store.open_reader(upload.spec.key)
        except StorageError as exc:
            raise IngestError(REASON_READ_BUNDLE, str(exc)) from exc

        with source:
            try:
                with tarfile.open(fileobj=source, mode="r|gz") as bundle:
                    for member in bundle:
                        if not member.isfile():
                            continue
                        classified = classify(member.name)
                        if classified is None:
                            continue
                        role, base = classified
                        target = bundle_key(upload, base)
                        fh = bundle.extractfile(member)
                        if fh is None:
                            raise IngestError(REASON_READ_BUNDLE, f"cannot extract {member.name}")

                        if role in ("apk", "ipa"):
                            kind = ArtifactKind(role.upper())
                            self._copy_binary(store, target, kind, fh, cancel)
                            binaries[kind] = target
                        else:
                            self._publish_image(store, target, fh)
                            images[role] = target
            except (tarfile.TarError, zlib.error, EOFError, OSError) as exc:
                raise IngestError(REASON_READ_BUNDLE, f"cannot read bundle: {exc}") from exc

        return binaries, IconOverrides(**images)

    def _copy_binary(
        self,
        store: Store,
        target: str,
        kind: ArtifactKind,
        fh: IO[bytes],
        cancel: threading.Event,
    ) -> None:
        copier = DigestingCopier(chunk_size=self._settings.copy_chunk_bytes, cancel=cancel)
        try:
            with store.open_writer(target, kind.content_type) as out:
                copier.copy(fh, out)
        except SourceReadError as exc:
            raise IngestError(REASON_READ_BUNDLE, str(exc)) from exc
        except (SinkWriteError, StorageError) as exc:
            raise IngestError(REASON_WRITE_OBJECT, f"{target}: {exc}") from exc
        logger.info("published %s (%d bytes, %s)", target, copier.bytes_copied, copier.digest)

    def _publish_image(self, store: Store, target: str, fh: IO[bytes]) -> None:
        raw = fh.read()
        try:
            with Image.open(io.BytesIO(raw)) as image:
                image.load()
                data = encode_png(image)
        except IMAGE_ERRORS as exc:
            raise IngestError(REASON_DECODE_IMAGE, f"{target}: {exc}") from exc
        try:
            with store.open_writer(target, CONTENT_TYPE_PNG) as out:
                out.write(data)
        except (StorageError, OSError) as exc:
            raise IngestError(REASON_WRITE_OBJECT, f"{target}: {exc}") from exc

    def _ensure_child(
        self, upload: Upload, kind: ArtifactKind, object_key: str, overrides: IconOverrides
    ) -> str:
        cls = ARTIFACT_TYPES[kind]
        name = child_name(upload, kind)
        spec = ArtifactSpec(bucket=upload.spec.bucket, key=object_key, images=overrides)
        child = cls(
            metadata=ObjectMeta(namespace=upload.metadata.namespace, name=name),
            spec=spec,
        )

        def mutate(existing: Record) -> None:
            existing.spec = spec.model_copy(deep=True)  # type: ignore[attr-defined]
            existing.metadata.labels.update(upload.metadata.labels)
            existing.set_controller_reference(upload)

        outcome = create_or_patch(self._records, child, mutate)
        logger.info("upload %s: %s %s %s", upload.key, outcome, kind.value, name)
        return name
