"""Content pipeline shared by the artifact reconcilers.

download -> digest -> gate on unchanged -> decode -> publish icons -> status

Every failure is reported as a condition whose reason names the step that
failed. A terminal failure sets phase ``Failed`` and leaves ``digest``
untouched, so the next resync tries the same content again.
"""

from __future__ import annotations

import logging
import os
import tempfile
import threading
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict

from appshelf.config import Settings
from appshelf.controllers.common import (
    FINALIZER,
    FORCE_UNPACK_ANNOTATION,
    save_status,
)
from appshelf.controllers.icons import (
    PublishError,
    assign_roles,
    override_entries,
    publish_icons,
)
from appshelf.core.events import EventRecorder
from appshelf.core.hasher import DigestingCopier, SinkWriteError, SourceReadError
from appshelf.core.record_store import RecordStore, add_finalizer, remove_finalizer
from appshelf.core.storage import ObjectNotFoundError, StorageError, Store
from appshelf.decoders.base import DecodedPackage, DecodeError, Decoder
from appshelf.models.artifacts import ArtifactKind, ArtifactStatus
from appshelf.models.conditions import set_condition
from appshelf.models.meta import Phase, Record

logger = logging.getLogger(__name__)

# Condition reasons for the download step.
REASON_READ_OBJECT = "ReadObject"
REASON_CREATE_TEMP = "CreateTemp"
REASON_WRITE_TEMP = "WriteTemp"
REASON_CLOSE_OBJECT = "CloseObject"
REASON_SUM_TEMP = "SumTemp"
REASON_CLOSE_TEMP = "CloseTemp"
REASON_DOWNLOADED = "Downloaded"
REASON_UNPACKED = "Unpacked"


class DownloadError(RuntimeError):
    """Fetching the package into scratch space failed at ``reason``."""

    def __init__(self, reason: str, message: str) -> None:
        super().__init__(message)
        self.reason = reason


class DecoderCapability(BaseModel):
    """What the pipeline needs to know about one package kind."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    kind: ArtifactKind
    decoder: Any  # Decoder
    apply: Callable[[ArtifactStatus, DecodedPackage], None]


@contextmanager
def download(
    store: Store,
    key: str,
    suffix: str,
    scratch_dir: Path | None,
    chunk_size: int,
    cancel: threading.Event,
) -> Iterator[tuple[Path, str]]:
    """Copy ``key`` to a scratch file, hashing on the way.

    Yields ``(path, digest)``. The scratch file is removed on exit.
    """
    try:
        source = store.open_reader(key)
    except StorageError as exc:
        raise DownloadError(REASON_READ_OBJECT, str(exc)) from exc

    try:
        fd, name = tempfile.mkstemp(suffix=suffix, dir=scratch_dir)
    except OSError as exc:
        source.close()
        raise DownloadError(REASON_CREATE_TEMP, str(exc)) from exc

    path = Path(name)
    try:
        sink = os.fdopen(fd, "wb")
        copier = DigestingCopier(chunk_size=chunk_size, cancel=cancel)
        try:
            try:
                digest = copier.copy(source, sink)
            except SourceReadError as exc:
                source.close()
                raise DownloadError(REASON_READ_OBJECT, str(exc)) from exc
            except SinkWriteError as exc:
                source.close()
                raise DownloadError(REASON_WRITE_TEMP, str(exc)) from exc
            except BaseException:
                source.close()
                raise

            try:
                source.close()
            except OSError as exc:
                raise DownloadError(REASON_CLOSE_OBJECT, str(exc)) from exc

            try:
                sink.flush()
                written = os.fstat(sink.fileno()).st_size
            except OSError as exc:
                raise DownloadError(REASON_SUM_TEMP, str(exc)) from exc
            if written != copier.bytes_copied:
                raise DownloadError(
                    REASON_SUM_TEMP,
                    f"scratch file holds {written} bytes, hashed {copier.bytes_copied}",
                )
        finally:
            if not sink.closed:
                try:
                    sink.close()
                except OSError as exc:
                    raise DownloadError(REASON_CLOSE_TEMP, str(exc)) from exc

        yield path, digest
    finally:
        path.unlink(missing_ok=True)


class ContentPipeline:
    """Drives one artifact record from stored bytes to a Ready status.

    Parameters
    ----------
    records:
        Record store used to persist status and finalizers.
    recorder:
        Event journal for skipped images and failed deletions.
    settings:
        Scratch location, chunk size and icon target sizes.
    capability:
        Kind-specific decoder and metadata mapping.
    """

    def __init__(
        self,
        records: RecordStore,
        recorder: EventRecorder,
        settings: Settings,
        capability: DecoderCapability,
    ) -> None:
        self._records = records
        self._recorder = recorder
        self._settings = settings
        self._capability = capability

    @property
    def kind(self) -> ArtifactKind:
        return self._capability.kind

    def fail(self, record: Record, condition_type: str, reason: str, message: str, snapshot: dict) -> None:
        """Mark the record terminally failed and persist."""
        logger.warning("%s %s: %s/%s: %s", record.kind, record.key, condition_type, reason, message)
        record.status.phase = Phase.FAILED  # type: ignore[attr-defined]
        set_condition(record, condition_type, False, reason, message)
        save_status(self._records, record, snapshot)

    # ------------------------------------------------------------------
    # Forward path
    # ------------------------------------------------------------------

    def run(self, record: Record, store: Store, cancel: threading.Event, snapshot: dict) -> None:
        kind = self.kind
        status: ArtifactStatus = record.status  # type: ignore[attr-defined]
        force = record.metadata.annotations.get(FORCE_UNPACK_ANNOTATION) == "true"

        try:
            with download(
                store,
                record.spec.key,  # type: ignore[attr-defined]
                kind.extension,
                self._settings.scratch_dir,
                self._settings.copy_chunk_bytes,
                cancel,
            ) as (path, digest):
                set_condition(record, kind.get_condition, True, REASON_DOWNLOADED)

                if digest == status.digest and not force:
                    status.phase = Phase.READY
                    save_status(self._records, record, snapshot)
                    return

                status.phase = Phase.PENDING
                self._unpack(record, store, path, digest, cancel, snapshot)
        except DownloadError as exc:
            self.fail(record, kind.get_condition, exc.reason, str(exc), snapshot)
            return

        if force and status.phase is Phase.READY:
            record.metadata.annotations.pop(FORCE_UNPACK_ANNOTATION, None)
            self._records.update(record)

    def _unpack(
        self,
        record: Record,
        store: Store,
        path: Path,
        digest: str,
        cancel: threading.Event,
        snapshot: dict,
    ) -> None:
        kind = self.kind
        status: ArtifactStatus = record.status  # type: ignore[attr-defined]
        decoder: Decoder = self._capability.decoder

        try:
            with decoder.decode(path, cancel) as decoded:
                self._capability.apply(status, decoded)
                save_status(self._records, record, snapshot)
                add_finalizer(self._records, record, FINALIZER)

                try:
                    published = publish_icons(
                        decoded.icons, store, record, record.spec.key, self._recorder  # type: ignore[attr-defined]
                    )
                except PublishError as exc:
                    # Track what was written so finalization can delete it.
                    known = {e.key for e in status.icons}
                    status.icons = status.icons + [e for e in exc.published if e.key not in known]
                    self.fail(record, kind.unpack_condition, exc.reason, str(exc), snapshot)
                    return
        except DecodeError as exc:
            self.fail(record, kind.unpack_condition, exc.step, str(exc), snapshot)
            return

        overrides = record.spec.images  # type: ignore[attr-defined]
        icons = assign_roles(
            published,
            self._settings.display_icon_px,
            self._settings.full_size_icon_px,
            skip_display=bool(overrides.display),
            skip_full_size=bool(overrides.full_size),
        )
        icons.extend(override_entries(overrides, store, record, self._recorder))

        self._prune_icons(record, store, {e.key for e in icons})
        status.icons = icons
        status.digest = digest
        status.phase = Phase.READY
        set_condition(record, kind.unpack_condition, True, REASON_UNPACKED)
        save_status(self._records, record, snapshot)
        logger.info("%s %s unpacked %s (%d icons)", record.kind, record.key, digest, len(icons))

    def _prune_icons(self, record: Record, store: Store, keep: set[str]) -> None:
        """Delete derivatives of previous content that are no longer produced."""
        for entry in record.status.icons:  # type: ignore[attr-defined]
            if entry.override or entry.key in keep:
                continue
            try:
                store.delete(entry.key)
            except ObjectNotFoundError:
                continue
            except StorageError as exc:
                self._recorder.warning(record, "DeleteObject", f"{entry.key}: {exc}")

    # ------------------------------------------------------------------
    # Deletion path
    # ------------------------------------------------------------------

    def finalize(self, record: Record, store: Store) -> bool:
        """Delete published icons, then release the finalizer.

        Returns False when a delete failed and the finalizer was kept.
        """
        if not record.has_finalizer(FINALIZER):
            return True
        for entry in record.status.icons:  # type: ignore[attr-defined]
            if entry.override:
                continue
            try:
                store.delete(entry.key)
            except ObjectNotFoundError:
                continue
            except StorageError as exc:
                self._recorder.warning(record, "DeleteObject", f"{entry.key}: {exc}")
                return False
        remove_finalizer(self._records, record, FINALIZER)
        logger.info("%s %s finalized", record.kind, record.key)
        return True
