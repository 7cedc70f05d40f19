"""Declarative record store — get/list/create/update with optimistic
concurrency, finalizers, owner-reference garbage collection and a watch
stream.

``RecordStore`` is the contract the reconcilers depend on.
``InMemoryRecordStore`` is the in-process implementation used by the CLI
and the test-suite.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Iterable
from enum import Enum
from typing import Protocol, TypeVar

from pydantic import BaseModel, ConfigDict

from appshelf.core.errors import AlreadyExistsError, ConflictError, NotFoundError
from appshelf.models.meta import ObjectKey, Record, utcnow

logger = logging.getLogger(__name__)

R = TypeVar("R", bound=Record)


class EventType(str, Enum):
    ADDED = "added"
    MODIFIED = "modified"
    DELETED = "deleted"


class WatchEvent(BaseModel):
    """A change observed on one record. ``record`` is a private copy."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    type: EventType
    record: Record


WatchHandler = Callable[[WatchEvent], None]


class RecordStore(Protocol):
    def get(self, cls: type[R], key: ObjectKey) -> R: ...

    def list(
        self,
        cls: type[R],
        namespace: str | None = None,
        selector: dict[str, str] | None = None,
    ) -> list[R]: ...

    def create(self, record: Record) -> None: ...

    def update(self, record: Record) -> None: ...

    def update_status(self, record: Record) -> None: ...

    def delete(self, cls: type[Record], key: ObjectKey) -> None: ...

    def watch(self, handler: WatchHandler) -> None: ...


def _spec_fields(record: Record) -> dict:
    return record.model_dump(exclude={"metadata", "status"})


def _labels_match(labels: dict[str, str], selector: dict[str, str]) -> bool:
    return all(labels.get(k) == v for k, v in selector.items())


class InMemoryRecordStore:
    """Thread-safe in-process record store.

    Semantics follow the usual declarative control plane:

    - ``resource_version`` increases on every write; a write carrying a stale
      version raises ``ConflictError``. On success the caller's copy gets
      the new version so it can be written again.
    - ``update`` never touches status; ``update_status`` touches only status.
    - ``generation`` increases when the spec portion of a record changes.
    - ``delete`` of a record with finalizers only stamps
      ``deletion_timestamp``; the record disappears once an update removes
      its last finalizer. Removal cascades to records it owns.
    - Watch handlers are called synchronously after the write, outside the
      store lock.
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._records: dict[str, dict[ObjectKey, Record]] = {}
        self._handlers: list[WatchHandler] = []

    # ------------------------------------------------------------------
    # Watch
    # ------------------------------------------------------------------

    def watch(self, handler: WatchHandler) -> None:
        """Subscribe to every subsequent change."""
        with self._lock:
            self._handlers.append(handler)

    def _emit(self, events: Iterable[WatchEvent]) -> None:
        handlers = list(self._handlers)
        for event in events:
            for handler in handlers:
                handler(event)

    # ------------------------------------------------------------------
    # Read
    # ------------------------------------------------------------------

    def _bucket(self, kind: str) -> dict[ObjectKey, Record]:
        return self._records.setdefault(kind, {})

    def get(self, cls: type[R], key: ObjectKey) -> R:
        with self._lock:
            stored = self._bucket(cls.kind).get(key)
            if stored is None:
                raise NotFoundError(f"{cls.kind} {key} not found")
            return stored.model_copy(deep=True)  # type: ignore[return-value]

    def list(
        self,
        cls: type[R],
        namespace: str | None = None,
        selector: dict[str, str] | None = None,
    ) -> list[R]:
        with self._lock:
            items = [
                r.model_copy(deep=True)
                for k, r in self._bucket(cls.kind).items()
                if (namespace is None or k.namespace == namespace)
                and (selector is None or _labels_match(r.metadata.labels, selector))
            ]
        items.sort(key=lambda r: (r.metadata.namespace, r.metadata.name))
        return items  # type: ignore[return-value]

    # ------------------------------------------------------------------
    # Write
    # ------------------------------------------------------------------

    def create(self, record: Record) -> None:
        with self._lock:
            bucket = self._bucket(record.kind)
            if record.key in bucket:
                raise AlreadyExistsError(f"{record.kind} {record.key} already exists")
            record.metadata.resource_version = 1
            record.metadata.generation = 1
            record.metadata.creation_timestamp = utcnow()
            record.metadata.deletion_timestamp = None
            stored = record.model_copy(deep=True)
            bucket[record.key] = stored
            events = [WatchEvent(type=EventType.ADDED, record=stored.model_copy(deep=True))]
        logger.debug("created %s %s", record.kind, record.key)
        self._emit(events)

    def _current(self, record: Record) -> Record:
        stored = self._bucket(record.kind).get(record.key)
        if stored is None:
            raise NotFoundError(f"{record.kind} {record.key} not found")
        if stored.metadata.resource_version != record.metadata.resource_version:
            raise ConflictError(
                f"{record.kind} {record.key}: resource version "
                f"{record.metadata.resource_version} is stale "
                f"(current {stored.metadata.resource_version})"
            )
        return stored

    def update(self, record: Record) -> None:
        """Write metadata and spec. Status in the store is preserved."""
        with self._lock:
            current = self._current(record)
            updated = record.model_copy(deep=True)
            if hasattr(current, "status"):
                updated.status = current.status.model_copy(deep=True)  # type: ignore[attr-defined]

            meta = updated.metadata
            meta.resource_version = current.metadata.resource_version + 1
            meta.generation = current.metadata.generation + (
                1 if _spec_fields(updated) != _spec_fields(current) else 0
            )
            meta.creation_timestamp = current.metadata.creation_timestamp
            meta.deletion_timestamp = current.metadata.deletion_timestamp

            record.metadata.resource_version = meta.resource_version
            record.metadata.generation = meta.generation

            if meta.deletion_timestamp is not None and not meta.finalizers:
                events = self._remove(updated)
            else:
                self._bucket(record.kind)[record.key] = updated
                events = [
                    WatchEvent(type=EventType.MODIFIED, record=updated.model_copy(deep=True))
                ]
        self._emit(events)

    def update_status(self, record: Record) -> None:
        """Write only the status subsection."""
        with self._lock:
            current = self._current(record)
            updated = current.model_copy(deep=True)
            updated.status = record.status.model_copy(deep=True)  # type: ignore[attr-defined]
            updated.metadata.resource_version = current.metadata.resource_version + 1
            record.metadata.resource_version = updated.metadata.resource_version
            self._bucket(record.kind)[record.key] = updated
            events = [WatchEvent(type=EventType.MODIFIED, record=updated.model_copy(deep=True))]
        self._emit(events)

    def delete(self, cls: type[Record], key: ObjectKey) -> None:
        """Request deletion; deferred while finalizers remain."""
        with self._lock:
            stored = self._bucket(cls.kind).get(key)
            if stored is None:
                raise NotFoundError(f"{cls.kind} {key} not found")
            if stored.metadata.finalizers:
                if stored.metadata.deletion_timestamp is not None:
                    return
                stored.metadata.deletion_timestamp = utcnow()
                stored.metadata.resource_version += 1
                events = [
                    WatchEvent(type=EventType.MODIFIED, record=stored.model_copy(deep=True))
                ]
            else:
                events = self._remove(stored)
        self._emit(events)

    def _remove(self, record: Record) -> list[WatchEvent]:
        """Physically remove a record and cascade to its dependents.

        Caller holds the lock.
        """
        self._bucket(record.kind).pop(record.key, None)
        events = [WatchEvent(type=EventType.DELETED, record=record.model_copy(deep=True))]
        logger.debug("removed %s %s", record.kind, record.key)

        for bucket in list(self._records.values()):
            for dependent in list(bucket.values()):
                if (
                    dependent.metadata.namespace == record.metadata.namespace
                    and dependent.owned_by(record)
                ):
                    if dependent.metadata.finalizers:
                        if dependent.metadata.deletion_timestamp is None:
                            dependent.metadata.deletion_timestamp = utcnow()
                            dependent.metadata.resource_version += 1
                            events.append(
                                WatchEvent(
                                    type=EventType.MODIFIED,
                                    record=dependent.model_copy(deep=True),
                                )
                            )
                    else:
                        events.extend(self._remove(dependent))
        return events


# ---------------------------------------------------------------------------
# Helpers shared by reconcilers
# ---------------------------------------------------------------------------


def add_finalizer(records: RecordStore, record: Record, token: str) -> bool:
    """Attach ``token`` if absent. Returns True when a write happened."""
    if token in record.metadata.finalizers:
        return False
    record.metadata.finalizers.append(token)
    records.update(record)
    return True


def remove_finalizer(records: RecordStore, record: Record, token: str) -> bool:
    """Detach ``token`` if present. Returns True when a write happened."""
    if token not in record.metadata.finalizers:
        return False
    record.metadata.finalizers = [f for f in record.metadata.finalizers if f != token]
    records.update(record)
    return True


def create_or_patch(
    records: RecordStore, record: Record, mutate: Callable[[Record], None]
) -> str:
    """Create ``record`` or apply ``mutate`` to the existing one.

    ``mutate`` is applied in both cases. Returns ``"created"``,
    ``"patched"`` or ``"unchanged"``.
    """
    try:
        existing = records.get(type(record), record.key)
    except NotFoundError:
        mutate(record)
        records.create(record)
        return "created"

    before = existing.model_dump(exclude={"status"})
    mutate(existing)
    if existing.model_dump(exclude={"status"}) == before:
        return "unchanged"
    records.update(existing)
    return "patched"
