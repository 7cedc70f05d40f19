"""Pieces shared by every reconciler."""

from __future__ import annotations

import logging

from appshelf.core.errors import NotFoundError
from appshelf.core.record_store import RecordStore
from appshelf.models.bucket import Bucket
from appshelf.models.meta import ObjectKey, Record

logger = logging.getLogger(__name__)

FINALIZER = "appshelf.dev/cleanup"
FORCE_UNPACK_ANNOTATION = "appshelf.dev/force-unpack"


def status_snapshot(record: Record) -> dict:
    return record.status.model_dump()  # type: ignore[attr-defined]


def save_status(records: RecordStore, record: Record, snapshot: dict) -> bool:
    """Persist ``record.status`` if it differs from ``snapshot``.

    On a write the snapshot is refreshed in place, so repeated calls within
    one reconcile only write what changed since the last call.
    """
    current = status_snapshot(record)
    if current == snapshot:
        return False
    records.update_status(record)
    snapshot.clear()
    snapshot.update(current)
    return True


def get_bucket(records: RecordStore, namespace: str, name: str) -> Bucket | None:
    try:
        return records.get(Bucket, ObjectKey(namespace=namespace, name=name))
    except NotFoundError:
        return None
