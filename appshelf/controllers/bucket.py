"""Bucket reconciler — proves a bucket can be opened and reports it."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable

from appshelf.config import Settings
from appshelf.controllers.common import save_status, status_snapshot
from appshelf.core.errors import NotFoundError
from appshelf.core.gateway import ReferenceNotFoundError, resolve_store
from appshelf.core.manager import KeyMapper, Result
from appshelf.core.record_store import RecordStore
from appshelf.core.storage import Store, open_store
from appshelf.models.bucket import Bucket
from appshelf.models.conditions import set_condition
from appshelf.models.meta import ObjectKey, Phase, Record

logger = logging.getLogger(__name__)

CONDITION_OPENED = "Opened"
REASON_OPENED = "BucketOpened"
REASON_FAILED = "FailedToOpen"


class BucketReconciler:
    name = "bucket"
    record_type = Bucket

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
        return [
            ("Secret", self._buckets_for_secret),
            ("ConfigMap", self._buckets_for_config_map),
        ]

    def _buckets_for_secret(self, secret: Record) -> list[ObjectKey]:
        return [
            b.key
            for b in self._records.list(Bucket, namespace=secret.metadata.namespace)
            if b.references_secret(secret.metadata.name)
        ]

    def _buckets_for_config_map(self, config_map: Record) -> list[ObjectKey]:
        return [
            b.key
            for b in self._records.list(Bucket, namespace=config_map.metadata.namespace)
            if b.references_config_map(config_map.metadata.name)
        ]

    def reconcile(self, key: ObjectKey, cancel: threading.Event) -> Result:
        try:
            bucket = self._records.get(Bucket, key)
        except NotFoundError:
            return Result()
        snapshot = status_snapshot(bucket)

        try:
            resolve_store(bucket, self._records, self._opener)
        except ReferenceNotFoundError as exc:
            # The watch on the referenced record brings us back.
            logger.info("bucket %s waiting: %s", key, exc)
            return Result()
        except Exception as exc:
            bucket.status.phase = Phase.FAILED
            set_condition(bucket, CONDITION_OPENED, False, REASON_FAILED, str(exc))
            logger.warning("bucket %s failed to open: %s", key, exc)
        else:
            bucket.status.phase = Phase.READY
            set_condition(bucket, CONDITION_OPENED, True, REASON_OPENED)

        save_status(self._records, bucket, snapshot)
        return Result(requeue_after=self._settings.resync_seconds)
