"""Tests for the bucket reconciler."""

from __future__ import annotations

import threading

import pytest

from appshelf.controllers.bucket import BucketReconciler
from appshelf.core.record_store import InMemoryRecordStore
from appshelf.models import (
    Bucket,
    BucketSpec,
    ConfigMap,
    KeySelector,
    ObjectKey,
    ObjectMeta,
    Phase,
    Secret,
    URLSource,
    get_condition,
)

KEY = ObjectKey(namespace="default", name="apps")


@pytest.fixture
def reconciler(records, settings) -> BucketReconciler:
    return BucketReconciler(records, settings)


def _create(records: InMemoryRecordStore, **spec) -> None:
    records.create(Bucket(metadata=ObjectMeta(name="apps"), spec=BucketSpec(**spec)))


def _secret_source(name: str = "creds") -> URLSource:
    return URLSource(secret_key_ref=KeySelector(name=name, key="url"))


class TestBucketReconciler:
    def test_opens_literal_url(self, reconciler, records, bucket_url, settings):
        _create(records, url=bucket_url)
        result = reconciler.reconcile(KEY, threading.Event())

        bucket = records.get(Bucket, KEY)
        assert bucket.status.phase is Phase.READY
        cond = get_condition(bucket, "Opened")
        assert (cond.status, cond.reason) == (True, "BucketOpened")
        assert result.requeue_after == settings.resync_seconds

    def test_unsupported_scheme_fails(self, reconciler, records):
        _create(records, url="ftp://nowhere")
        reconciler.reconcile(KEY, threading.Event())

        bucket = records.get(Bucket, KEY)
        assert bucket.status.phase is Phase.FAILED
        cond = get_condition(bucket, "Opened")
        assert (cond.status, cond.reason) == (False, "FailedToOpen")
        assert "ftp" in cond.message

    def test_invalid_spec_fails(self, reconciler, records):
        _create(records)
        reconciler.reconcile(KEY, threading.Event())
        assert records.get(Bucket, KEY).status.phase is Phase.FAILED

    def test_missing_secret_waits_without_status_change(self, reconciler, records):
        _create(records, url_from=_secret_source())
        result = reconciler.reconcile(KEY, threading.Event())

        bucket = records.get(Bucket, KEY)
        assert bucket.status.phase is Phase.PENDING
        assert bucket.status.conditions == []
        assert result.requeue_after is None

    def test_secret_arrival_opens_bucket(self, reconciler, records, bucket_url):
        _create(records, url_from=_secret_source())
        reconciler.reconcile(KEY, threading.Event())
        records.create(Secret(metadata=ObjectMeta(name="creds"), data={"url": bucket_url.encode()}))

        reconciler.reconcile(KEY, threading.Event())

        assert records.get(Bucket, KEY).status.phase is Phase.READY

    def test_missing_key_in_secret_fails(self, reconciler, records):
        records.create(Secret(metadata=ObjectMeta(name="creds"), data={"other": b"x"}))
        _create(records, url_from=_secret_source())
        reconciler.reconcile(KEY, threading.Event())
        assert records.get(Bucket, KEY).status.phase is Phase.FAILED

    def test_unchanged_status_not_rewritten(self, reconciler, records, bucket_url):
        _create(records, url=bucket_url)
        reconciler.reconcile(KEY, threading.Event())
        version = records.get(Bucket, KEY).metadata.resource_version

        reconciler.reconcile(KEY, threading.Event())

        assert records.get(Bucket, KEY).metadata.resource_version == version

    def test_missing_bucket(self, reconciler):
        assert reconciler.reconcile(KEY, threading.Event()).requeue_after is None


class TestBucketWatches:
    def test_secret_and_config_map_mapping(self, reconciler, records):
        records.create(Bucket(metadata=ObjectMeta(name="by-secret"), spec=BucketSpec(url_from=_secret_source("shared"))))
        records.create(
            Bucket(
                metadata=ObjectMeta(name="by-config"),
                spec=BucketSpec(url_from=URLSource(config_map_key_ref=KeySelector(name="shared", key="url"))),
            )
        )
        records.create(
            Bucket(
                metadata=ObjectMeta(name="elsewhere", namespace="other"),
                spec=BucketSpec(url_from=_secret_source("shared")),
            )
        )
        mappers = dict(reconciler.watches())

        secret = Secret(metadata=ObjectMeta(name="shared"))
        config_map = ConfigMap(metadata=ObjectMeta(name="shared"))
        assert [k.name for k in mappers["Secret"](secret)] == ["by-secret"]
        assert [k.name for k in mappers["ConfigMap"](config_map)] == ["by-config"]
