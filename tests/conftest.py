"""Shared test fixtures for appshelf."""

from __future__ import annotations

import io
import plistlib
import tarfile
import threading
import uuid
import zipfile
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

import pytest
from PIL import Image

from appshelf.config import Settings
from appshelf.core.events import EventRecorder
from appshelf.core.record_store import InMemoryRecordStore
from appshelf.core.storage import MemoryStore
from appshelf.decoders.base import DecodedPackage, DecodeError, IconCandidate
from appshelf.models import (
    AndroidPackage,
    ApplePackage,
    ArtifactSpec,
    Bucket,
    BucketSpec,
    LocalObjectReference,
    ObjectMeta,
    Phase,
)


class FakeDecoder:
    """Stands in for the external-tool decoders.

    Yields a fixed ``DecodedPackage`` and counts how often it was asked.
    """

    def __init__(self, **fields: Any) -> None:
        self.fields: dict[str, Any] = fields
        self.icons: list[IconCandidate] = []
        self.error: DecodeError | None = None
        self.calls = 0

    @contextmanager
    def decode(self, path: Path, cancel: threading.Event) -> Iterator[DecodedPackage]:
        self.calls += 1
        assert path.exists()
        if self.error is not None:
            raise self.error
        yield DecodedPackage(icons=iter(list(self.icons)), **self.fields)


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    """Settings with fast retries and a private scratch directory."""
    scratch = tmp_path / "scratch"
    scratch.mkdir()
    return Settings(
        scratch_dir=scratch,
        event_journal_path=tmp_path / "events.db",
        retry_backoff_seconds=0.0,
        storage_retry_attempts=2,
        max_workers=2,
    )


@pytest.fixture
def records() -> InMemoryRecordStore:
    return InMemoryRecordStore()


@pytest.fixture
def recorder(tmp_path: Path) -> EventRecorder:
    return EventRecorder(tmp_path / "events.db")


@pytest.fixture
def bucket_url() -> Iterator[str]:
    """A fresh in-memory bucket URL, emptied after the test."""
    name = f"test-{uuid.uuid4().hex[:8]}"
    yield f"mem://{name}"
    MemoryStore.reset(name)


@pytest.fixture
def store(bucket_url: str) -> MemoryStore:
    return MemoryStore(bucket_url.removeprefix("mem://"))


@pytest.fixture
def ready_bucket(records: InMemoryRecordStore, bucket_url: str) -> Bucket:
    """A Bucket record already reconciled to Ready."""
    bucket = Bucket(metadata=ObjectMeta(name="apps"), spec=BucketSpec(url=bucket_url))
    records.create(bucket)
    bucket.status.phase = Phase.READY
    records.update_status(bucket)
    return bucket


@pytest.fixture
def fake_android_decoder() -> FakeDecoder:
    return FakeDecoder(
        version="v1.2.3",
        package="com.example.app",
        sha256_cert_fingerprints="AA:BB:CC",
    )


@pytest.fixture
def fake_apple_decoder() -> FakeDecoder:
    return FakeDecoder(
        version="v2.0.0",
        bundle_name="Example",
        bundle_identifier="com.example.app",
    )


# ---------------------------------------------------------------------------
# Content factories
# ---------------------------------------------------------------------------


@pytest.fixture
def make_png() -> Callable[..., bytes]:
    """Factory fixture: PNG bytes of the given width and height."""

    def _factory(width: int, height: int | None = None, color: str = "red") -> bytes:
        buf = io.BytesIO()
        Image.new("RGBA", (width, height or width), color).save(buf, format="PNG")
        return buf.getvalue()

    return _factory


@pytest.fixture
def make_ipa(make_png: Callable[..., bytes]) -> Callable[..., bytes]:
    """Factory fixture: an .ipa archive with an Info.plist and images."""

    def _factory(
        info: dict[str, Any] | None = None,
        images: dict[str, bytes] | None = None,
        app_name: str = "Example",
    ) -> bytes:
        info = info if info is not None else {
            "CFBundleIdentifier": "com.example.app",
            "CFBundleName": "Example",
            "CFBundleShortVersionString": "2.0",
            "CFBundleVersion": "42",
        }
        buf = io.BytesIO()
        with zipfile.ZipFile(buf, "w") as zf:
            zf.writestr(f"Payload/{app_name}.app/Info.plist", plistlib.dumps(info))
            for name, data in (images or {}).items():
                zf.writestr(f"Payload/{app_name}.app/{name}", data)
        return buf.getvalue()

    return _factory


@pytest.fixture
def make_bundle() -> Callable[[dict[str, bytes]], bytes]:
    """Factory fixture: a gzip-tar bundle from ``{member name: bytes}``."""

    def _factory(members: dict[str, bytes]) -> bytes:
        buf = io.BytesIO()
        with tarfile.open(fileobj=buf, mode="w:gz") as tar:
            for name, data in members.items():
                info = tarfile.TarInfo(name)
                info.size = len(data)
                tar.addfile(info, io.BytesIO(data))
        return buf.getvalue()

    return _factory


@pytest.fixture
def make_apk_record() -> Callable[..., AndroidPackage]:
    """Factory fixture: an AndroidPackage record pointing at bucket ``apps``."""

    def _factory(name: str = "app", key: str = "releases/app.apk", **meta: Any) -> AndroidPackage:
        return AndroidPackage(
            metadata=ObjectMeta(name=name, **meta),
            spec=ArtifactSpec(bucket=LocalObjectReference(name="apps"), key=key),
        )

    return _factory


@pytest.fixture
def make_ipa_record() -> Callable[..., ApplePackage]:
    """Factory fixture: an ApplePackage record pointing at bucket ``apps``."""

    def _factory(name: str = "app", key: str = "releases/app.ipa", **meta: Any) -> ApplePackage:
        return ApplePackage(
            metadata=ObjectMeta(name=name, **meta),
            spec=ArtifactSpec(bucket=LocalObjectReference(name="apps"), key=key),
        )

    return _factory
