"""Tests for icon publishing and best-fit role selection."""

from __future__ import annotations

import io

import pytest
from PIL import Image

from appshelf.controllers.icons import (
    PublishError,
    assign_roles,
    best_fit,
    encode_png,
    icon_key,
    override_entries,
    publish_icons,
)
from appshelf.core.events import EventRecorder
from appshelf.core.storage import MemoryStore, StorageError
from appshelf.decoders.base import DecodeError, IconCandidate
from appshelf.models import (
    AndroidPackage,
    ArtifactSpec,
    IconEntry,
    IconOverrides,
    LocalObjectReference,
    ObjectMeta,
)


def _record() -> AndroidPackage:
    return AndroidPackage(
        metadata=ObjectMeta(name="app", namespace="team"),
        spec=ArtifactSpec(bucket=LocalObjectReference(name="apps"), key="releases/app.apk"),
    )


def _entries(*sizes: int) -> list[IconEntry]:
    return [IconEntry(key=f"icon-{i}-{s}.png", size=s) for i, s in enumerate(sizes)]


class _QuotaStore:
    """MemoryStore whose writes fail once ``limit`` objects were written."""

    def __init__(self, inner: MemoryStore, limit: int) -> None:
        self.inner = inner
        self.limit = limit
        self.writes = 0

    def open_writer(self, key, content_type):
        if self.writes >= self.limit:
            raise StorageError("quota exceeded")
        self.writes += 1
        return self.inner.open_writer(key, content_type)


class TestIconKey:
    def test_layout(self):
        key = icon_key("releases/app.apk", "team", "app", "res/mipmap-hdpi/IC_Launcher.webp", 72, 72)
        assert key == "releases/team/app/ic_launcher-72x72.png"

    def test_key_without_directory(self):
        assert icon_key("app.ipa", "ns", "n", "Payload/A.app/Icon.png", 60, 60) == "ns/n/icon-60x60.png"


class TestBestFit:
    def test_display_target_picks_nearest(self):
        entries = _entries(16, 32, 48, 64, 128, 512)
        assert entries[best_fit(entries, 57)].size == 64

    def test_full_size_target_exact(self):
        entries = _entries(16, 32, 48, 64, 128, 512)
        assert entries[best_fit(entries, 512)].size == 512

    def test_tie_goes_to_first_seen(self):
        entries = _entries(60, 60)
        assert best_fit(entries, 57) == 0

    def test_equal_distance_tie_goes_to_first_seen(self):
        entries = _entries(55, 59)
        assert best_fit(entries, 57) == 0

    def test_empty(self):
        assert best_fit([], 57) is None


class TestAssignRoles:
    def test_marks_both_roles(self):
        roles = assign_roles(_entries(16, 64, 512), 57, 512)
        assert [(e.size, e.display, e.full_size) for e in roles] == [
            (16, False, False),
            (64, True, False),
            (512, False, True),
        ]

    def test_single_entry_gets_both_roles(self):
        [entry] = assign_roles(_entries(128), 57, 512)
        assert entry.display and entry.full_size

    def test_skipped_roles_are_not_marked(self):
        roles = assign_roles(_entries(64, 512), 57, 512, skip_display=True)
        assert not any(e.display for e in roles)
        assert roles[1].full_size

    def test_no_entries(self):
        assert assign_roles([], 57, 512) == []

    def test_stale_flags_are_cleared(self):
        stale = [IconEntry(key="a", size=16, display=True, full_size=True), IconEntry(key="b", size=64)]
        roles = assign_roles(stale, 57, 512)
        assert roles[0].display is False
        assert roles[1].display is True


class TestPublishIcons:
    def test_publishes_square_images(self, store: MemoryStore, recorder: EventRecorder, make_png):
        candidates = [
            IconCandidate(name="res/mipmap-mdpi/ic_launcher.png", data=make_png(48)),
            IconCandidate(name="res/mipmap-xxxhdpi/ic_launcher.png", data=make_png(192)),
        ]
        entries = publish_icons(candidates, store, _record(), "releases/app.apk", recorder)
        assert [(e.key, e.size) for e in entries] == [
            ("releases/team/app/ic_launcher-48x48.png", 48),
            ("releases/team/app/ic_launcher-192x192.png", 192),
        ]
        assert store.content_type(entries[0].key) == "image/png"
        with Image.open(store.open_reader(entries[1].key)) as img:
            assert img.size == (192, 192)

    def test_drops_non_square(self, store: MemoryStore, recorder: EventRecorder, make_png):
        candidates = [IconCandidate(name="launch.png", data=make_png(57, 114))]
        assert publish_icons(candidates, store, _record(), "releases/app.apk", recorder) == []
        assert list(store.list()) == []

    def test_undecodable_candidate_warns_and_continues(
        self, store: MemoryStore, recorder: EventRecorder, make_png
    ):
        candidates = [
            IconCandidate(name="broken.png", data=b"not an image"),
            IconCandidate(name="ok.png", data=make_png(32)),
        ]
        entries = publish_icons(candidates, store, _record(), "releases/app.apk", recorder)
        assert [e.size for e in entries] == [32]
        warnings = recorder.events_for("APK", "team", "app")
        assert [e.reason for e in warnings] == ["DecodeImage"]

    def test_duplicate_keys_skipped(self, store: MemoryStore, recorder: EventRecorder, make_png):
        candidates = [
            IconCandidate(name="a/icon.png", data=make_png(60, color="red")),
            IconCandidate(name="b/icon.png", data=make_png(60, color="blue")),
        ]
        entries = publish_icons(candidates, store, _record(), "releases/app.apk", recorder)
        assert len(entries) == 1
        with Image.open(store.open_reader(entries[0].key)) as img:
            assert img.convert("RGB").getpixel((0, 0)) == (255, 0, 0)

    def test_storage_failure_reports_what_was_written(
        self, store: MemoryStore, recorder: EventRecorder, make_png
    ):
        candidates = [
            IconCandidate(name="a/small.png", data=make_png(48)),
            IconCandidate(name="a/large.png", data=make_png(192)),
        ]
        with pytest.raises(PublishError) as exc_info:
            publish_icons(candidates, _QuotaStore(store, limit=1), _record(), "releases/app.apk", recorder)
        assert exc_info.value.reason == "Icons"
        assert [e.key for e in exc_info.value.published] == ["releases/team/app/small-48x48.png"]
        assert list(store.list()) == ["releases/team/app/small-48x48.png"]

    def test_enumeration_failure_carries_decoder_step(
        self, store: MemoryStore, recorder: EventRecorder, make_png
    ):
        def candidates():
            yield IconCandidate(name="a/small.png", data=make_png(48))
            raise DecodeError("Icons", "bad CRC")

        with pytest.raises(PublishError) as exc_info:
            publish_icons(candidates(), store, _record(), "releases/app.apk", recorder)
        assert exc_info.value.reason == "Icons"
        assert [e.size for e in exc_info.value.published] == [48]

    def test_jpeg_is_reencoded_as_png(self, store: MemoryStore, recorder: EventRecorder):
        buf = io.BytesIO()
        Image.new("RGB", (40, 40), "green").save(buf, format="JPEG")
        entries = publish_icons(
            [IconCandidate(name="Icon.jpg", data=buf.getvalue())],
            store, _record(), "releases/app.apk", recorder,
        )
        assert entries[0].key.endswith("icon-40x40.png")
        with Image.open(store.open_reader(entries[0].key)) as img:
            assert img.format == "PNG"


class TestOverrideEntries:
    def test_shared_key_yields_one_entry(self, store: MemoryStore, recorder: EventRecorder, make_png):
        store.put("up/display.png", make_png(100), "image/png")
        entries = override_entries(
            IconOverrides(display="up/display.png", full_size="up/display.png"),
            store, _record(), recorder,
        )
        assert entries == [
            IconEntry(key="up/display.png", size=100, display=True, full_size=True, override=True)
        ]

    def test_unreadable_override_recorded_with_zero_size(
        self, store: MemoryStore, recorder: EventRecorder
    ):
        entries = override_entries(IconOverrides(full_size="missing.png"), store, _record(), recorder)
        assert entries == [IconEntry(key="missing.png", size=0, full_size=True, override=True)]
        assert [e.reason for e in recorder.events_for("APK", "team", "app")] == ["OverrideImage"]

    def test_no_overrides(self, store: MemoryStore, recorder: EventRecorder):
        assert override_entries(IconOverrides(), store, _record(), recorder) == []


def test_encode_png_converts_cmyk():
    data = encode_png(Image.new("CMYK", (8, 8)))
    with Image.open(io.BytesIO(data)) as img:
        assert img.mode == "RGBA"
