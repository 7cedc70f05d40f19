"""Unit tests for the RecordRenderer.

Tests Rich table and panel output, phase color mapping, record details
and the event table.
"""

from __future__ import annotations

import io
from datetime import datetime, timezone

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from appshelf.core.events import Event, EventType
from appshelf.models import (
    AndroidPackage,
    ArtifactSpec,
    Bucket,
    LocalObjectReference,
    ObjectMeta,
    Phase,
    set_condition,
)
from appshelf.monitor.renderer import _PHASE_LABELS, _PHASE_STYLES, RecordRenderer


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _console() -> Console:
    return Console(file=io.StringIO(), width=200, color_system=None)


def _output(renderer: RecordRenderer) -> str:
    return renderer.console.file.getvalue()


def _apk(name: str = "shelf-1", phase: Phase = Phase.READY) -> AndroidPackage:
    record = AndroidPackage(
        metadata=ObjectMeta(name=name),
        spec=ArtifactSpec(bucket=LocalObjectReference(name="apps"), key=f"{name}.apk"),
    )
    record.status.phase = phase
    record.status.version = "v1.2.3"
    record.status.package = "com.example.shelf"
    record.status.digest = "sha256:" + "ab" * 32
    return record


def _failed_bucket() -> Bucket:
    bucket = Bucket(metadata=ObjectMeta(name="apps"))
    bucket.status.phase = Phase.FAILED
    set_condition(bucket, "Opened", False, "FailedToOpen", "unsupported bucket URL scheme 'ftp'")
    return bucket


# ---------------------------------------------------------------------------
# Test: Phase mappings
# ---------------------------------------------------------------------------


class TestPhaseMappings:
    def test_every_phase_has_style_and_label(self):
        for phase in Phase:
            assert phase in _PHASE_STYLES
            assert phase in _PHASE_LABELS


# ---------------------------------------------------------------------------
# Test: Record table
# ---------------------------------------------------------------------------


class TestRecordTable:
    def test_build_record_table(self):
        table = RecordRenderer(_console()).build_record_table([_apk(), _failed_bucket()])
        assert isinstance(table, Table)
        assert table.row_count == 2
        assert [c.header for c in table.columns] == ["Kind", "Name", "Phase", "Details"]

    def test_render_records_returns_panel(self):
        panel = RecordRenderer(_console()).render_records([_apk()], title="demo")
        assert isinstance(panel, Panel)

    def test_print_records_shows_details(self):
        renderer = RecordRenderer(_console())
        renderer.print_records([_apk(), _apk("shelf-2", Phase.PENDING), _failed_bucket()])
        out = _output(renderer)
        assert "default/shelf-1" in out
        assert "v1.2.3" in out
        assert "com.example.shelf" in out
        assert "abababababab" in out
        assert "READY" in out
        assert "PENDING" in out
        assert "FAILED" in out
        assert "Opened/FailedToOpen" in out
        assert "Records: 3" in out

    def test_deleting_record_is_marked(self):
        record = _apk()
        record.metadata.deletion_timestamp = datetime(2026, 1, 1, tzinfo=timezone.utc)
        renderer = RecordRenderer(_console())
        renderer.print_records([record])
        assert "(deleting)" in _output(renderer)

    def test_empty(self):
        renderer = RecordRenderer(_console())
        renderer.print_records([])
        assert "Records: 0" in _output(renderer)


# ---------------------------------------------------------------------------
# Test: Events
# ---------------------------------------------------------------------------


class TestEvents:
    def test_no_events(self):
        renderer = RecordRenderer(_console())
        renderer.print_events([])
        assert "No events." in _output(renderer)

    def test_event_table(self):
        event = Event(
            kind="APK",
            namespace="default",
            name="shelf-1",
            type=EventType.WARNING,
            reason="DecodeImage",
            message="skipping broken.png",
            timestamp=datetime(2026, 2, 27, 12, 30, 5, tzinfo=timezone.utc),
        )
        renderer = RecordRenderer(_console())
        renderer.print_events([event])
        out = _output(renderer)
        assert "12:30:05" in out
        assert "Warning" in out
        assert "APK default/shelf-1" in out
        assert "DecodeImage" in out
