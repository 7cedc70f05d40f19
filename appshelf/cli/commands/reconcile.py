"""``appshelf reconcile -f PATH`` — converge manifests once and show the result.

Loads every record from the manifests into an in-memory record store, runs
all controllers until no immediate work remains, and renders the records.
"""

from __future__ import annotations

from pathlib import Path

import typer
from rich.console import Console

from appshelf.config import Settings, enforce_production_constraints, settings
from appshelf.controllers import setup_controllers
from appshelf.core.events import EventRecorder
from appshelf.core.manager import ControllerManager
from appshelf.core.record_store import InMemoryRecordStore
from appshelf.loader import ManifestError, load_records
from appshelf.models import RECORD_TYPES, Record
from appshelf.models.meta import Phase
from appshelf.monitor.renderer import RecordRenderer

console = Console()

# Rendered kinds, in dependency order.
DISPLAY_KINDS = ("Bucket", "Upload", "APK", "IPA", "MobileApp", "Manifest")


def converge(
    path: Path, cfg: Settings, journal: Path | None = None
) -> tuple[InMemoryRecordStore, EventRecorder]:
    """Load ``path`` and reconcile until idle."""
    enforce_production_constraints(cfg)
    records = InMemoryRecordStore()
    recorder = EventRecorder(journal or cfg.event_journal_path)
    manager = ControllerManager(records, cfg)
    setup_controllers(manager, records, recorder, cfg)
    try:
        for record in load_records(path):
            records.create(record)
        manager.run_until_idle()
    finally:
        manager.stop()
    return records, recorder


def all_records(records: InMemoryRecordStore) -> list[Record]:
    out: list[Record] = []
    for kind in DISPLAY_KINDS:
        out.extend(records.list(RECORD_TYPES[kind]))
    return out


def reconcile_cmd(
    file: Path = typer.Option(
        ...,
        "--file",
        "-f",
        help="Manifest file or directory of manifests.",
    ),
    journal: Path = typer.Option(
        None,
        "--journal",
        "-j",
        help="Event journal database (default: APPSHELF_EVENT_JOURNAL_PATH).",
    ),
    events: bool = typer.Option(
        False,
        "--events",
        "-e",
        help="Also print the events recorded during this run.",
    ),
) -> None:
    """Reconcile manifests once and show the resulting status."""
    try:
        records, recorder = converge(file, settings, journal)
    except ManifestError as exc:
        console.print(f"[bold red]Invalid manifest:[/bold red] {exc}")
        raise typer.Exit(code=2)

    shown = all_records(records)
    renderer = RecordRenderer(console=console)
    renderer.print_records(shown, title=f"appshelf: {file}")
    if events:
        renderer.print_events(recorder.recent(100))

    failed = [
        r for r in shown if getattr(getattr(r, "status", None), "phase", None) is Phase.FAILED
    ]
    if failed:
        raise typer.Exit(code=1)
