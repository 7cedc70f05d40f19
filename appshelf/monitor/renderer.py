"""Rich terminal renderer for record status.

Color scheme
------------
- green     : Ready
- yellow    : Pending
- bold red  : Failed
"""

from __future__ import annotations

from collections.abc import Sequence

from rich.console import Console, Group
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from appshelf.core.events import Event, EventType
from appshelf.models.meta import Phase, Record


# ---------------------------------------------------------------------------
# Phase -> Rich style mapping
# ---------------------------------------------------------------------------

_PHASE_STYLES: dict[Phase, str] = {
    Phase.READY: "bold green",
    Phase.PENDING: "bold yellow",
    Phase.FAILED: "bold red",
}

_PHASE_LABELS: dict[Phase, str] = {
    Phase.READY: "[green]READY[/green]",
    Phase.PENDING: "[yellow]PENDING[/yellow]",
    Phase.FAILED: "[bold red]FAILED[/bold red]",
}


def _details(record: Record) -> str:
    """Version, identifiers and failed conditions, as markup."""
    status = getattr(record, "status", None)
    if status is None:
        return "[dim]-[/dim]"

    parts: list[str] = []
    version = getattr(status, "version", "")
    if version:
        parts.append(f"[cyan]{version}[/cyan]")
    for attr in ("package", "bundle_identifier"):
        value = getattr(status, attr, "")
        if value:
            parts.append(value)
    digest = getattr(status, "digest", "")
    if digest:
        parts.append(f"[dim]{digest.removeprefix('sha256:')[:12]}[/dim]")
    for projections in ("apks", "ipas"):
        for p in getattr(status, projections, []):
            if p.latest:
                parts.append(f"latest {projections[:-1]}: [cyan]{p.name}[/cyan] {p.version}")
    for condition in status.conditions:
        if not condition.status:
            parts.append(f"[red]{condition.type}/{condition.reason}: {condition.message}[/red]")
    return " | ".join(parts) if parts else "[dim]-[/dim]"


class RecordRenderer:
    """Renders records and events as Rich tables.

    Parameters
    ----------
    console:
        Rich Console instance.  A new one is created if not provided.
    """

    def __init__(self, console: Console | None = None) -> None:
        self.console = console or Console()

    # ------------------------------------------------------------------
    # Records
    # ------------------------------------------------------------------

    def build_record_table(self, records: Sequence[Record]) -> Table:
        table = Table(
            show_header=True,
            header_style="bold cyan",
            expand=True,
            show_lines=False,
            pad_edge=True,
        )
        table.add_column("Kind", style="dim", min_width=9)
        table.add_column("Name", min_width=20)
        table.add_column("Phase", min_width=9, justify="center")
        table.add_column("Details", min_width=30)

        for record in records:
            phase = getattr(getattr(record, "status", None), "phase", None)
            style = _PHASE_STYLES.get(phase, "") if phase else ""
            name = f"{record.metadata.namespace}/{record.metadata.name}"
            if record.deletion_requested:
                name += " [dim](deleting)[/dim]"
            table.add_row(
                record.kind,
                f"[{style}]{name}[/{style}]" if style else name,
                _PHASE_LABELS.get(phase, "[dim]-[/dim]") if phase else "[dim]-[/dim]",
                _details(record),
            )
        return table

    def render_records(self, records: Sequence[Record], title: str = "appshelf") -> Panel:
        ready = sum(
            1 for r in records if getattr(getattr(r, "status", None), "phase", None) is Phase.READY
        )
        failed = sum(
            1 for r in records if getattr(getattr(r, "status", None), "phase", None) is Phase.FAILED
        )
        summary = (
            f"[bold]Records:[/bold] {len(records)}  |  "
            f"[bold]Ready:[/bold] [green]{ready}[/green]  |  "
            f"[bold]Failed:[/bold] [red]{failed}[/red]"
        )
        return Panel(
            Group(self.build_record_table(records), Text(""), Text.from_markup(summary)),
            title=f"[bold]{title}[/bold]",
            border_style="blue",
            padding=(1, 2),
        )

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    def build_event_table(self, events: Sequence[Event]) -> Table:
        table = Table(show_header=True, header_style="bold cyan", expand=True)
        table.add_column("Time", style="dim", width=9)
        table.add_column("Type", width=8)
        table.add_column("Object", min_width=20)
        table.add_column("Reason", min_width=12)
        table.add_column("Message")
        for event in events:
            kind = (
                "[yellow]Warning[/yellow]" if event.type is EventType.WARNING else "Normal"
            )
            table.add_row(
                event.timestamp.strftime("%H:%M:%S"),
                kind,
                f"{event.kind} {event.namespace}/{event.name}",
                event.reason,
                event.message,
            )
        return table

    def print_records(self, records: Sequence[Record], title: str = "appshelf") -> None:
        self.console.print(self.render_records(records, title=title))

    def print_events(self, events: Sequence[Event]) -> None:
        if not events:
            self.console.print("[dim]No events.[/dim]")
            return
        self.console.print(self.build_event_table(events))
