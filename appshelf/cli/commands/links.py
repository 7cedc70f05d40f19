"""``appshelf links -f PATH --app NAME`` — print app-association documents."""

from __future__ import annotations

from pathlib import Path

import typer
from rich.console import Console
from rich.syntax import Syntax

from appshelf import links
from appshelf.cli.commands.reconcile import converge
from appshelf.config import settings
from appshelf.core.errors import NotFoundError
from appshelf.loader import ManifestError
from appshelf.models.meta import ObjectKey
from appshelf.models.mobileapp import MobileApp

console = Console()


def links_cmd(
    file: Path = typer.Option(
        ...,
        "--file",
        "-f",
        help="Manifest file or directory of manifests.",
    ),
    app_name: str = typer.Option(
        ...,
        "--app",
        "-a",
        help="Name of the MobileApp record.",
    ),
    namespace: str = typer.Option(
        "default",
        "--namespace",
        "-n",
        help="Namespace of the MobileApp record.",
    ),
    journal: Path = typer.Option(
        None,
        "--journal",
        "-j",
        help="Event journal database (default: APPSHELF_EVENT_JOURNAL_PATH).",
    ),
) -> None:
    """Reconcile manifests, then print the MobileApp's association documents."""
    try:
        records, _ = converge(file, settings, journal)
    except ManifestError as exc:
        console.print(f"[bold red]Invalid manifest:[/bold red] {exc}")
        raise typer.Exit(code=2)

    try:
        app = records.get(MobileApp, ObjectKey(namespace=namespace, name=app_name))
    except NotFoundError:
        console.print(f"[bold red]MobileApp not found:[/bold red] {namespace}/{app_name}")
        raise typer.Exit(code=1)

    paths = {
        links.ASSET_LINKS_FILE: links.ASSET_LINKS_PATH,
        links.APPLE_APP_SITE_ASSOCIATION_FILE: links.APPLE_APP_SITE_ASSOCIATION_PATH,
    }
    for name, document in links.documents(app).items():
        console.print(f"[bold cyan]{paths[name]}[/bold cyan]")
        console.print(Syntax(document, "json"))
