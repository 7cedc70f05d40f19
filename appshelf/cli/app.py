"""Main Typer application — imports and registers all CLI commands.

Entry point: ``appshelf`` (configured via pyproject.toml scripts).
"""

from __future__ import annotations

import logging

import typer
from rich.console import Console
from rich.logging import RichHandler

from appshelf import __version__
from appshelf.cli.commands.links import links_cmd
from appshelf.cli.commands.reconcile import reconcile_cmd
from appshelf.config import settings

app = typer.Typer(
    name="appshelf",
    help="appshelf: declarative distribution of Android and Apple app packages.",
    no_args_is_help=True,
    rich_markup_mode="rich",
    add_completion=False,
)


@app.callback()
def configure(
    log_level: str = typer.Option(
        None,
        "--log-level",
        help="Log level (default: APPSHELF_LOG_LEVEL).",
    ),
) -> None:
    """Configure logging for every command."""
    logging.basicConfig(
        level=(log_level or settings.log_level).upper(),
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), rich_tracebacks=True)],
        force=True,
    )


# Register subcommands
app.command(name="reconcile", help="Reconcile manifests once and show the result.")(reconcile_cmd)
app.command(name="links", help="Print the app-association documents of a MobileApp.")(links_cmd)


@app.command(name="version", help="Show the appshelf version.")
def version_cmd() -> None:
    Console().print(f"appshelf {__version__}")


def main() -> None:
    """CLI entry point."""
    app()


if __name__ == "__main__":
    main()
