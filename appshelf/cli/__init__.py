"""appshelf command-line interface (typer + rich)."""
