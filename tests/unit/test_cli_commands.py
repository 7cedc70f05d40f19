"""Unit tests for the CLI — Typer command registration and basic behavior.

Exercises command registration, help output and the reconcile / links
commands end to end via typer.testing.CliRunner.
"""

from __future__ import annotations

from pathlib import Path

import pytest
from typer.testing import CliRunner

from appshelf import __version__
from appshelf.cli.app import app

runner = CliRunner()


MANIFEST = """\
kind: Bucket
metadata:
  name: apps
spec:
  url: {url}
---
kind: IPA
metadata:
  name: shelf-ios
  labels:
    app: shelf
spec:
  bucket:
    name: apps
  key: releases/shelf.ipa
---
kind: MobileApp
metadata:
  name: shelf
spec:
  selector:
    app: shelf
  universal_links:
    host: links.example.com
"""


@pytest.fixture
def manifests(tmp_path: Path, make_ipa) -> Path:
    bucket_dir = tmp_path / "bucket"
    (bucket_dir / "releases").mkdir(parents=True)
    (bucket_dir / "releases" / "shelf.ipa").write_bytes(make_ipa())
    manifest_dir = tmp_path / "manifests"
    manifest_dir.mkdir()
    (manifest_dir / "shelf.yaml").write_text(MANIFEST.format(url=bucket_dir.as_uri()))
    return manifest_dir


# ---------------------------------------------------------------------------
# Test: CLI help and registration
# ---------------------------------------------------------------------------


class TestCliApp:
    """The CLI must register all expected commands and show help."""

    def test_no_args_shows_help(self):
        result = runner.invoke(app, [])
        # Typer's no_args_is_help may exit with 0 or 2 depending on version
        assert result.exit_code in (0, 2)
        assert "usage" in result.output.lower()

    def test_help_flag(self):
        result = runner.invoke(app, ["--help"])
        assert result.exit_code == 0
        assert "reconcile" in result.output
        assert "links" in result.output
        assert "version" in result.output

    @pytest.mark.parametrize("command", ["reconcile", "links", "version"])
    def test_command_help(self, command):
        result = runner.invoke(app, [command, "--help"])
        assert result.exit_code == 0

    def test_version(self):
        result = runner.invoke(app, ["version"])
        assert result.exit_code == 0
        assert f"appshelf {__version__}" in result.output


# ---------------------------------------------------------------------------
# Test: reconcile
# ---------------------------------------------------------------------------


class TestReconcileCommand:
    def test_reconciles_manifest_directory(self, manifests: Path, tmp_path: Path):
        result = runner.invoke(
            app, ["reconcile", "-f", str(manifests), "-j", str(tmp_path / "events.db"), "-e"]
        )
        assert result.exit_code == 0, result.output
        assert "READY" in result.output
        assert "FAILED" not in result.output
        assert (tmp_path / "events.db").exists()

    def test_failed_record_exits_one(self, tmp_path: Path):
        path = tmp_path / "bucket.yaml"
        path.write_text(MANIFEST.format(url="ftp://nowhere").split("---")[0])
        result = runner.invoke(app, ["reconcile", "-f", str(path), "-j", str(tmp_path / "e.db")])
        assert result.exit_code == 1
        assert "FAILED" in result.output

    def test_invalid_manifest_exits_two(self, tmp_path: Path):
        path = tmp_path / "bad.yaml"
        path.write_text("kind: Widget\nmetadata:\n  name: w\n")
        result = runner.invoke(app, ["reconcile", "-f", str(path), "-j", str(tmp_path / "e.db")])
        assert result.exit_code == 2
        assert "Invalid manifest" in result.output

    def test_missing_file_option(self):
        result = runner.invoke(app, ["reconcile"])
        assert result.exit_code != 0


# ---------------------------------------------------------------------------
# Test: links
# ---------------------------------------------------------------------------


class TestLinksCommand:
    def test_prints_documents(self, manifests: Path, tmp_path: Path):
        result = runner.invoke(
            app, ["links", "-f", str(manifests), "--app", "shelf", "-j", str(tmp_path / "e.db")]
        )
        assert result.exit_code == 0, result.output
        assert "/.well-known/assetlinks.json" in result.output
        assert "/.well-known/apple-app-site-association" in result.output
        assert "com.example.app" in result.output

    def test_unknown_app(self, manifests: Path, tmp_path: Path):
        result = runner.invoke(
            app, ["links", "-f", str(manifests), "-a", "nope", "-n", "default", "-j", str(tmp_path / "e.db")]
        )
        assert result.exit_code == 1
        assert "not found" in result.output
