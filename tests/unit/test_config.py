"""Tests for runtime settings and the production guard."""

from __future__ import annotations

from pathlib import Path

import pytest

from appshelf.config import ProductionConfigError, Settings, enforce_production_constraints


class TestSettings:
    def test_defaults(self):
        config = Settings()
        assert config.environment == "development"
        assert config.resync_seconds == 540.0
        assert config.display_icon_px == 57
        assert config.full_size_icon_px == 512
        assert config.apktool_path == "apktool"
        assert config.keytool_path == "keytool"

    def test_default_paths(self):
        config = Settings()
        assert config.event_journal_path == Path(".appshelf/events.db")
        assert config.scratch_dir is None

    def test_env_override(self, monkeypatch):
        monkeypatch.setenv("APPSHELF_MAX_WORKERS", "9")
        monkeypatch.setenv("APPSHELF_RESYNC_SECONDS", "30")
        config = Settings()
        assert config.max_workers == 9
        assert config.resync_seconds == 30.0

    def test_is_production(self):
        assert Settings().is_production is False
        assert Settings(environment="production").is_production is True


class TestProductionGuard:
    def test_development_is_never_checked(self):
        enforce_production_constraints(Settings(debug=True, scratch_dir=Path("rel")))

    def test_valid_production(self, tmp_path: Path):
        enforce_production_constraints(
            Settings(environment="production", scratch_dir=tmp_path)
        )

    def test_debug_rejected(self):
        with pytest.raises(ProductionConfigError, match="debug"):
            enforce_production_constraints(Settings(environment="production", debug=True))

    def test_relative_scratch_rejected(self):
        with pytest.raises(ProductionConfigError, match="scratch_dir"):
            enforce_production_constraints(
                Settings(environment="production", scratch_dir=Path("tmp"))
            )

    def test_all_violations_reported(self):
        with pytest.raises(ProductionConfigError) as exc_info:
            enforce_production_constraints(
                Settings(environment="production", debug=True, scratch_dir=Path("tmp"))
            )
        assert "debug" in str(exc_info.value)
        assert "scratch_dir" in str(exc_info.value)
