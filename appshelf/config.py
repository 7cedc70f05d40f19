"""Runtime configuration — env-driven.

Centralized settings using pydantic-settings. Reads from a .env file and
APPSHELF_* environment variables.
"""

from __future__ import annotations

from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Controller settings with environment variable overrides.

    Examples
    --------
    Override via environment::

        export APPSHELF_ENVIRONMENT=production
        export APPSHELF_LOG_LEVEL=DEBUG
        export APPSHELF_SCRATCH_DIR=/var/tmp/appshelf

    Or via .env file::

        APPSHELF_MAX_WORKERS=8
        APPSHELF_APKTOOL_PATH=/opt/apktool/apktool
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="APPSHELF_",
        env_file_encoding="utf-8",
    )

    # Runtime environment
    environment: str = "development"
    log_level: str = "INFO"
    debug: bool = False

    # Local paths
    scratch_dir: Path | None = None  # None -> system temp dir
    event_journal_path: Path = Path(".appshelf/events.db")

    # Scheduling
    resync_seconds: float = 540.0  # 9 minutes
    max_workers: int = 4
    storage_retry_attempts: int = 5
    retry_backoff_seconds: float = 1.0

    # Content pipeline
    copy_chunk_bytes: int = 1024 * 1024
    display_icon_px: int = 57
    full_size_icon_px: int = 512

    # External decoder tools
    apktool_path: str = "apktool"
    keytool_path: str = "keytool"
    decoder_timeout_seconds: float = 300.0

    # Universal link delivery
    static_server_image: str = "nginx:alpine"

    @property
    def is_production(self) -> bool:
        """Whether running in production mode."""
        return self.environment == "production"


class ProductionConfigError(RuntimeError):
    """Raised when production configuration constraints are violated."""


def enforce_production_constraints(settings: Settings) -> None:
    """Fail hard if a production deployment is misconfigured.

    Only applies when ``settings.is_production`` is True:

    1. Debug mode must be disabled.
    2. ``scratch_dir``, when set, must be absolute so every worker agrees
       on where downloads land.
    """
    if not settings.is_production:
        return

    violations: list[str] = []

    if settings.debug:
        violations.append(
            "debug=True is not allowed in production. Set APPSHELF_DEBUG=false."
        )

    if settings.scratch_dir is not None and not settings.scratch_dir.is_absolute():
        violations.append(
            f"scratch_dir must be absolute in production, got {settings.scratch_dir}."
        )

    if violations:
        raise ProductionConfigError(
            "Production configuration invalid:\n  - " + "\n  - ".join(violations)
        )


# Module-level singleton: import as `from appshelf.config import settings`
settings = Settings()
