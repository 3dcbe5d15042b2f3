"""Runtime configuration — env-driven.

Centralized settings using pydantic-settings.  Reads from a .env file
and DIMGFORGE_* environment variables.
"""

from __future__ import annotations

from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict

# Accumulated patch size is bucketed by this many bytes before it feeds the
# gitPostSetupPatch signature.
DEFAULT_PATCH_SIZE_STEP = 1024 * 1024


class ProdConfig(BaseSettings):
    """Settings with environment variable overrides.

    Examples
    --------
    Override via environment::

        export DIMGFORGE_LOG_LEVEL=DEBUG
        export DIMGFORGE_BUILD_DIR=/var/cache/dimgforge
        export DIMGFORGE_PATCH_SIZE_STEP=4194304
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="DIMGFORGE_",
        env_file_encoding="utf-8",
    )

    # Runtime environment
    environment: str = "development"
    log_level: str = "INFO"
    debug: bool = False

    # Storage paths
    home_dir: Path = Path.home() / ".dimgforge"
    tmp_dir: Path | None = None  # system temp dir when unset
    build_dir: Path = Path(".dimgforge/build")

    # Where git payloads are mounted inside build containers
    container_payload_dir: str = "/.dimgforge"

    # Builders
    ansible_args: str = ""  # appended to every ansible-playbook run

    # Caching
    patch_size_step: int = DEFAULT_PATCH_SIZE_STEP
    remote_cache_version: int = 1

    # Locking
    lock_timeout_seconds: float = 0  # 0 waits forever

    @property
    def stages_db_path(self) -> Path:
        """SQLite database holding persisted layer metadata."""
        return self.build_dir / "stages.db"

    @property
    def lock_path(self) -> Path:
        return self.build_dir / "build.lock"


# Module-level singleton, import as `from dimgforge.config import config`
config = ProdConfig()
