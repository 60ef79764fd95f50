"""Environment-driven settings.

Reads from a .env file and DRVFORGE_* environment variables, e.g.::

    export DRVFORGE_STORE_PATH=/var/cache/drvforge
    export DRVFORGE_MAX_WORKERS=8
    export DRVFORGE_HOST_PLATFORM=linux-x64
"""

from __future__ import annotations

from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict

from drvforge.models.config import EngineConfig
from drvforge.models.platforms import Platform


class Settings(BaseSettings):
    """Process-wide defaults; CLI flags override them per invocation."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="DRVFORGE_",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    environment: str = "development"
    log_level: str = "INFO"

    # Storage paths
    declaration_file: Path = Path("drvforge.toml")
    store_path: Path = Path(".drvforge/store")
    releases_path: Path = Path(".drvforge/releases")
    registry_path: Path = Path(".drvforge/releases.db")

    # Scheduling and sandboxing
    max_workers: int = 4
    build_timeout_seconds: float = 3600.0
    isolate_network: bool = True
    keep_failed: bool = False

    # Overrides platform detection, e.g. "linux-x64"
    host_platform: str | None = None

    def host(self) -> Platform:
        if self.host_platform:
            return Platform.parse(self.host_platform)
        return Platform.host()

    def engine_config(self, project_root: Path | None = None, **overrides) -> EngineConfig:
        """Build an EngineConfig rooted at ``project_root``.

        Relative store paths are resolved against the project root.
        """
        root = Path(project_root or self.declaration_file.parent or ".")
        values = {
            "project_root": root,
            "store_path": root / self.store_path,
            "releases_path": root / self.releases_path,
            "registry_path": root / self.registry_path,
            "host": self.host(),
            "max_workers": self.max_workers,
            "build_timeout": self.build_timeout_seconds or None,
            "isolate_network": self.isolate_network,
            "keep_failed": self.keep_failed,
        }
        values.update({k: v for k, v in overrides.items() if v is not None})
        return EngineConfig(**values)
