"""Per-invocation engine configuration."""

from __future__ import annotations

from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field

from drvforge.models.platforms import Platform


class EngineConfig(BaseModel):
    """Paths and limits for one engine invocation.

    Built from ``drvforge.config.Settings`` plus CLI overrides.
    """

    model_config = ConfigDict(frozen=True)

    project_root: Path = Path(".")
    store_path: Path = Path(".drvforge/store")
    releases_path: Path = Path(".drvforge/releases")
    registry_path: Path = Path(".drvforge/releases.db")
    host: Platform = Field(default_factory=Platform.host)
    max_workers: int = Field(default=4, ge=1)
    build_timeout: float | None = 3600.0
    fail_fast: bool = False
    isolate_network: bool = True
    keep_failed: bool = False
