"""Toolchain configuration layers and resolved build environments.

Toolchains are described as typed *partial* layers. Layers are merged in
order: scalars from the later layer win when set, mappings merge key-wise,
lists are replaced wholesale. A merged layer that names both a host and a
target becomes a concrete ``ToolchainSpec``.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict

from drvforge.core.hasher import content_address
from drvforge.models.platforms import Platform

# Keys only ever present in a cross-compilation environment.
CROSS_ENV_KEYS: frozenset[str] = frozenset(
    {"TARGET_TRIPLE", "CROSS_COMPILE", "CROSS_SYSROOT", "CARGO_BUILD_TARGET"}
)


class ToolchainLayer(BaseModel):
    """A partial toolchain configuration; unset fields defer to earlier layers."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    name: str
    host: str | None = None
    target: str | None = None
    cc: str | None = None
    cxx: str | None = None
    ar: str | None = None
    cross_prefix: str | None = None
    sysroot: str | None = None
    bin_paths: list[str] | None = None
    library_paths: list[str] | None = None
    libraries: dict[str, str] | None = None  # package name -> target prefix
    env: dict[str, str] | None = None

    def merge(self, other: ToolchainLayer) -> ToolchainLayer:
        """Return ``self`` overlaid with ``other`` (``other`` wins)."""
        merged: dict[str, Any] = self.model_dump()
        for field, value in other.model_dump().items():
            if field == "name" or value is None:
                continue
            current = merged.get(field)
            if isinstance(value, dict) and isinstance(current, dict):
                merged[field] = {**current, **value}
            else:
                merged[field] = value
        return ToolchainLayer(**merged)


def merge_layers(layers: list[ToolchainLayer]) -> ToolchainLayer:
    """Fold a non-empty list of layers left to right."""
    if not layers:
        raise ValueError("merge_layers() needs at least one layer")
    result = layers[0]
    for layer in layers[1:]:
        result = result.merge(layer)
    return result


class ToolchainSpec(BaseModel):
    """A complete toolchain for one (host, target) pair."""

    model_config = ConfigDict(frozen=True)

    name: str
    host: Platform
    target: Platform
    cc: str = "cc"
    cxx: str = "c++"
    ar: str = "ar"
    cross_prefix: str = ""
    sysroot: str | None = None
    bin_paths: list[str] = []
    library_paths: list[str] = []
    libraries: dict[str, str] = {}
    env: dict[str, str] = {}

    @property
    def is_cross(self) -> bool:
        return self.host != self.target

    @classmethod
    def from_layer(cls, layer: ToolchainLayer) -> ToolchainSpec:
        if not layer.host or not layer.target:
            raise ValueError(
                f"toolchain {layer.name!r} must define both host and target"
            )
        fields = {
            k: v
            for k, v in layer.model_dump().items()
            if v is not None and k not in ("host", "target")
        }
        return cls(
            host=Platform.parse(layer.host),
            target=Platform.parse(layer.target),
            **fields,
        )


class BuildEnvironment(BaseModel):
    """Resolved toolchains, libraries and variables for one derivation.

    Constructed fresh for each (host, target) resolution and never mutated.
    """

    model_config = ConfigDict(frozen=True)

    host: Platform
    target: Platform
    toolchain: str
    is_cross: bool
    target_triple: str | None = None
    env: dict[str, str] = {}
    path: list[str] = []
    library_paths: list[str] = []
    packages: dict[str, str] = {}

    def fingerprint(self) -> str:
        """Content address of the environment, folded into derivation ids."""
        return content_address(self.model_dump(mode="json"))

    @property
    def cross_parameters(self) -> dict[str, str]:
        return {k: v for k, v in self.env.items() if k in CROSS_ENV_KEYS}
