"""Load build-unit, bundle and toolchain declarations from ``drvforge.toml``.

Example::

    [units.cgt-tools]
    src = "."
    targets = ["linux-x64", "windows-x64"]
    command = "cargo build --release && mkdir -p $out/bin && cp target/*/release/cgt* $out/bin/"
    outputs = ["bin"]
    packages = ["sdl2"]

    [bundles.cgt-tools]
    units = ["cgt-tools"]
    format = "zip"

    [toolchains.mingw-w64]
    libraries = { sdl2 = "/opt/sdl2/x86_64-w64-mingw32" }

    [release]
    bundle = "cgt-tools"
    targets = ["windows-x64"]
"""

from __future__ import annotations

import tomllib
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, ValidationError

from drvforge.errors import DeclarationError
from drvforge.models.artifacts import BundleSpec
from drvforge.models.derivations import UnitDeclaration
from drvforge.models.environment import ToolchainLayer


class ReleaseDeclaration(BaseModel):
    """Default bundle and platform matrix for ``drvforge publish``."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    bundle: str | None = None
    targets: list[str] = []


class ProjectDeclaration(BaseModel):
    """Everything a declaration file describes."""

    model_config = ConfigDict(frozen=True)

    root: Path = Path(".")
    units: dict[str, UnitDeclaration] = {}
    bundles: dict[str, BundleSpec] = {}
    toolchains: list[ToolchainLayer] = []
    release: ReleaseDeclaration = ReleaseDeclaration()

    def unit_list(self) -> list[UnitDeclaration]:
        return list(self.units.values())

    def bundle(self, name: str) -> BundleSpec:
        try:
            return self.bundles[name]
        except KeyError:
            raise DeclarationError(f"No bundle named {name!r} is declared") from None


def _named(section: dict[str, Any], kind: str) -> dict[str, dict[str, Any]]:
    result: dict[str, dict[str, Any]] = {}
    for name, body in section.items():
        if not isinstance(body, dict):
            raise DeclarationError(f"[{kind}.{name}] must be a table")
        if "name" in body and body["name"] != name:
            raise DeclarationError(
                f"[{kind}.{name}] has conflicting name {body['name']!r}"
            )
        result[name] = {**body, "name": name}
    return result


def parse_declarations(data: dict[str, Any], root: Path = Path(".")) -> ProjectDeclaration:
    """Validate an already-parsed declaration mapping."""
    unknown = set(data) - {"units", "bundles", "toolchains", "release"}
    if unknown:
        raise DeclarationError(f"Unknown top-level sections: {sorted(unknown)}")
    try:
        units = {
            name: UnitDeclaration(**body)
            for name, body in _named(data.get("units", {}), "units").items()
        }
        bundles = {
            name: BundleSpec(**body)
            for name, body in _named(data.get("bundles", {}), "bundles").items()
        }
        toolchains = [
            ToolchainLayer(**body)
            for body in _named(data.get("toolchains", {}), "toolchains").values()
        ]
        release = ReleaseDeclaration(**data.get("release", {}))
    except ValidationError as exc:
        raise DeclarationError(str(exc)) from exc
    return ProjectDeclaration(
        root=root,
        units=units,
        bundles=bundles,
        toolchains=toolchains,
        release=release,
    )


def load_declarations(path: Path) -> ProjectDeclaration:
    """Read and validate a declaration file.

    Unit ``src`` paths are relative to the file's directory.
    """
    path = Path(path)
    if not path.exists():
        raise DeclarationError(f"Declaration file not found: {path}")
    try:
        with open(path, "rb") as fh:
            data = tomllib.load(fh)
    except tomllib.TOMLDecodeError as exc:
        raise DeclarationError(f"{path}: {exc}") from exc
    return parse_declarations(data, root=path.parent.resolve())
