"""Shared test fixtures for drvforge."""

from __future__ import annotations

from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest

from drvforge.core.content_store import ContentStore
from drvforge.core.declarations import ProjectDeclaration, load_declarations
from drvforge.core.orchestrator import Orchestrator
from drvforge.core.target_resolver import TargetResolver
from drvforge.models.config import EngineConfig
from drvforge.models.derivations import UnitDeclaration
from drvforge.models.platforms import Platform


@pytest.fixture
def tmp_dir(tmp_path: Path) -> Path:
    """Provide a temporary directory for test artifacts."""
    return tmp_path


@pytest.fixture
def host() -> Platform:
    """Builds in tests always run as if on linux-x64."""
    return Platform.parse("linux-x64")


@pytest.fixture
def store(tmp_dir: Path) -> ContentStore:
    """Provide a fresh ContentStore in a temp directory."""
    return ContentStore(tmp_dir / "store")


@pytest.fixture
def resolver(host: Platform) -> TargetResolver:
    """Provide a TargetResolver with the built-in toolchains for linux-x64."""
    return TargetResolver(host)


@pytest.fixture
def make_unit() -> Callable[..., UnitDeclaration]:
    """Factory fixture: build a UnitDeclaration with sensible defaults."""

    def _factory(name: str = "app", **overrides: Any) -> UnitDeclaration:
        defaults: dict[str, Any] = {
            "name": name,
            "command": 'printf "%s\\n" "$DRV_NAME" > "$out/result.txt"',
            "outputs": ["result.txt"],
        }
        defaults.update(overrides)
        return UnitDeclaration(**defaults)

    return _factory


# ---------------------------------------------------------------------------
# Project factories — a declaration file plus a source tree on disk
# ---------------------------------------------------------------------------


@pytest.fixture
def make_project(tmp_dir: Path) -> Callable[..., ProjectDeclaration]:
    """Factory fixture: write ``drvforge.toml`` and source files, then load them."""

    def _factory(
        declaration: str,
        files: dict[str, str] | None = None,
        *,
        root: Path | None = None,
    ) -> ProjectDeclaration:
        project = root or tmp_dir / "project"
        project.mkdir(parents=True, exist_ok=True)
        for rel, text in (files or {}).items():
            path = project / rel
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(text)
        (project / "drvforge.toml").write_text(declaration)
        return load_declarations(project / "drvforge.toml")

    return _factory


@pytest.fixture
def make_config(tmp_dir: Path, host: Platform) -> Callable[..., EngineConfig]:
    """Factory fixture: an EngineConfig with all state under the temp dir."""

    def _factory(**overrides: Any) -> EngineConfig:
        defaults: dict[str, Any] = {
            "project_root": tmp_dir / "project",
            "store_path": tmp_dir / "store",
            "releases_path": tmp_dir / "releases",
            "registry_path": tmp_dir / "releases.db",
            "host": host,
            "max_workers": 2,
            "build_timeout": 30.0,
        }
        defaults.update(overrides)
        return EngineConfig(**defaults)

    return _factory


@pytest.fixture
def make_orchestrator(
    make_config: Callable[..., EngineConfig],
) -> Callable[..., Orchestrator]:
    """Factory fixture: an Orchestrator over a declaration with test config."""

    def _factory(declaration: ProjectDeclaration, **overrides: Any) -> Orchestrator:
        return Orchestrator(declaration, make_config(**overrides))

    return _factory


# Shared declaration used by the orchestrator, CLI and integration tests:
# a tool built for the host, and a program built for every target that uses it.
HELLO_PROJECT = """
[units.gen]
src = "gen"
targets = ["linux-x64"]
command = "mkdir -p $out/bin && cp gen.sh $out/bin/gen && chmod +x $out/bin/gen"
outputs = ["bin"]

[units.hello]
src = "hello"
deps = ["gen"]
targets = ["linux-x64", "windows-x64"]
command = '''
sh $GEN_OUT/bin/gen "$(cat greeting.txt)" > $out/hello.txt
echo "${TARGET_TRIPLE:-native}" > $out/target.txt
'''
outputs = ["hello.txt", "target.txt"]

[bundles.hello]
units = ["hello"]
format = "zip"

[release]
bundle = "hello"
targets = ["linux-x64", "windows-x64"]
"""

HELLO_FILES = {
    "gen/gen.sh": 'echo "generated: $1"\n',
    "hello/greeting.txt": "hello world\n",
}


@pytest.fixture
def hello_project(make_project: Callable[..., ProjectDeclaration]) -> ProjectDeclaration:
    return make_project(HELLO_PROJECT, HELLO_FILES)


@pytest.fixture
def hello_file(hello_project: ProjectDeclaration) -> Path:
    """Path of the hello project's declaration file, for the CLI."""
    return Path(hello_project.root) / "drvforge.toml"
