"""Unit tests for the CLI — command registration, output and exit codes."""

from __future__ import annotations

from pathlib import Path

import pytest
from typer.testing import CliRunner

from drvforge import __version__
from drvforge.cli.app import app

runner = CliRunner()


@pytest.fixture(autouse=True)
def linux_host(monkeypatch):
    monkeypatch.setenv("DRVFORGE_HOST_PLATFORM", "linux-x64")
    monkeypatch.setenv("DRVFORGE_BUILD_TIMEOUT_SECONDS", "60")


@pytest.fixture
def project_file(hello_file: Path) -> Path:
    return hello_file


def _write_project(tmp_dir: Path, text: str) -> Path:
    root = tmp_dir / "other"
    root.mkdir(exist_ok=True)
    (root / "drvforge.toml").write_text(text)
    return root / "drvforge.toml"


# ---------------------------------------------------------------------------
# Test: CLI help and registration
# ---------------------------------------------------------------------------


class TestCliApp:
    def test_no_args_shows_help(self):
        result = runner.invoke(app, [])
        # Typer's no_args_is_help may exit with 0 or 2 depending on version
        assert result.exit_code in (0, 2)
        assert "usage" in result.output.lower()

    def test_help_lists_commands(self):
        result = runner.invoke(app, ["--help"])
        assert result.exit_code == 0
        for command in ("realize", "graph", "env", "bundle", "publish"):
            assert command in result.output

    def test_version(self):
        result = runner.invoke(app, ["--version"])
        assert result.exit_code == 0
        assert __version__ in result.output

    @pytest.mark.parametrize("command", ["realize", "graph", "env", "bundle", "publish"])
    def test_command_help(self, command: str):
        assert runner.invoke(app, [command, "--help"]).exit_code == 0


# ---------------------------------------------------------------------------
# Test: commands against a real project
# ---------------------------------------------------------------------------


class TestRealizeCommand:
    def test_success(self, project_file: Path):
        result = runner.invoke(app, ["realize", "-f", str(project_file)])
        assert result.exit_code == 0, result.output
        assert "hello@windows-x64" in result.output
        assert "BUILT" in result.output

    def test_second_run_cached(self, project_file: Path):
        runner.invoke(app, ["realize", "-f", str(project_file)])
        result = runner.invoke(app, ["realize", "-f", str(project_file)])
        assert result.exit_code == 0
        assert "CACHED" in result.output
        assert "BUILT" not in result.output

    def test_single_target(self, project_file: Path):
        result = runner.invoke(app, ["realize", "hello", "-t", "linux-x64", "-f", str(project_file)])
        assert result.exit_code == 0
        assert "hello@windows-x64" not in result.output

    def test_build_failure_exit_code_and_log(self, tmp_dir: Path):
        path = _write_project(tmp_dir, """
[units.broken]
command = "echo 'ld: cannot find -lSDL2' >&2; exit 1"
outputs = ["x"]
""")
        result = runner.invoke(app, ["realize", "-f", str(path)])
        assert result.exit_code == 3
        assert "cannot find -lSDL2" in result.output

    def test_cycle_exit_code(self, tmp_dir: Path):
        path = _write_project(tmp_dir, """
[units.a]
deps = ["b"]
command = "true"
outputs = ["x"]

[units.b]
deps = ["a"]
command = "true"
outputs = ["x"]
""")
        result = runner.invoke(app, ["realize", "-f", str(path)])
        assert result.exit_code == 2
        assert "cycle" in result.output.lower()

    def test_missing_declaration_file(self, tmp_dir: Path):
        result = runner.invoke(app, ["realize", "-f", str(tmp_dir / "missing.toml")])
        assert result.exit_code == 2

    def test_unknown_unit(self, project_file: Path):
        result = runner.invoke(app, ["realize", "nope", "-f", str(project_file)])
        assert result.exit_code == 2


class TestInspectionCommands:
    def test_graph(self, project_file: Path):
        result = runner.invoke(app, ["graph", "-f", str(project_file)])
        assert result.exit_code == 0
        assert "gen@linux-x64" in result.output
        assert "hello@windows-x64" in result.output

    def test_graph_ids(self, project_file: Path):
        result = runner.invoke(app, ["graph", "--ids", "-f", str(project_file)])
        assert result.exit_code == 0
        assert "sha256:" in result.output

    def test_env_cross(self, project_file: Path):
        result = runner.invoke(app, ["env", "hello", "-t", "windows-x64", "-f", str(project_file)])
        assert result.exit_code == 0
        assert "x86_64-w64-mingw32" in result.output
        assert "CROSS_COMPILE" in result.output

    def test_env_native(self, project_file: Path):
        result = runner.invoke(app, ["env", "gen", "-f", str(project_file)])
        assert result.exit_code == 0
        assert "TARGET_TRIPLE" not in result.output

    def test_env_ambiguous_target(self, project_file: Path):
        result = runner.invoke(app, ["env", "hello", "-f", str(project_file)])
        assert result.exit_code == 2


class TestBundleAndPublish:
    def test_bundle_export(self, project_file: Path, tmp_dir: Path):
        result = runner.invoke(app, [
            "bundle", "hello", "-t", "windows-x64", "-o", str(tmp_dir / "dist"), "-f", str(project_file),
        ])
        assert result.exit_code == 0, result.output
        assert (tmp_dir / "dist" / "hello-windows-x64.zip").exists()

    def test_unknown_bundle(self, project_file: Path):
        result = runner.invoke(app, ["bundle", "nope", "-f", str(project_file)])
        assert result.exit_code == 2

    def test_publish_then_unchanged(self, project_file: Path):
        first = runner.invoke(app, ["publish", "v1.0.0", "-f", str(project_file)])
        assert first.exit_code == 0, first.output
        assert "published" in first.output
        second = runner.invoke(app, ["publish", "v1.0.0", "-f", str(project_file)])
        assert second.exit_code == 0
        assert "unchanged" in second.output

    def test_publish_conflict_and_overwrite(self, project_file: Path):
        runner.invoke(app, ["publish", "v1.0.0", "-f", str(project_file)])
        (project_file.parent / "hello" / "greeting.txt").write_text("goodbye\n")
        conflict = runner.invoke(app, ["publish", "v1.0.0", "-f", str(project_file)])
        assert conflict.exit_code == 4
        assert "--overwrite" in conflict.output
        forced = runner.invoke(app, ["publish", "v1.0.0", "--overwrite", "-f", str(project_file)])
        assert forced.exit_code == 0
        assert "overwritten" in forced.output
