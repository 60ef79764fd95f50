"""Tests for loading drvforge.toml declaration files."""

from __future__ import annotations

from pathlib import Path

import pytest

from drvforge.core.declarations import load_declarations, parse_declarations
from drvforge.errors import DeclarationError
from drvforge.models.artifacts import BundleFormat

FULL = """
[units.cgt-tools]
src = "."
targets = ["linux-x64", "windows-x64"]
command = "cargo build --release"
outputs = ["bin"]
packages = ["sdl2"]
exclude = ["docs"]

[bundles.cgt-tools]
units = ["cgt-tools"]
format = "tar.gz"

[toolchains.mingw-w64]
libraries = { sdl2 = "/opt/sdl2" }

[release]
bundle = "cgt-tools"
targets = ["windows-x64"]
"""


class TestLoadDeclarations:
    def test_full_file(self, tmp_dir: Path):
        path = tmp_dir / "drvforge.toml"
        path.write_text(FULL)
        project = load_declarations(path)
        assert project.root == tmp_dir.resolve()
        unit = project.units["cgt-tools"]
        assert unit.name == "cgt-tools"
        assert unit.targets == ["linux-x64", "windows-x64"]
        assert unit.packages == ["sdl2"]
        assert project.bundle("cgt-tools").format == BundleFormat.TAR_GZ
        assert project.toolchains[0].name == "mingw-w64"
        assert project.toolchains[0].libraries == {"sdl2": "/opt/sdl2"}
        assert project.release.bundle == "cgt-tools"

    def test_missing_file(self, tmp_dir: Path):
        with pytest.raises(DeclarationError):
            load_declarations(tmp_dir / "nope.toml")

    def test_invalid_toml(self, tmp_dir: Path):
        path = tmp_dir / "drvforge.toml"
        path.write_text("[units.app\n")
        with pytest.raises(DeclarationError):
            load_declarations(path)

    def test_unit_list_keeps_declaration_order(self):
        project = parse_declarations({
            "units": {
                "b": {"command": "true", "outputs": ["x"]},
                "a": {"command": "true", "outputs": ["x"]},
            }
        })
        assert [u.name for u in project.unit_list()] == ["b", "a"]


class TestValidation:
    def test_unknown_section(self):
        with pytest.raises(DeclarationError):
            parse_declarations({"unitz": {}})

    def test_unknown_unit_key(self):
        with pytest.raises(DeclarationError):
            parse_declarations({"units": {"app": {"command": "true", "outputs": ["x"], "colour": "red"}}})

    def test_outputs_required(self):
        with pytest.raises(DeclarationError):
            parse_declarations({"units": {"app": {"command": "true", "outputs": []}}})

    def test_output_must_stay_inside_out(self):
        with pytest.raises(DeclarationError):
            parse_declarations({"units": {"app": {"command": "true", "outputs": ["../escape"]}}})

    def test_duplicate_outputs(self):
        with pytest.raises(DeclarationError):
            parse_declarations({"units": {"app": {"command": "true", "outputs": ["a", "a"]}}})

    def test_conflicting_name(self):
        with pytest.raises(DeclarationError):
            parse_declarations({"units": {"app": {"name": "other", "command": "true", "outputs": ["x"]}}})

    def test_single_target_string(self):
        project = parse_declarations({"units": {"app": {"command": "true", "outputs": ["x"], "targets": "windows-x64"}}})
        assert project.units["app"].targets == ["windows-x64"]

    def test_unknown_bundle(self):
        with pytest.raises(DeclarationError):
            parse_declarations({}).bundle("missing")

    def test_bundle_needs_units(self):
        with pytest.raises(DeclarationError):
            parse_declarations({"bundles": {"b": {"units": []}}})

    def test_bad_bundle_format(self):
        with pytest.raises(DeclarationError):
            parse_declarations({"bundles": {"b": {"units": ["a"], "format": "rar"}}})
