"""Tests for the target resolver — native vs cross environments."""

from __future__ import annotations

import pytest

from drvforge.core.target_resolver import TargetResolver, build_toolchain_table
from drvforge.errors import UnsupportedTargetError
from drvforge.models.environment import CROSS_ENV_KEYS, ToolchainLayer, merge_layers
from drvforge.models.platforms import Platform

SDL2_LAYER = ToolchainLayer(
    name="mingw-w64",
    libraries={"sdl2": "/opt/sdl2/x86_64-w64-mingw32"},
)


class TestNative:
    def test_native_has_no_cross_parameters(self, resolver: TargetResolver):
        env = resolver.resolve("linux-x64")
        assert env.is_cross is False
        assert env.target_triple is None
        assert CROSS_ENV_KEYS.isdisjoint(env.env)
        assert env.cross_parameters == {}

    def test_native_compilers(self, resolver: TargetResolver):
        env = resolver.resolve("linux-x64")
        assert env.env["CC"] == "gcc"
        assert env.env["HOST_TRIPLE"] == "x86_64-unknown-linux-gnu"

    def test_native_packages_use_pkg_config_path(self, host: Platform):
        layer = ToolchainLayer(name="native-linux-x64", libraries={"zlib": "/usr"})
        env = TargetResolver(host, [layer]).resolve("linux-x64", ["zlib"])
        assert env.env["ZLIB_DIR"] == "/usr"
        assert env.env["PKG_CONFIG_PATH"] == "/usr/lib/pkgconfig"
        assert "PKG_CONFIG_LIBDIR" not in env.env


class TestCross:
    def test_windows_from_linux_is_cross(self, resolver: TargetResolver):
        env = resolver.resolve("windows-x64")
        assert env.is_cross is True
        assert env.target_triple == "x86_64-w64-mingw32"
        assert env.env["TARGET_TRIPLE"] == "x86_64-w64-mingw32"
        assert env.env["CROSS_COMPILE"] == "x86_64-w64-mingw32-"
        assert env.env["CARGO_BUILD_TARGET"] == "x86_64-pc-windows-gnu"
        assert env.env["CC"] == "x86_64-w64-mingw32-gcc"
        assert env.env["CROSS_SYSROOT"] == "/usr/x86_64-w64-mingw32"

    def test_cross_libraries_come_from_target_table(self, host: Platform):
        env = TargetResolver(host, [SDL2_LAYER]).resolve("windows-x64", ["sdl2"])
        assert env.env["SDL2_DIR"] == "/opt/sdl2/x86_64-w64-mingw32"
        assert env.env["PKG_CONFIG_LIBDIR"] == "/opt/sdl2/x86_64-w64-mingw32/lib/pkgconfig"
        assert env.library_paths[-1] == "/opt/sdl2/x86_64-w64-mingw32/lib"
        assert env.packages == {"sdl2": "/opt/sdl2/x86_64-w64-mingw32"}

    def test_layer_merge_keeps_builtin_fields(self, host: Platform):
        env = TargetResolver(host, [SDL2_LAYER]).resolve("windows-x64")
        assert env.env["CC"] == "x86_64-w64-mingw32-gcc"
        assert env.env["WINDRES"] == "x86_64-w64-mingw32-windres"

    def test_every_cross_target_has_cross_keys(self, resolver: TargetResolver):
        for target in resolver.supported_targets():
            env = resolver.resolve(target)
            if env.is_cross:
                assert {"TARGET_TRIPLE", "CROSS_COMPILE", "CARGO_BUILD_TARGET"} <= set(env.env)
            else:
                assert CROSS_ENV_KEYS.isdisjoint(env.env)


class TestUnsupported:
    def test_no_toolchain_for_pair(self, resolver: TargetResolver):
        with pytest.raises(UnsupportedTargetError) as exc_info:
            resolver.resolve("macos-arm64")
        assert exc_info.value.target == "macos-arm64"
        assert exc_info.value.host == "linux-x64"

    def test_unknown_package(self, resolver: TargetResolver):
        with pytest.raises(UnsupportedTargetError):
            resolver.resolve("windows-x64", ["sdl2"])

    def test_without_builtins(self, host: Platform):
        with pytest.raises(UnsupportedTargetError):
            TargetResolver(host, include_builtins=False).resolve("linux-x64")


class TestResolution:
    def test_pure(self, resolver: TargetResolver):
        assert resolver.resolve("windows-x64") == resolver.resolve("windows-x64")
        assert resolver.resolve("windows-x64").fingerprint() == resolver.resolve("windows-x64").fingerprint()

    def test_fingerprint_differs_per_target(self, resolver: TargetResolver):
        assert resolver.resolve("linux-x64").fingerprint() != resolver.resolve("windows-x64").fingerprint()

    def test_user_toolchain_adds_target(self, host: Platform):
        layer = ToolchainLayer(
            name="musl-aarch64",
            host="linux-x64",
            target="aarch64-unknown-linux-musl",
            cc="aarch64-linux-musl-gcc",
            cross_prefix="aarch64-linux-musl-",
        )
        env = TargetResolver(host, [layer]).resolve("linux-arm64-musl")
        assert env.toolchain == "musl-aarch64"
        assert env.env["CROSS_COMPILE"] == "aarch64-linux-musl-"
        assert "CROSS_SYSROOT" not in env.env

    def test_incomplete_user_toolchain_ignored(self, host: Platform):
        resolver = TargetResolver(host, [ToolchainLayer(name="half", cc="tcc")])
        assert "half" not in [resolver.toolchain_for(t).name for t in resolver.supported_targets()]


class TestLayers:
    def test_merge_scalars_and_dicts(self):
        base = ToolchainLayer(name="t", cc="gcc", env={"A": "1"}, bin_paths=["/a"])
        over = ToolchainLayer(name="t", cc="clang", env={"B": "2"}, bin_paths=["/b"])
        merged = base.merge(over)
        assert merged.cc == "clang"
        assert merged.env == {"A": "1", "B": "2"}
        assert merged.bin_paths == ["/b"]

    def test_unset_fields_defer(self):
        merged = ToolchainLayer(name="t", cc="gcc").merge(ToolchainLayer(name="t", ar="llvm-ar"))
        assert merged.cc == "gcc"
        assert merged.ar == "llvm-ar"

    def test_merge_layers_order(self):
        merged = merge_layers([
            ToolchainLayer(name="t", cc="a"),
            ToolchainLayer(name="t", cc="b"),
            ToolchainLayer(name="t", cc="c"),
        ])
        assert merged.cc == "c"

    def test_merge_layers_empty(self):
        with pytest.raises(ValueError):
            merge_layers([])

    def test_table_merges_by_name(self):
        table = build_toolchain_table([
            ToolchainLayer(name="x", cc="gcc"),
            ToolchainLayer(name="y", cc="clang"),
            ToolchainLayer(name="x", cxx="g++"),
        ])
        assert list(table) == ["x", "y"]
        assert table["x"].cc == "gcc"
        assert table["x"].cxx == "g++"
