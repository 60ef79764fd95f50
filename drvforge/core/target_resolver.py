"""Target resolver — pick a build environment for a (host, target) pair.

Resolution is pure: it reads the merged toolchain table and returns a new
``BuildEnvironment`` value. Native builds get a plain toolchain; cross builds
additionally get the target triple, the cross prefix, a sysroot and
target-built libraries. Native environments never carry ``CROSS_ENV_KEYS``.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable

from drvforge.errors import UnsupportedTargetError
from drvforge.models.environment import (
    BuildEnvironment,
    ToolchainLayer,
    ToolchainSpec,
)
from drvforge.models.platforms import Platform

logger = logging.getLogger(__name__)


BUILTIN_TOOLCHAINS: list[ToolchainLayer] = [
    ToolchainLayer(
        name="native-linux-x64",
        host="linux-x64",
        target="linux-x64",
        cc="gcc",
        cxx="g++",
        ar="ar",
    ),
    ToolchainLayer(
        name="native-linux-arm64",
        host="linux-arm64",
        target="linux-arm64",
        cc="gcc",
        cxx="g++",
        ar="ar",
    ),
    ToolchainLayer(
        name="native-macos-arm64",
        host="macos-arm64",
        target="macos-arm64",
        cc="clang",
        cxx="clang++",
        ar="ar",
    ),
    ToolchainLayer(
        name="native-windows-x64",
        host="windows-x64",
        target="windows-x64",
        cc="gcc",
        cxx="g++",
        ar="ar",
    ),
    ToolchainLayer(
        name="mingw-w64",
        host="linux-x64",
        target="windows-x64",
        cc="x86_64-w64-mingw32-gcc",
        cxx="x86_64-w64-mingw32-g++",
        ar="x86_64-w64-mingw32-ar",
        cross_prefix="x86_64-w64-mingw32-",
        sysroot="/usr/x86_64-w64-mingw32",
        env={"WINDRES": "x86_64-w64-mingw32-windres"},
    ),
    ToolchainLayer(
        name="musl-x64",
        host="linux-x64",
        target="linux-x64-musl",
        cc="x86_64-linux-musl-gcc",
        cxx="x86_64-linux-musl-g++",
        ar="x86_64-linux-musl-ar",
        cross_prefix="x86_64-linux-musl-",
    ),
    ToolchainLayer(
        name="gnu-aarch64",
        host="linux-x64",
        target="linux-arm64",
        cc="aarch64-linux-gnu-gcc",
        cxx="aarch64-linux-gnu-g++",
        ar="aarch64-linux-gnu-ar",
        cross_prefix="aarch64-linux-gnu-",
        sysroot="/usr/aarch64-linux-gnu",
    ),
]


def build_toolchain_table(
    layers: Iterable[ToolchainLayer],
) -> dict[str, ToolchainLayer]:
    """Merge layers by name, in order; later layers override earlier ones."""
    table: dict[str, ToolchainLayer] = {}
    for layer in layers:
        if layer.name in table:
            table[layer.name] = table[layer.name].merge(layer)
        else:
            table[layer.name] = layer
    return table


class TargetResolver:
    """Maps target platforms onto build environments for one host.

    Parameters
    ----------
    host:
        The platform builds execute on.
    layers:
        Extra toolchain layers applied on top of ``BUILTIN_TOOLCHAINS``.
        A layer with an existing name overrides fields of that toolchain;
        a new name adds a toolchain.
    """

    def __init__(
        self,
        host: Platform,
        layers: Iterable[ToolchainLayer] = (),
        *,
        include_builtins: bool = True,
    ) -> None:
        self.host = host
        base = list(BUILTIN_TOOLCHAINS) if include_builtins else []
        self._layers = build_toolchain_table([*base, *layers])
        self._specs: dict[str, ToolchainSpec] = {}
        for layer in self._layers.values():
            try:
                spec = ToolchainSpec.from_layer(layer)
            except ValueError as exc:
                logger.warning("ignoring toolchain %s: %s", layer.name, exc)
                continue
            if spec.host == host:
                # later toolchains for the same pair replace earlier ones
                self._specs[spec.target.label] = spec

    def supported_targets(self) -> list[Platform]:
        return [spec.target for spec in self._specs.values()]

    def toolchain_for(self, target: Platform) -> ToolchainSpec:
        spec = self._specs.get(target.label)
        if spec is None:
            raise UnsupportedTargetError(self.host.label, target.label)
        return spec

    def resolve(
        self,
        target: Platform | str,
        packages: Iterable[str] = (),
    ) -> BuildEnvironment:
        """Return the build environment for ``target``.

        Raises ``UnsupportedTargetError`` if no toolchain covers the pair or
        a requested package has no build for the target.
        """
        if isinstance(target, str):
            target = Platform.parse(target)
        spec = self.toolchain_for(target)

        env: dict[str, str] = {
            "CC": spec.cc,
            "CXX": spec.cxx,
            "AR": spec.ar,
            "HOST_TRIPLE": self.host.triple,
        }
        env.update(spec.env)

        library_paths = list(spec.library_paths)
        package_dirs: dict[str, str] = {}
        pkg_config: list[str] = []
        for name in packages:
            prefix = spec.libraries.get(name)
            if prefix is None:
                raise UnsupportedTargetError(
                    self.host.label,
                    target.label,
                    f"package {name!r} has no build for {target.label}",
                )
            package_dirs[name] = prefix
            env[f"{_env_name(name)}_DIR"] = prefix
            library_paths.append(f"{prefix}/lib")
            pkg_config.append(f"{prefix}/lib/pkgconfig")

        if spec.is_cross:
            env["TARGET_TRIPLE"] = target.triple
            env["CROSS_COMPILE"] = spec.cross_prefix
            env["CARGO_BUILD_TARGET"] = target.rust_triple
            if spec.sysroot:
                env["CROSS_SYSROOT"] = spec.sysroot
            # target libraries only; host .pc files must not leak in
            env["PKG_CONFIG_LIBDIR"] = ":".join(pkg_config)
        elif pkg_config:
            env["PKG_CONFIG_PATH"] = ":".join(pkg_config)
        if library_paths:
            env["LIBRARY_PATH"] = ":".join(library_paths)

        return BuildEnvironment(
            host=self.host,
            target=target,
            toolchain=spec.name,
            is_cross=spec.is_cross,
            target_triple=target.triple if spec.is_cross else None,
            env=dict(sorted(env.items())),
            path=list(spec.bin_paths),
            library_paths=library_paths,
            packages=package_dirs,
        )


def _env_name(package: str) -> str:
    return "".join(c if c.isalnum() else "_" for c in package).upper()
