"""Platform model — (architecture, operating system, ABI).

Short labels such as ``linux-x64`` are used in declarations and asset names;
compiler triples such as ``x86_64-w64-mingw32`` are injected into cross
build environments.
"""

from __future__ import annotations

import platform as _platform

from pydantic import BaseModel, ConfigDict

# arch aliases -> canonical arch
_ARCH_ALIASES: dict[str, str] = {
    "x64": "x86_64",
    "x86_64": "x86_64",
    "amd64": "x86_64",
    "arm64": "aarch64",
    "aarch64": "aarch64",
    "x86": "i686",
    "i686": "i686",
}

# canonical arch -> short label arch
_ARCH_LABELS: dict[str, str] = {
    "x86_64": "x64",
    "aarch64": "arm64",
    "i686": "x86",
}

_OS_ALIASES: dict[str, str] = {
    "linux": "linux",
    "windows": "windows",
    "win": "windows",
    "w64": "windows",
    "macos": "macos",
    "darwin": "macos",
    "apple": "macos",
}

# os -> default abi
_DEFAULT_ABI: dict[str, str] = {
    "linux": "gnu",
    "windows": "gnu",
    "macos": "darwin",
}


class PlatformParseError(ValueError):
    """Raised when a platform label or triple cannot be understood."""


class Platform(BaseModel):
    """Where an artifact runs (target) or where a build executes (host)."""

    model_config = ConfigDict(frozen=True)

    arch: str
    os: str
    abi: str

    @property
    def label(self) -> str:
        """Short form, e.g. ``linux-x64`` or ``linux-x64-musl``."""
        base = f"{self.os}-{_ARCH_LABELS.get(self.arch, self.arch)}"
        if self.abi != _DEFAULT_ABI.get(self.os, self.abi):
            return f"{base}-{self.abi}"
        return base

    @property
    def triple(self) -> str:
        """Compiler triple, e.g. ``x86_64-unknown-linux-gnu``."""
        if self.os == "windows":
            if self.abi == "msvc":
                return f"{self.arch}-pc-windows-msvc"
            return f"{self.arch}-w64-mingw32"
        if self.os == "macos":
            return f"{self.arch}-apple-darwin"
        return f"{self.arch}-unknown-{self.os}-{self.abi}"

    @property
    def rust_triple(self) -> str:
        """Triple in the form cargo expects for ``--target``."""
        if self.os == "windows":
            return f"{self.arch}-pc-windows-{self.abi}"
        return self.triple

    def __str__(self) -> str:
        return self.label

    @classmethod
    def parse(cls, text: str) -> Platform:
        """Parse a short label (``windows-x64``) or a compiler triple."""
        raw = text.strip().lower()
        parts = raw.split("-")
        if len(parts) < 2:
            raise PlatformParseError(f"Unrecognised platform: {text!r}")

        # Short label: <os>-<arch>[-<abi>]
        if parts[0] in _OS_ALIASES and parts[1] in _ARCH_ALIASES:
            os_name = _OS_ALIASES[parts[0]]
            abi = parts[2] if len(parts) > 2 else _DEFAULT_ABI[os_name]
            return cls(arch=_ARCH_ALIASES[parts[1]], os=os_name, abi=abi)

        # Triple: <arch>-<vendor>-<os>[-<abi>] or <arch>-w64-mingw32
        if parts[0] in _ARCH_ALIASES:
            arch = _ARCH_ALIASES[parts[0]]
            rest = parts[1:]
            if rest[0] == "w64" or "windows" in rest:
                abi = "msvc" if "msvc" in rest else "gnu"
                return cls(arch=arch, os="windows", abi=abi)
            if "darwin" in rest or "apple" in rest:
                return cls(arch=arch, os="macos", abi="darwin")
            if "linux" in rest:
                idx = rest.index("linux")
                abi = rest[idx + 1] if idx + 1 < len(rest) else "gnu"
                return cls(arch=arch, os="linux", abi=abi)

        raise PlatformParseError(f"Unrecognised platform: {text!r}")

    @classmethod
    def host(cls) -> Platform:
        """Detect the platform this process runs on."""
        arch = _ARCH_ALIASES.get(_platform.machine().lower(), _platform.machine().lower())
        os_name = _OS_ALIASES.get(_platform.system().lower(), _platform.system().lower())
        return cls(arch=arch, os=os_name, abi=_DEFAULT_ABI.get(os_name, "unknown"))
