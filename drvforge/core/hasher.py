"""Canonical hashing helpers for content addressing.

Every identifier in drvforge is ``sha256:<hex>`` over canonical bytes:
sorted keys, compact separators, ASCII-only JSON.
"""

from __future__ import annotations

import hashlib
import json
from pathlib import Path
from typing import Any

_CHUNK = 1 << 16


def canonical_json_bytes(obj: Any) -> bytes:
    """Produce canonical JSON bytes — deterministic, sorted, compact."""
    return json.dumps(
        obj, sort_keys=True, separators=(",", ":"), ensure_ascii=True
    ).encode("utf-8")


def sha256_hex(data: bytes) -> str:
    """Return the SHA-256 hex digest of raw bytes."""
    return hashlib.sha256(data).hexdigest()


def sha256_file(path: Path) -> str:
    """Return the SHA-256 hex digest of a file, read in chunks."""
    digest = hashlib.sha256()
    with open(path, "rb") as fh:
        for chunk in iter(lambda: fh.read(_CHUNK), b""):
            digest.update(chunk)
    return digest.hexdigest()


def content_address(obj: Any) -> str:
    """Content-address a JSON-serializable object as ``sha256:<hex>``."""
    return f"sha256:{sha256_hex(canonical_json_bytes(obj))}"


def strip_prefix(address: str) -> str:
    """Strip the ``sha256:`` prefix from a content address, if present."""
    return address.removeprefix("sha256:")


def tree_listing(root: Path) -> list[dict[str, Any]]:
    """List a directory tree as sorted ``(path, kind, digest, executable)`` rows.

    Symlinks are recorded by their target text and never followed.
    """
    rows: list[dict[str, Any]] = []
    for path in sorted(root.rglob("*"), key=lambda p: p.relative_to(root).as_posix()):
        rel = path.relative_to(root).as_posix()
        if path.is_symlink():
            rows.append({"path": rel, "kind": "symlink", "target": str(path.readlink())})
        elif path.is_dir():
            rows.append({"path": rel, "kind": "dir"})
        else:
            rows.append({
                "path": rel,
                "kind": "file",
                "sha256": sha256_file(path),
                "executable": bool(path.stat().st_mode & 0o111),
            })
    return rows


def tree_address(root: Path) -> str:
    """Content address of a directory tree (canonical listing hash)."""
    return content_address(tree_listing(root))
