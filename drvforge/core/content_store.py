"""Content-addressed, append-only store for blobs, trees and realizations.

Storage layout::

    {base}/blobs/{hex[0:2]}/{hex[2:4]}/{hex}     file contents
    {base}/trees/{hex}/                          materialized directory trees
    {base}/drv/{hex}.json                        realization records by drv_id
    {base}/snapshots/{hex}.json                  source snapshot manifests
    {base}/tmp/                                  staging for atomic renames

There is no delete method. Writers for the same key collapse to a single
winner behind a per-key lock; a reader of a key waits while that key is
being written. Distinct keys never contend.
"""

from __future__ import annotations

import logging
import os
import shutil
import stat
import tempfile
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

from drvforge.core.hasher import (
    sha256_file,
    sha256_hex,
    strip_prefix,
    tree_address,
)
from drvforge.errors import StoreIntegrityError
from drvforge.models.artifacts import Artifact, ArtifactKind, Realization
from drvforge.models.sources import SourceSnapshot

logger = logging.getLogger(__name__)


class _KeyedLocks:
    """One lock per store key, alive only while someone holds or awaits it."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: dict[str, tuple[threading.Lock, list[int]]] = {}

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)

    @contextmanager
    def hold(self, key: str) -> Iterator[None]:
        with self._guard:
            lock, users = self._locks.setdefault(key, (threading.Lock(), [0]))
            users[0] += 1
        try:
            with lock:
                yield
        finally:
            with self._guard:
                users[0] -= 1
                if users[0] == 0:
                    del self._locks[key]


def _make_read_only(path: Path) -> None:
    """Drop write bits on every file below ``path`` (directories stay writable)."""
    targets = [path] if path.is_file() else [p for p in path.rglob("*") if p.is_file()]
    for target in targets:
        if target.is_symlink():
            continue
        mode = target.stat().st_mode
        target.chmod(mode & ~(stat.S_IWUSR | stat.S_IWGRP | stat.S_IWOTH))


class ContentStore:
    """SHA-256 keyed, immutable store shared by every build in an evaluation.

    Parameters
    ----------
    base_path:
        Root directory for the store. Created if missing.
    """

    def __init__(self, base_path: Path) -> None:
        self._base = Path(base_path)
        for sub in ("blobs", "trees", "drv", "snapshots", "tmp"):
            (self._base / sub).mkdir(parents=True, exist_ok=True)
        self._locks = _KeyedLocks()

    @property
    def base_path(self) -> Path:
        return self._base

    # ------------------------------------------------------------------
    # Paths
    # ------------------------------------------------------------------

    def blob_path(self, address: str) -> Path:
        digest = strip_prefix(address)
        return self._base / "blobs" / digest[:2] / digest[2:4] / digest

    def tree_path(self, address: str) -> Path:
        return self._base / "trees" / strip_prefix(address)

    def artifact_path(self, artifact: Artifact) -> Path:
        if artifact.kind == ArtifactKind.TREE:
            return self.tree_path(artifact.content_address)
        return self.blob_path(artifact.content_address)

    def _staging_dir(self) -> Path:
        return Path(tempfile.mkdtemp(prefix="stage-", dir=self._base / "tmp"))

    # ------------------------------------------------------------------
    # Blobs
    # ------------------------------------------------------------------

    def store_bytes(self, data: bytes) -> str:
        """Store raw bytes and return their ``sha256:`` address."""
        digest = sha256_hex(data)
        staging = self._staging_dir()
        try:
            staged = staging / "blob"
            staged.write_bytes(data)
            self._commit_blob(digest, staged)
        finally:
            shutil.rmtree(staging, ignore_errors=True)
        return f"sha256:{digest}"

    def store_file(self, path: Path) -> str:
        """Copy a file into the store, keyed by its content hash."""
        digest = sha256_file(path)
        if self.blob_path(digest).exists():
            return f"sha256:{digest}"
        staging = self._staging_dir()
        try:
            staged = staging / "blob"
            shutil.copyfile(path, staged)
            self._commit_blob(digest, staged)
        finally:
            shutil.rmtree(staging, ignore_errors=True)
        return f"sha256:{digest}"

    def _commit_blob(self, digest: str, staged: Path) -> None:
        target = self.blob_path(digest)
        with self._locks.hold(digest):
            if target.exists():
                return
            if sha256_file(staged) != digest:
                raise StoreIntegrityError(f"Staged blob does not hash to {digest}")
            target.parent.mkdir(parents=True, exist_ok=True)
            _make_read_only(staged)
            os.replace(staged, target)

    def retrieve(self, address: str) -> bytes:
        """Return blob bytes by address (``sha256:<hex>`` or bare hex)."""
        path = self.blob_path(address)
        with self._locks.hold(strip_prefix(address)):
            if not path.exists():
                raise FileNotFoundError(f"Blob not found: {address}")
            return path.read_bytes()

    # ------------------------------------------------------------------
    # Trees
    # ------------------------------------------------------------------

    def store_tree(self, root: Path) -> str:
        """Copy a directory tree into the store, keyed by its listing hash."""
        address = tree_address(root)
        digest = strip_prefix(address)
        target = self.tree_path(digest)
        with self._locks.hold(digest):
            if target.exists():
                return address
            staging = self._staging_dir()
            try:
                staged = staging / "tree"
                shutil.copytree(root, staged, symlinks=True)
                if tree_address(staged) != address:
                    raise StoreIntegrityError(
                        f"Tree copied from {root} does not hash to {address}"
                    )
                _make_read_only(staged)
                os.rename(staged, target)
            finally:
                shutil.rmtree(staging, ignore_errors=True)
        return address

    # ------------------------------------------------------------------
    # Artifacts
    # ------------------------------------------------------------------

    def ingest(self, path: Path, *, name: str, drv_id: str = "") -> Artifact:
        """Store a build output (file or directory) and describe it."""
        if path.is_dir() and not path.is_symlink():
            address = self.store_tree(path)
            size = sum(p.stat().st_size for p in path.rglob("*") if p.is_file() and not p.is_symlink())
            return Artifact(
                name=name,
                content_address=address,
                kind=ArtifactKind.TREE,
                size_bytes=size,
                drv_id=drv_id,
            )
        address = self.store_file(path)
        return Artifact(
            name=name,
            content_address=address,
            kind=ArtifactKind.FILE,
            size_bytes=path.stat().st_size,
            executable=bool(path.stat().st_mode & 0o111),
            drv_id=drv_id,
        )

    def exists(self, address: str) -> bool:
        return self.blob_path(address).exists() or self.tree_path(address).exists()

    def verify(self, artifact: Artifact) -> bool:
        """Re-hash stored content and compare it against its address."""
        path = self.artifact_path(artifact)
        if not path.exists():
            return False
        digest = strip_prefix(artifact.content_address)
        if artifact.kind == ArtifactKind.TREE:
            return strip_prefix(tree_address(path)) == digest
        return sha256_file(path) == digest

    # ------------------------------------------------------------------
    # Realizations
    # ------------------------------------------------------------------

    def _realization_path(self, drv_id: str) -> Path:
        return self._base / "drv" / f"{strip_prefix(drv_id)}.json"

    def register_realization(self, realization: Realization) -> Realization:
        """Record the outputs of a derivation; the first registration wins."""
        digest = strip_prefix(realization.drv_id)
        path = self._realization_path(digest)
        with self._locks.hold(f"drv:{digest}"):
            if path.exists():
                return Realization.model_validate_json(path.read_text("utf-8"))
            for artifact in realization.outputs.values():
                if not self.exists(artifact.content_address):
                    raise StoreIntegrityError(
                        f"Refusing to register {realization.key}: output "
                        f"{artifact.name} ({artifact.content_address}) is not stored"
                    )
            staging = self._staging_dir()
            try:
                staged = staging / "drv.json"
                staged.write_text(
                    realization.model_copy(update={"cached": False}).model_dump_json(),
                    "utf-8",
                )
                os.replace(staged, path)
            finally:
                shutil.rmtree(staging, ignore_errors=True)
        logger.debug("registered %s as %s", realization.key, realization.drv_id)
        return realization

    def lookup_realization(self, drv_id: str) -> Realization | None:
        """Return the registered outputs for ``drv_id``, or None.

        Records whose outputs are missing from the store are ignored.
        """
        digest = strip_prefix(drv_id)
        path = self._realization_path(digest)
        with self._locks.hold(f"drv:{digest}"):
            if not path.exists():
                return None
            realization = Realization.model_validate_json(path.read_text("utf-8"))
        if not all(self.exists(a.content_address) for a in realization.outputs.values()):
            logger.warning("realization %s has missing outputs; ignoring", drv_id)
            return None
        return realization

    # ------------------------------------------------------------------
    # Source snapshots
    # ------------------------------------------------------------------

    def _snapshot_path(self, snapshot_id: str) -> Path:
        return self._base / "snapshots" / f"{strip_prefix(snapshot_id)}.json"

    def store_snapshot(self, snapshot: SourceSnapshot) -> None:
        path = self._snapshot_path(snapshot.snapshot_id)
        with self._locks.hold(f"snap:{strip_prefix(snapshot.snapshot_id)}"):
            if path.exists():
                return
            staging = self._staging_dir()
            try:
                staged = staging / "snapshot.json"
                staged.write_text(snapshot.model_dump_json(), "utf-8")
                os.replace(staged, path)
            finally:
                shutil.rmtree(staging, ignore_errors=True)

    def load_snapshot(self, snapshot_id: str) -> SourceSnapshot:
        path = self._snapshot_path(snapshot_id)
        if not path.exists():
            raise FileNotFoundError(f"Snapshot not found: {snapshot_id}")
        return SourceSnapshot.model_validate_json(path.read_text("utf-8"))

    def materialize_snapshot(
        self, snapshot: SourceSnapshot, dest: Path, *, writable: bool = False
    ) -> None:
        """Recreate a snapshot's files under ``dest`` from stored blobs."""
        file_mode, exec_mode = (0o644, 0o755) if writable else (0o444, 0o555)
        dest.mkdir(parents=True, exist_ok=True)
        for entry in snapshot.entries:
            target = dest / entry.path
            target.parent.mkdir(parents=True, exist_ok=True)
            if entry.symlink_target is not None:
                target.symlink_to(entry.symlink_target)
                continue
            shutil.copyfile(self.blob_path(entry.sha256), target)
            target.chmod(exec_mode if entry.executable else file_mode)
