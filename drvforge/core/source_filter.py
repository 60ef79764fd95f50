"""Source filter — select the build-relevant part of a source tree.

A ``FilterPolicy`` is a list of glob rules. Patterns without a slash match
any single path component (so excluding a directory name prunes the whole
subtree); patterns with a slash match the full posix path relative to the
root. When ``include`` rules are given, only files matching one of them are
kept. ``link_exclude`` names are matched against symlinks only.
"""

from __future__ import annotations

import logging
import os
import threading
from fnmatch import fnmatchcase
from pathlib import Path

from pydantic import BaseModel, ConfigDict

from drvforge.core.content_store import ContentStore
from drvforge.core.hasher import content_address, sha256_file
from drvforge.models.sources import SourceEntry, SourceSnapshot

logger = logging.getLogger(__name__)

# VCS metadata, editor leftovers, compiled objects, generated lock files and
# the engine's own configuration.
DEFAULT_EXCLUDES: tuple[str, ...] = (
    ".git",
    ".hg",
    ".svn",
    "CVS",
    "*~",
    ".*.swp",
    ".*.swo",
    "#*#",
    ".#*",
    "__pycache__",
    "*.o",
    "*.so",
    "flake.lock",
    "*.nix",
    "drvforge.lock",
    "drvforge.toml",
    ".drvforge",
)

# Build result links. Only symlinks are dropped; a real `result/` directory is source.
DEFAULT_LINK_EXCLUDES: tuple[str, ...] = ("result", "result-*")


class FilterPolicy(BaseModel):
    """Inclusion/exclusion rules for a source tree."""

    model_config = ConfigDict(frozen=True)

    exclude: tuple[str, ...] = DEFAULT_EXCLUDES
    include: tuple[str, ...] = ()
    link_exclude: tuple[str, ...] = DEFAULT_LINK_EXCLUDES

    def extended(
        self, exclude: list[str] | None = None, include: list[str] | None = None
    ) -> FilterPolicy:
        """Return a policy with extra rules appended."""
        return FilterPolicy(
            exclude=self.exclude + tuple(exclude or ()),
            include=self.include + tuple(include or ()),
            link_exclude=self.link_exclude,
        )

    @property
    def policy_hash(self) -> str:
        return content_address(self.model_dump(mode="json"))


def _matches(rel: str, patterns: tuple[str, ...]) -> bool:
    parts = rel.split("/")
    for pattern in patterns:
        if "/" in pattern:
            if fnmatchcase(rel, pattern.strip("/")):
                return True
        elif any(fnmatchcase(part, pattern) for part in parts):
            return True
    return False


class SourceFilter:
    """Produce deterministic, content-addressed snapshots of source trees.

    Snapshots are cached per (root, policy, file stat signature); a tree that
    has not changed on disk is not re-hashed.

    Parameters
    ----------
    policy:
        The rules to apply. Defaults to ``FilterPolicy()``.
    """

    def __init__(self, policy: FilterPolicy | None = None) -> None:
        self.policy = policy or FilterPolicy()
        self._cache: dict[tuple, SourceSnapshot] = {}
        self._lock = threading.Lock()

    def accepts(self, rel: str) -> bool:
        """Whether a relative file path passes the policy."""
        if _matches(rel, self.policy.exclude):
            return False
        if self.policy.include:
            return _matches(rel, self.policy.include)
        return True

    def accepts_link(self, rel: str) -> bool:
        """Whether a symlink at ``rel`` passes the policy."""
        if _matches(rel.rsplit("/", 1)[-1], self.policy.link_exclude):
            return False
        return self.accepts(rel)

    def _walk(self, root: Path) -> list[str]:
        kept: list[str] = []
        for dirpath, dirnames, filenames in os.walk(root):
            base = Path(dirpath).relative_to(root).as_posix()
            prefix = "" if base == "." else f"{base}/"
            descend: list[str] = []
            for name in dirnames:
                rel = f"{prefix}{name}"
                if (Path(dirpath) / name).is_symlink():
                    # recorded as a link, never followed
                    if self.accepts_link(rel):
                        kept.append(rel)
                elif not _matches(rel, self.policy.exclude):
                    descend.append(name)
            dirnames[:] = sorted(descend)
            for name in filenames:
                rel = f"{prefix}{name}"
                accept = self.accepts_link if (Path(dirpath) / name).is_symlink() else self.accepts
                if accept(rel):
                    kept.append(rel)
        return sorted(kept)

    def snapshot(self, root: Path, store: ContentStore | None = None) -> SourceSnapshot:
        """Filter ``root`` and return its snapshot.

        With a ``store``, every kept file is copied in as a blob and the
        snapshot manifest is recorded, so the snapshot can be materialized
        later without the original tree.
        """
        root = Path(root).resolve()
        if not root.is_dir():
            raise FileNotFoundError(f"Source root is not a directory: {root}")

        paths = self._walk(root)
        signature = tuple(
            (rel, st.st_size, st.st_mtime_ns, st.st_mode)
            for rel in paths
            for st in [os.lstat(root / rel)]
        )
        cache_key = (str(root), self.policy.policy_hash, signature)
        with self._lock:
            cached = self._cache.get(cache_key)
        if cached is not None and (store is None or _stored(store, cached)):
            return cached

        entries: list[SourceEntry] = []
        for rel in paths:
            path = root / rel
            if path.is_symlink():
                target = os.readlink(path)
                entries.append(SourceEntry(
                    path=rel,
                    sha256=content_address({"symlink": target}).removeprefix("sha256:"),
                    symlink_target=target,
                ))
                continue
            if store is not None:
                digest = store.store_file(path).removeprefix("sha256:")
            else:
                digest = sha256_file(path)
            entries.append(SourceEntry(
                path=rel,
                sha256=digest,
                executable=bool(path.stat().st_mode & 0o111),
            ))

        policy_hash = self.policy.policy_hash
        snapshot_id = content_address({
            "policy": policy_hash,
            "entries": [e.model_dump(mode="json") for e in entries],
        })
        snapshot = SourceSnapshot(
            snapshot_id=snapshot_id,
            root=str(root),
            policy_hash=policy_hash,
            entries=tuple(entries),
        )
        if store is not None:
            store.store_snapshot(snapshot)
        with self._lock:
            self._cache[cache_key] = snapshot
        logger.debug("snapshot %s: %d files -> %s", root, len(entries), snapshot_id)
        return snapshot


def _stored(store: ContentStore, snapshot: SourceSnapshot) -> bool:
    try:
        store.load_snapshot(snapshot.snapshot_id)
    except FileNotFoundError:
        return False
    return True
