"""Source snapshot models."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict


class SourceEntry(BaseModel):
    """One file kept by the source filter."""

    model_config = ConfigDict(frozen=True)

    path: str  # posix path relative to the snapshot root
    sha256: str
    executable: bool = False
    symlink_target: str | None = None


class SourceSnapshot(BaseModel):
    """Immutable, content-addressed result of filtering a source tree.

    The ``snapshot_id`` is a hash over the sorted entries and the filter
    policy, so the same tree under the same policy always yields the same id.
    """

    model_config = ConfigDict(frozen=True)

    snapshot_id: str  # "sha256:<hex>"
    root: str
    policy_hash: str
    entries: tuple[SourceEntry, ...] = ()

    @property
    def paths(self) -> list[str]:
        return [e.path for e in self.entries]
