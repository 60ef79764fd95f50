"""Content-addressed artifact and bundle models (immutable)."""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class ArtifactKind(str, Enum):
    FILE = "file"
    TREE = "tree"


class Artifact(BaseModel):
    """A realized derivation output living in the content store.

    The content_address is both the identity and the integrity check: for a
    file it is the hash of its bytes, for a tree the hash of its canonical
    listing.
    """

    model_config = ConfigDict(frozen=True)

    name: str
    content_address: str  # "sha256:<hex>"
    kind: ArtifactKind
    size_bytes: int = 0
    executable: bool = False
    drv_id: str = ""  # provenance


class Realization(BaseModel):
    """The registered outputs of one derivation."""

    model_config = ConfigDict(frozen=True)

    drv_id: str
    key: str
    outputs: dict[str, Artifact]  # declared output order
    cached: bool = False

    def output_ids(self) -> dict[str, str]:
        return {name: a.content_address for name, a in self.outputs.items()}


class BundleFormat(str, Enum):
    ZIP = "zip"
    TAR_GZ = "tar.gz"


class BundleSpec(BaseModel):
    """Declared bundle: which units go in, and how they are packed."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    name: str
    units: list[str] = Field(min_length=1)
    format: BundleFormat = BundleFormat.ZIP
    targets: list[str] = []


class BundleEntry(BaseModel):
    """One file in a bundle, with its provenance."""

    model_config = ConfigDict(frozen=True)

    path: str  # path inside the bundle root
    content_address: str
    drv_id: str
    unit: str
    output: str
    executable: bool = False
    symlink_target: str | None = None


class BundleManifest(BaseModel):
    """Ordered listing of a bundle's contents."""

    model_config = ConfigDict(frozen=True)

    bundle: str
    platform: str
    root: str
    entries: list[BundleEntry]
    derivations: dict[str, str] = {}  # unit -> drv_id


class Bundle(BaseModel):
    """A packaged, distributable collection of artifacts for one platform."""

    model_config = ConfigDict(frozen=True)

    name: str
    platform: str
    format: BundleFormat
    asset_name: str  # "<bundle-name>-<platform>.<ext>"
    content_address: str
    size_bytes: int
    path: str  # location of the archive in the content store
    manifest: BundleManifest
