"""Artifact bundler — pack derivation outputs into deterministic archives.

Layout inside every archive::

    {bundle}-{platform}/MANIFEST.json
    {bundle}-{platform}/{output}              file outputs
    {bundle}-{platform}/{output}/{relpath}    files of tree outputs

Entries are written in manifest order (units as declared, outputs as
declared, tree files sorted by path) with fixed timestamps, owners and
permissions, so the same artifacts always produce byte-identical archives.
"""

from __future__ import annotations

import gzip
import io
import json
import logging
import shutil
import tarfile
import tempfile
import zipfile
from collections.abc import Iterable
from pathlib import Path

from drvforge.core.content_store import ContentStore
from drvforge.core.hasher import tree_listing
from drvforge.errors import BundleConflictError
from drvforge.models.artifacts import (
    ArtifactKind,
    Bundle,
    BundleEntry,
    BundleFormat,
    BundleManifest,
    BundleSpec,
    Realization,
)
from drvforge.models.platforms import Platform

logger = logging.getLogger(__name__)

MANIFEST_NAME = "MANIFEST.json"
_ZIP_EPOCH = (1980, 1, 1, 0, 0, 0)


def asset_name(bundle: str, platform: Platform | str, fmt: BundleFormat) -> str:
    """``<bundle-name>-<target-platform>.<ext>``."""
    label = platform.label if isinstance(platform, Platform) else platform
    return f"{bundle}-{label}.{fmt.value}"


class Bundler:
    """Builds bundles from realized derivations.

    Parameters
    ----------
    store:
        Content store holding the artifacts; finished archives are stored
        there too.
    """

    def __init__(self, store: ContentStore) -> None:
        self._store = store

    # ------------------------------------------------------------------
    # Manifest
    # ------------------------------------------------------------------

    def manifest(
        self,
        spec: BundleSpec,
        platform: Platform,
        realizations: Iterable[tuple[str, Realization]],
    ) -> BundleManifest:
        """List every bundle entry in declared order.

        Raises ``BundleConflictError`` when two entries share a path.
        """
        entries: list[BundleEntry] = []
        owners: dict[str, str] = {MANIFEST_NAME: "the bundle manifest"}
        derivations: dict[str, str] = {}

        def add(entry: BundleEntry) -> None:
            owner = f"{entry.unit}:{entry.output}"
            if entry.path in owners:
                raise BundleConflictError(entry.path, owners[entry.path], owner)
            owners[entry.path] = owner
            entries.append(entry)

        for unit, realization in realizations:
            derivations[unit] = realization.drv_id
            for output, artifact in realization.outputs.items():
                if artifact.kind == ArtifactKind.FILE:
                    add(BundleEntry(
                        path=output,
                        content_address=artifact.content_address,
                        drv_id=realization.drv_id,
                        unit=unit,
                        output=output,
                        executable=artifact.executable,
                    ))
                    continue
                tree = self._store.tree_path(artifact.content_address)
                for row in tree_listing(tree):
                    if row["kind"] == "dir":
                        continue
                    add(BundleEntry(
                        path=f"{output}/{row['path']}",
                        content_address=(
                            f"sha256:{row['sha256']}" if row["kind"] == "file" else ""
                        ),
                        drv_id=realization.drv_id,
                        unit=unit,
                        output=output,
                        executable=row.get("executable", False),
                        symlink_target=row.get("target"),
                    ))

        return BundleManifest(
            bundle=spec.name,
            platform=platform.label,
            root=f"{spec.name}-{platform.label}",
            entries=entries,
            derivations=derivations,
        )

    # ------------------------------------------------------------------
    # Packing
    # ------------------------------------------------------------------

    def bundle(
        self,
        spec: BundleSpec,
        platform: Platform | str,
        realizations: Iterable[tuple[str, Realization]],
    ) -> Bundle:
        """Pack the realizations into an archive and store it."""
        if isinstance(platform, str):
            platform = Platform.parse(platform)
        realizations = list(realizations)
        manifest = self.manifest(spec, platform, realizations)
        sources = self._entry_sources(realizations)

        staging = Path(tempfile.mkdtemp(prefix="bundle-", dir=self._store.base_path / "tmp"))
        try:
            archive = staging / "archive"
            with open(archive, "wb") as fh:
                if spec.format == BundleFormat.ZIP:
                    self._write_zip(fh, manifest, sources)
                else:
                    self._write_tar_gz(fh, manifest, sources)
            address = self._store.store_file(archive)
            size = archive.stat().st_size
        finally:
            shutil.rmtree(staging, ignore_errors=True)

        name = asset_name(spec.name, platform, spec.format)
        logger.info("bundled %s (%d entries) as %s", name, len(manifest.entries), address)
        return Bundle(
            name=spec.name,
            platform=platform.label,
            format=spec.format,
            asset_name=name,
            content_address=address,
            size_bytes=size,
            path=str(self._store.blob_path(address)),
            manifest=manifest,
        )

    def export(self, bundle: Bundle, dest_dir: Path) -> Path:
        """Copy a bundle's archive out of the store under its asset name."""
        dest_dir.mkdir(parents=True, exist_ok=True)
        dest = dest_dir / bundle.asset_name
        shutil.copyfile(bundle.path, dest)
        return dest

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _entry_sources(
        self, realizations: list[tuple[str, Realization]]
    ) -> dict[tuple[str, str], Path]:
        """Map (unit, entry path) to the file in the store."""
        sources: dict[tuple[str, str], Path] = {}
        for unit, realization in realizations:
            for output, artifact in realization.outputs.items():
                if artifact.kind == ArtifactKind.FILE:
                    sources[(unit, output)] = self._store.blob_path(artifact.content_address)
                else:
                    tree = self._store.tree_path(artifact.content_address)
                    for path in tree.rglob("*"):
                        rel = path.relative_to(tree).as_posix()
                        sources[(unit, f"{output}/{rel}")] = path
        return sources

    @staticmethod
    def _manifest_bytes(manifest: BundleManifest) -> bytes:
        return (
            json.dumps(manifest.model_dump(mode="json"), indent=2, sort_keys=True)
            + "\n"
        ).encode("utf-8")

    def _write_zip(
        self,
        fh: io.BufferedWriter,
        manifest: BundleManifest,
        sources: dict[tuple[str, str], Path],
    ) -> None:
        def info(name: str, mode: int) -> zipfile.ZipInfo:
            zinfo = zipfile.ZipInfo(f"{manifest.root}/{name}", date_time=_ZIP_EPOCH)
            zinfo.create_system = 3  # unix, so external_attr carries the mode
            zinfo.external_attr = mode << 16
            zinfo.compress_type = zipfile.ZIP_DEFLATED
            return zinfo

        with zipfile.ZipFile(fh, "w") as zf:
            zf.writestr(info(MANIFEST_NAME, 0o100644), self._manifest_bytes(manifest))
            for entry in manifest.entries:
                if entry.symlink_target is not None:
                    zf.writestr(info(entry.path, 0o120777), entry.symlink_target)
                    continue
                mode = 0o100755 if entry.executable else 0o100644
                data = sources[(entry.unit, entry.path)].read_bytes()
                zf.writestr(info(entry.path, mode), data)

    def _write_tar_gz(
        self,
        fh: io.BufferedWriter,
        manifest: BundleManifest,
        sources: dict[tuple[str, str], Path],
    ) -> None:
        def info(name: str) -> tarfile.TarInfo:
            tinfo = tarfile.TarInfo(f"{manifest.root}/{name}")
            tinfo.mtime = 0
            tinfo.uid = tinfo.gid = 0
            tinfo.uname = tinfo.gname = ""
            return tinfo

        with gzip.GzipFile(filename="", mode="wb", fileobj=fh, mtime=0) as gz:
            with tarfile.open(fileobj=gz, mode="w", format=tarfile.PAX_FORMAT) as tar:
                data = self._manifest_bytes(manifest)
                tinfo = info(MANIFEST_NAME)
                tinfo.mode = 0o644
                tinfo.size = len(data)
                tar.addfile(tinfo, io.BytesIO(data))
                for entry in manifest.entries:
                    tinfo = info(entry.path)
                    if entry.symlink_target is not None:
                        tinfo.type = tarfile.SYMTYPE
                        tinfo.linkname = entry.symlink_target
                        tinfo.mode = 0o777
                        tar.addfile(tinfo)
                        continue
                    data = sources[(entry.unit, entry.path)].read_bytes()
                    tinfo.mode = 0o755 if entry.executable else 0o644
                    tinfo.size = len(data)
                    tar.addfile(tinfo, io.BytesIO(data))
