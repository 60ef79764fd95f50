"""Release publisher — upload bundles as labeled, per-platform assets.

Publishing is idempotent per (label, platform): the same content again is a
no-op, different content is refused with ``ReleaseConflictError`` unless an
overwrite is requested. All conflicts are checked before anything is
uploaded, so a refused publish leaves the release untouched.
"""

from __future__ import annotations

import logging
import os
import shutil
import tempfile
from collections.abc import Mapping
from pathlib import Path
from typing import Protocol, runtime_checkable

from drvforge.core.release_registry import ReleaseRegistry
from drvforge.errors import ReleaseConflictError
from drvforge.models.artifacts import Bundle
from drvforge.models.platforms import Platform
from drvforge.models.releases import PublishResult, PublishStatus, ReleaseAsset

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Backends
# ---------------------------------------------------------------------------


@runtime_checkable
class ReleaseBackend(Protocol):
    """Protocol for asset upload backends.

    Any object with an ``upload(label, asset_name, source) -> str`` method
    satisfies this protocol. The return value is the asset's location.
    """

    def upload(self, label: str, asset_name: str, source: Path) -> str:
        ...


class LocalReleaseBackend:
    """Publishes assets into ``{root}/{label}/{asset_name}``.

    Each upload is written to a temporary file and renamed into place, so a
    reader never sees a half-written asset.
    """

    def __init__(self, root: Path) -> None:
        self._root = Path(root)

    def upload(self, label: str, asset_name: str, source: Path) -> str:
        release_dir = self._root / label
        release_dir.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(prefix=f".{asset_name}.", dir=release_dir)
        os.close(fd)
        try:
            shutil.copyfile(source, tmp)
            os.chmod(tmp, 0o644)
            os.replace(tmp, release_dir / asset_name)
        except BaseException:
            Path(tmp).unlink(missing_ok=True)
            raise
        return str(release_dir / asset_name)


# ---------------------------------------------------------------------------
# Publisher
# ---------------------------------------------------------------------------


class ReleasePublisher:
    """Publishes bundles for a platform matrix under a release label.

    Parameters
    ----------
    backend:
        Where assets are uploaded.
    registry:
        Record of what is currently published.
    """

    def __init__(self, backend: ReleaseBackend, registry: ReleaseRegistry) -> None:
        self._backend = backend
        self._registry = registry

    def publish(
        self,
        label: str,
        bundles: Mapping[Platform | str, Bundle],
        *,
        overwrite: bool = False,
    ) -> list[PublishResult]:
        """Publish one bundle per platform; returns results in mapping order."""
        plan: list[tuple[str, Bundle, ReleaseAsset | None]] = []
        for platform, bundle in bundles.items():
            label_text = platform.label if isinstance(platform, Platform) else platform
            if bundle.platform != label_text:
                raise ValueError(
                    f"Bundle {bundle.asset_name} is for {bundle.platform}, "
                    f"not {label_text}"
                )
            existing = self._registry.current(label, label_text)
            if (
                existing is not None
                and existing.content_address != bundle.content_address
                and not overwrite
            ):
                raise ReleaseConflictError(
                    label, label_text, existing.content_address, bundle.content_address
                )
            plan.append((label_text, bundle, existing))

        results: list[PublishResult] = []
        for platform, bundle, existing in plan:
            if existing is not None and existing.content_address == bundle.content_address:
                logger.info("%s %s unchanged", label, bundle.asset_name)
                results.append(PublishResult(asset=existing, status=PublishStatus.UNCHANGED))
                continue

            location = self._backend.upload(label, bundle.asset_name, Path(bundle.path))
            status = PublishStatus.PUBLISHED if existing is None else PublishStatus.OVERWRITTEN
            asset = self._registry.append(
                ReleaseAsset(
                    label=label,
                    platform=platform,
                    asset_name=bundle.asset_name,
                    content_address=bundle.content_address,
                    size_bytes=bundle.size_bytes,
                    location=location,
                ),
                status,
            )
            logger.info("%s %s %s", label, bundle.asset_name, status.value)
            results.append(PublishResult(
                asset=asset,
                status=status,
                previous=existing.content_address if existing else None,
            ))
        return results
