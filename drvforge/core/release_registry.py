"""Append-only registry of published release assets, backed by SQLite.

Design:
- Append-only: every publication (first upload or overwrite) adds a row.
- The current asset for a (label, platform) is its most recent row.
- WAL journal mode for concurrent readers.
"""

from __future__ import annotations

import sqlite3
from pathlib import Path

from drvforge.models.releases import PublishStatus, Release, ReleaseAsset

# ---------------------------------------------------------------------------
# DDL
# ---------------------------------------------------------------------------

_CREATE_ASSETS = """
CREATE TABLE IF NOT EXISTS release_assets (
    id               INTEGER PRIMARY KEY AUTOINCREMENT,
    label            TEXT NOT NULL,
    platform         TEXT NOT NULL,
    asset_name       TEXT NOT NULL,
    content_address  TEXT NOT NULL,
    size_bytes       INTEGER NOT NULL DEFAULT 0,
    location         TEXT NOT NULL DEFAULT '',
    action           TEXT NOT NULL,
    published_at     TEXT NOT NULL
);
"""

_CREATE_IDX_LABEL_PLATFORM = """
CREATE INDEX IF NOT EXISTS idx_label_platform ON release_assets(label, platform, id);
"""

_COLUMNS = "label, platform, asset_name, content_address, size_bytes, location, published_at"


class ReleaseRegistry:
    """Records which bundle content is published under each release label.

    Parameters
    ----------
    db_path:
        Path to the SQLite database file. Created if it does not exist.
    """

    def __init__(self, db_path: Path) -> None:
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_schema()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self._db_path), check_same_thread=False)
        conn.execute("PRAGMA journal_mode=WAL")
        return conn

    def _init_schema(self) -> None:
        with self._connect() as conn:
            conn.execute(_CREATE_ASSETS)
            conn.execute(_CREATE_IDX_LABEL_PLATFORM)
            conn.commit()

    # ------------------------------------------------------------------
    # Core: append-only write
    # ------------------------------------------------------------------

    def append(self, asset: ReleaseAsset, action: PublishStatus) -> ReleaseAsset:
        """Record a publication. This is the only write method."""
        with self._connect() as conn:
            conn.execute(
                f"INSERT INTO release_assets ({_COLUMNS}, action) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    asset.label,
                    asset.platform,
                    asset.asset_name,
                    asset.content_address,
                    asset.size_bytes,
                    asset.location,
                    asset.published_at.isoformat(),
                    action.value,
                ),
            )
            conn.commit()
        return asset

    # ------------------------------------------------------------------
    # Query methods (read-only)
    # ------------------------------------------------------------------

    def current(self, label: str, platform: str) -> ReleaseAsset | None:
        """Return the asset currently published for (label, platform)."""
        with self._connect() as conn:
            row = conn.execute(
                f"SELECT {_COLUMNS} FROM release_assets "
                "WHERE label = ? AND platform = ? ORDER BY id DESC LIMIT 1",
                (label, platform),
            ).fetchone()
        return self._row_to_asset(row) if row else None

    def release(self, label: str) -> Release:
        """Return the current asset for every platform of a release."""
        with self._connect() as conn:
            rows = conn.execute(
                f"SELECT {_COLUMNS} FROM release_assets WHERE label = ? ORDER BY id ASC",
                (label,),
            ).fetchall()
        assets: dict[str, ReleaseAsset] = {}
        for row in rows:
            asset = self._row_to_asset(row)
            assets[asset.platform] = asset
        return Release(label=label, assets=dict(sorted(assets.items())))

    def history(self, label: str, platform: str) -> list[tuple[PublishStatus, ReleaseAsset]]:
        """Every publication for (label, platform), oldest first."""
        with self._connect() as conn:
            rows = conn.execute(
                f"SELECT {_COLUMNS}, action FROM release_assets "
                "WHERE label = ? AND platform = ? ORDER BY id ASC",
                (label, platform),
            ).fetchall()
        return [(PublishStatus(row[-1]), self._row_to_asset(row[:-1])) for row in rows]

    def labels(self) -> list[str]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT label FROM release_assets GROUP BY label ORDER BY MIN(id)"
            ).fetchall()
        return [row[0] for row in rows]

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _row_to_asset(row: tuple) -> ReleaseAsset:
        (
            label,
            platform,
            asset_name,
            content_address,
            size_bytes,
            location,
            published_at,
        ) = row
        return ReleaseAsset(
            label=label,
            platform=platform,
            asset_name=asset_name,
            content_address=content_address,
            size_bytes=size_bytes,
            location=location,
            published_at=published_at,
        )
