"""Release publication models."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class PublishStatus(str, Enum):
    PUBLISHED = "published"
    UNCHANGED = "unchanged"
    OVERWRITTEN = "overwritten"


class ReleaseAsset(BaseModel):
    """A bundle published under a release label for one platform."""

    model_config = ConfigDict(frozen=True)

    label: str
    platform: str
    asset_name: str
    content_address: str
    size_bytes: int = 0
    location: str = ""
    published_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )


class PublishResult(BaseModel):
    """Outcome of publishing one (label, platform) pair."""

    model_config = ConfigDict(frozen=True)

    asset: ReleaseAsset
    status: PublishStatus
    previous: str | None = None  # replaced content address, if any


class Release(BaseModel):
    """A labeled set of assets across a platform matrix."""

    model_config = ConfigDict(frozen=True)

    label: str
    assets: dict[str, ReleaseAsset] = {}  # platform -> asset
