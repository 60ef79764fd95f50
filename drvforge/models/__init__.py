"""drvforge data models — all Pydantic v2, all frozen (immutable)."""

from drvforge.models.artifacts import (
    Artifact,
    ArtifactKind,
    Bundle,
    BundleEntry,
    BundleFormat,
    BundleManifest,
    BundleSpec,
    Realization,
)
from drvforge.models.config import EngineConfig
from drvforge.models.derivations import (
    SUCCESS_STATES,
    Derivation,
    DerivationState,
    UnitDeclaration,
    node_key,
)
from drvforge.models.environment import (
    CROSS_ENV_KEYS,
    BuildEnvironment,
    ToolchainLayer,
    ToolchainSpec,
    merge_layers,
)
from drvforge.models.platforms import Platform, PlatformParseError
from drvforge.models.releases import (
    PublishResult,
    PublishStatus,
    Release,
    ReleaseAsset,
)
from drvforge.models.reports import FailureRecord, RealizationReport
from drvforge.models.sources import SourceEntry, SourceSnapshot

__all__ = [
    # platforms
    "Platform",
    "PlatformParseError",
    # sources
    "SourceEntry",
    "SourceSnapshot",
    # derivations
    "UnitDeclaration",
    "Derivation",
    "DerivationState",
    "SUCCESS_STATES",
    "node_key",
    # environment
    "CROSS_ENV_KEYS",
    "ToolchainLayer",
    "ToolchainSpec",
    "BuildEnvironment",
    "merge_layers",
    # artifacts
    "Artifact",
    "ArtifactKind",
    "Realization",
    "BundleFormat",
    "BundleSpec",
    "BundleEntry",
    "BundleManifest",
    "Bundle",
    # releases
    "ReleaseAsset",
    "PublishResult",
    "PublishStatus",
    "Release",
    # reports
    "FailureRecord",
    "RealizationReport",
    # config
    "EngineConfig",
]
