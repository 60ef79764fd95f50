"""Error taxonomy for drvforge.

Graph errors are fatal for the whole evaluation; target and build errors are
fatal for one derivation and its transitive dependents; release conflicts are
recoverable with an explicit overwrite.
"""

from __future__ import annotations


class DrvforgeError(RuntimeError):
    """Base class for all drvforge errors."""


class DeclarationError(DrvforgeError):
    """Raised when a declaration file is malformed."""


# ---------------------------------------------------------------------------
# Graph construction
# ---------------------------------------------------------------------------


class GraphError(DrvforgeError):
    """The declared graph cannot be scheduled."""


class CycleError(GraphError):
    """Raised when dependency references form a cycle."""

    def __init__(self, members: list[str]) -> None:
        self.members = list(members)
        super().__init__(
            f"Dependency cycle among: {', '.join(self.members)}"
        )


class UnknownReferenceError(GraphError):
    """Raised when a unit depends on something that was never declared."""

    def __init__(self, unit: str, reference: str, detail: str = "") -> None:
        self.unit = unit
        self.reference = reference
        message = f"{unit} references undeclared unit {reference!r}"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)


# ---------------------------------------------------------------------------
# Resolution
# ---------------------------------------------------------------------------


class UnsupportedTargetError(DrvforgeError):
    """Raised when no toolchain exists for a (host, target) pair."""

    def __init__(self, host: str, target: str, detail: str = "") -> None:
        self.host = host
        self.target = target
        message = f"No toolchain for host={host} target={target}"
        if detail:
            message = f"{message} ({detail})"
        super().__init__(message)


# ---------------------------------------------------------------------------
# Execution
# ---------------------------------------------------------------------------


class BuildError(DrvforgeError):
    """Base class for execution failures of a single derivation."""


class BuildFailure(BuildError):
    """A build command exited non-zero or did not produce its outputs."""

    def __init__(
        self,
        drv_id: str,
        exit_status: int | None,
        log: str,
        *,
        key: str = "",
        reason: str = "",
    ) -> None:
        self.drv_id = drv_id
        self.exit_status = exit_status
        self.log = log
        self.key = key
        self.reason = reason or f"exit status {exit_status}"
        super().__init__(f"Build of {key or drv_id} failed: {self.reason}")


class BuildTimeout(BuildFailure):
    """The build command exceeded its time budget and was killed."""

    def __init__(
        self, drv_id: str, timeout: float, log: str, *, key: str = ""
    ) -> None:
        self.timeout = timeout
        super().__init__(
            drv_id, None, log, key=key, reason=f"timed out after {timeout:g}s"
        )


class BuildCancelled(BuildError):
    """The build was aborted because the whole evaluation was cancelled."""

    def __init__(self, drv_id: str, *, key: str = "") -> None:
        self.drv_id = drv_id
        self.key = key
        super().__init__(f"Build of {key or drv_id} was cancelled")


class IncompleteRealizationError(BuildError):
    """Raised when an operation needs outputs that could not all be built.

    ``report`` is the ``RealizationReport`` describing what went wrong.
    """

    def __init__(self, message: str, report) -> None:
        self.report = report
        super().__init__(message)


class StoreIntegrityError(DrvforgeError):
    """Raised when stored content does not match its address."""


# ---------------------------------------------------------------------------
# Packaging and publishing
# ---------------------------------------------------------------------------


class BundleConflictError(DrvforgeError):
    """Two bundle entries map to the same destination path."""

    def __init__(self, path: str, first: str, second: str) -> None:
        self.path = path
        super().__init__(
            f"Bundle path {path!r} is produced by both {first} and {second}"
        )


class ReleaseConflictError(DrvforgeError):
    """A different asset is already published for this (label, platform)."""

    def __init__(self, label: str, platform: str, existing: str, new: str) -> None:
        self.label = label
        self.platform = platform
        self.existing = existing
        self.new = new
        super().__init__(
            f"Release {label} already has a {platform} asset "
            f"({existing}); refusing to replace it with {new} "
            f"without overwrite"
        )
