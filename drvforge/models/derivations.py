"""Build-unit declarations and the derivations they expand into."""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from drvforge.models.platforms import Platform


class UnitDeclaration(BaseModel):
    """A declarative build unit as written in ``drvforge.toml``.

    ``targets`` may list several platforms; the graph builder expands the unit
    into one derivation per target.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    name: str
    src: str = "."
    deps: list[str] = []
    targets: list[str] = ["linux-x64"]
    command: str
    outputs: list[str] = Field(min_length=1)
    packages: list[str] = []
    env: dict[str, str] = {}
    exclude: list[str] = []
    include: list[str] = []
    timeout: float | None = None

    @field_validator("targets", mode="before")
    @classmethod
    def _single_target(cls, value: Any) -> Any:
        if isinstance(value, str):
            return [value]
        return value

    @field_validator("outputs")
    @classmethod
    def _relative_outputs(cls, value: list[str]) -> list[str]:
        for name in value:
            if name.startswith("/") or ".." in name.split("/"):
                raise ValueError(f"output {name!r} must be a relative path inside $out")
        if len(set(value)) != len(value):
            raise ValueError("output names must be unique")
        return value


class Derivation(BaseModel):
    """One node of the expanded graph: a unit bound to a single target.

    ``drv_id`` is a pure function of every other field, and ``input_ids``
    carries the ``drv_id`` of each dependency, so the identifier captures the
    whole transitive input closure.
    """

    model_config = ConfigDict(frozen=True)

    key: str  # "<name>@<platform label>"
    name: str
    target: Platform
    host: Platform
    source_snapshot: str
    input_ids: dict[str, str] = {}  # dependency unit name -> drv_id, declared order
    packages: list[str] = []
    command: str
    outputs: list[str]
    env: dict[str, str] = {}
    environment_hash: str
    drv_id: str = ""

    def identity_payload(self) -> dict[str, Any]:
        """Everything that determines the identifier (``drv_id`` excluded)."""
        payload = self.model_dump(mode="json", exclude={"drv_id", "key"})
        # keep dependency order significant
        payload["input_ids"] = [[k, v] for k, v in self.input_ids.items()]
        return payload


class DerivationState(str, Enum):
    """Outcome of a derivation within one evaluation."""

    PENDING = "pending"
    RUNNING = "running"
    CACHED = "cached"
    BUILT = "built"
    FAILED = "failed"
    UNBUILDABLE = "unbuildable"
    UNSUPPORTED = "unsupported"
    CANCELLED = "cancelled"


SUCCESS_STATES: frozenset[DerivationState] = frozenset(
    {DerivationState.CACHED, DerivationState.BUILT}
)


def node_key(name: str, target: Platform | str) -> str:
    """Graph key for a unit bound to a target."""
    label = target.label if isinstance(target, Platform) else target
    return f"{name}@{label}"
