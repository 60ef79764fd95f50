"""Evaluation reports — partial-success summaries of a graph run."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict

from drvforge.models.artifacts import Realization
from drvforge.models.derivations import SUCCESS_STATES, DerivationState


class FailureRecord(BaseModel):
    """Why a derivation did not produce outputs.

    ``origin`` is the key of the derivation that actually failed; for
    unbuildable dependents it differs from ``key``.
    """

    model_config = ConfigDict(frozen=True)

    key: str
    state: DerivationState
    origin: str
    reason: str
    drv_id: str = ""
    exit_status: int | None = None
    log: str = ""


class RealizationReport(BaseModel):
    """Per-derivation outcome of one ``Orchestrator.realize()`` call."""

    model_config = ConfigDict(frozen=True)

    states: dict[str, DerivationState]  # topological order
    realizations: dict[str, Realization] = {}
    failures: dict[str, FailureRecord] = {}
    built: list[str] = []  # keys actually executed, in completion order

    @property
    def success(self) -> bool:
        return all(state in SUCCESS_STATES for state in self.states.values())

    @property
    def cancelled(self) -> bool:
        return any(
            state == DerivationState.CANCELLED for state in self.states.values()
        )

    def keys_in(self, *states: DerivationState) -> list[str]:
        return [k for k, s in self.states.items() if s in states]
