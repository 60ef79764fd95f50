"""Tests for the DerivationGraph — expansion, binding, ordering, identifiers."""

from __future__ import annotations

from collections.abc import Callable

import pytest

from drvforge.core.derivation_graph import DerivationGraph
from drvforge.core.hasher import content_address
from drvforge.core.target_resolver import TargetResolver
from drvforge.errors import CycleError, DeclarationError, UnknownReferenceError, UnsupportedTargetError
from drvforge.models.derivations import UnitDeclaration
from drvforge.models.sources import SourceSnapshot


def fixed_snapshots(overrides: dict[str, str] | None = None) -> Callable[[UnitDeclaration], SourceSnapshot]:
    """Snapshotter returning one synthetic snapshot per unit name."""

    def _snapshot(unit: UnitDeclaration) -> SourceSnapshot:
        marker = (overrides or {}).get(unit.name, unit.name)
        return SourceSnapshot(
            snapshot_id=content_address({"source": marker}),
            root=f"/src/{unit.name}",
            policy_hash="sha256:policy",
        )

    return _snapshot


@pytest.fixture
def make_graph(resolver: TargetResolver) -> Callable[..., DerivationGraph]:
    def _factory(units: list[UnitDeclaration], **snapshot_overrides: str) -> DerivationGraph:
        return DerivationGraph(
            units, resolver=resolver, snapshotter=fixed_snapshots(snapshot_overrides)
        )

    return _factory


class TestExpansion:
    def test_one_node_per_target(self, make_unit, make_graph):
        graph = make_graph([make_unit("app", targets=["linux-x64", "windows-x64"])])
        assert len(graph) == 2
        assert "app@linux-x64" in graph
        assert "app@windows-x64" in graph

    def test_target_aliases_collapse(self, make_unit, make_graph):
        graph = make_graph([make_unit("app", targets=["linux-x64", "x86_64-unknown-linux-gnu"])])
        assert graph.keys == ["app@linux-x64"]

    def test_bad_target(self, make_unit, make_graph):
        with pytest.raises(DeclarationError):
            make_graph([make_unit("app", targets=["plan9-x64"])])

    def test_duplicate_unit(self, make_unit, make_graph):
        with pytest.raises(DeclarationError):
            make_graph([make_unit("app"), make_unit("app")])

    def test_no_targets(self, make_unit, make_graph):
        with pytest.raises(DeclarationError):
            make_graph([make_unit("app", targets=[])])


class TestBinding:
    def test_same_target_binding(self, make_unit, make_graph):
        graph = make_graph([
            make_unit("lib", targets=["linux-x64", "windows-x64"]),
            make_unit("app", deps=["lib"], targets=["linux-x64", "windows-x64"]),
        ])
        assert graph.dependencies("app@windows-x64") == ["lib@windows-x64"]
        assert graph.dependencies("app@linux-x64") == ["lib@linux-x64"]

    def test_single_target_dependency_serves_all(self, make_unit, make_graph):
        graph = make_graph([
            make_unit("gen", targets=["linux-x64"]),
            make_unit("app", deps=["gen"], targets=["linux-x64", "windows-x64"]),
        ])
        assert graph.dependencies("app@windows-x64") == ["gen@linux-x64"]

    def test_incompatible_targets(self, make_unit, make_graph):
        with pytest.raises(UnknownReferenceError):
            make_graph([
                make_unit("lib", targets=["linux-x64", "linux-arm64"]),
                make_unit("app", deps=["lib"], targets=["windows-x64"]),
            ])

    def test_unknown_reference(self, make_unit, make_graph):
        with pytest.raises(UnknownReferenceError) as exc_info:
            make_graph([make_unit("app", deps=["missing"])])
        assert exc_info.value.unit == "app"
        assert exc_info.value.reference == "missing"


class TestCycles:
    def test_two_node_cycle(self, make_unit, make_graph):
        with pytest.raises(CycleError) as exc_info:
            make_graph([
                make_unit("a", deps=["b"]),
                make_unit("b", deps=["a"]),
            ])
        assert sorted(exc_info.value.members) == ["a@linux-x64", "b@linux-x64"]

    def test_self_cycle(self, make_unit, make_graph):
        with pytest.raises(CycleError):
            make_graph([make_unit("a", deps=["a"])])

    def test_hanging_nodes_not_reported(self, make_unit, make_graph):
        with pytest.raises(CycleError) as exc_info:
            make_graph([
                make_unit("a", deps=["b"]),
                make_unit("b", deps=["c"]),
                make_unit("c", deps=["b"]),
                make_unit("d"),
            ])
        assert sorted(exc_info.value.members) == ["b@linux-x64", "c@linux-x64"]


class TestOrdering:
    def test_topological_order(self, make_unit, make_graph):
        graph = make_graph([
            make_unit("app", deps=["lib", "util"]),
            make_unit("lib", deps=["util"]),
            make_unit("util"),
        ])
        order = graph.topological_order()
        assert order.index("util@linux-x64") < order.index("lib@linux-x64") < order.index("app@linux-x64")

    def test_declaration_order_breaks_ties(self, make_unit, make_graph):
        graph = make_graph([make_unit("z"), make_unit("a"), make_unit("m")])
        assert graph.keys == ["z@linux-x64", "a@linux-x64", "m@linux-x64"]

    def test_levels(self, make_unit, make_graph):
        graph = make_graph([
            make_unit("util"),
            make_unit("lib", deps=["util"]),
            make_unit("tool"),
            make_unit("app", deps=["lib", "tool"]),
        ])
        assert graph.levels() == [
            ["util@linux-x64", "tool@linux-x64"],
            ["lib@linux-x64"],
            ["app@linux-x64"],
        ]

    def test_dependents_transitive(self, make_unit, make_graph):
        graph = make_graph([
            make_unit("util"),
            make_unit("lib", deps=["util"]),
            make_unit("app", deps=["lib"]),
        ])
        assert graph.dependents("util@linux-x64") == ["lib@linux-x64", "app@linux-x64"]

    def test_closure(self, make_unit, make_graph):
        graph = make_graph([
            make_unit("util"),
            make_unit("lib", deps=["util"]),
            make_unit("app", deps=["lib"]),
            make_unit("other"),
        ])
        assert graph.closure(["app@linux-x64"]) == ["util@linux-x64", "lib@linux-x64", "app@linux-x64"]

    def test_select(self, make_unit, make_graph):
        graph = make_graph([make_unit("app", targets=["linux-x64", "windows-x64"])])
        assert graph.select(["app"]) == ["app@linux-x64", "app@windows-x64"]
        assert graph.select(["app"], "windows-x64") == ["app@windows-x64"]
        assert graph.select(["app@linux-x64"]) == ["app@linux-x64"]
        with pytest.raises(UnknownReferenceError):
            graph.select(["nope"])
        with pytest.raises(UnknownReferenceError):
            graph.select(["app@macos-arm64"])


class TestDerivationIds:
    def test_stable_across_graphs(self, make_unit, make_graph):
        units = [make_unit("lib"), make_unit("app", deps=["lib"])]
        first = make_graph(units).derivation("app@linux-x64")
        second = make_graph(units).derivation("app@linux-x64")
        assert first.drv_id == second.drv_id
        assert first.drv_id.startswith("sha256:")

    def test_input_change_propagates(self, make_unit, make_graph):
        units = [make_unit("lib"), make_unit("app", deps=["lib"])]
        before = make_graph(units)
        after = make_graph(units, lib="lib-v2")
        assert before.derivation("lib@linux-x64").drv_id != after.derivation("lib@linux-x64").drv_id
        assert before.derivation("app@linux-x64").drv_id != after.derivation("app@linux-x64").drv_id

    def test_unrelated_change_does_not_propagate(self, make_unit, make_graph):
        units = [make_unit("lib"), make_unit("app", deps=["lib"]), make_unit("other")]
        before = make_graph(units)
        after = make_graph(units, other="other-v2")
        assert before.derivation("app@linux-x64").drv_id == after.derivation("app@linux-x64").drv_id

    def test_targets_differ(self, make_unit, make_graph):
        graph = make_graph([make_unit("app", targets=["linux-x64", "windows-x64"])])
        assert graph.derivation("app@linux-x64").drv_id != graph.derivation("app@windows-x64").drv_id

    def test_command_change(self, make_unit, make_graph):
        a = make_graph([make_unit("app")]).derivation("app@linux-x64")
        b = make_graph([make_unit("app", command="true")]).derivation("app@linux-x64")
        assert a.drv_id != b.drv_id

    def test_input_ids_carry_dependency_ids(self, make_unit, make_graph):
        graph = make_graph([make_unit("lib"), make_unit("app", deps=["lib"])])
        app = graph.derivation("app@linux-x64")
        assert app.input_ids == {"lib": graph.derivation("lib@linux-x64").drv_id}

    def test_memoized(self, make_unit, make_graph):
        graph = make_graph([make_unit("app")])
        assert graph.plan("app@linux-x64") is graph.plan("app@linux-x64")

    def test_planned_environment(self, make_unit, make_graph):
        graph = make_graph([make_unit("app", targets=["windows-x64"])])
        planned = graph.plan("app@windows-x64")
        assert planned.environment.is_cross is True
        assert planned.derivation.environment_hash == planned.environment.fingerprint()

    def test_unsupported_target_only_affects_node(self, make_unit, make_graph):
        graph = make_graph([make_unit("app", targets=["linux-x64", "macos-arm64"])])
        with pytest.raises(UnsupportedTargetError):
            graph.plan("app@macos-arm64")
        with pytest.raises(UnsupportedTargetError):
            graph.plan("app@macos-arm64")
        assert graph.plan("app@linux-x64").derivation.drv_id

    def test_plan_requires_resolver(self, make_unit):
        graph = DerivationGraph([make_unit("app")])
        with pytest.raises(RuntimeError):
            graph.plan("app@linux-x64")
