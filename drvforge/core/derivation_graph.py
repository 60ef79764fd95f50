"""Derivation graph — expand unit declarations into a DAG of derivations.

Each unit is expanded across its declared targets. Nodes live in an arena
(a list indexed by int) with forward and reverse edge lists; everything else
refers to nodes by index or by their ``name@target`` key.

The graph enforces:
- Every dependency names a declared unit bound to a compatible target.
- The dependency relation is acyclic (checked with Kahn's algorithm before
  anything is realized).
- Derivation identifiers are computed once per node and memoized; a node's
  identifier folds in the identifiers of its dependencies.
"""

from __future__ import annotations

import heapq
import logging
import threading
from collections import deque
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field

from pydantic import BaseModel, ConfigDict

from drvforge.core.hasher import content_address
from drvforge.core.target_resolver import TargetResolver
from drvforge.errors import CycleError, DeclarationError, UnknownReferenceError
from drvforge.models.derivations import Derivation, UnitDeclaration, node_key
from drvforge.models.environment import BuildEnvironment
from drvforge.models.platforms import Platform, PlatformParseError
from drvforge.models.sources import SourceSnapshot

logger = logging.getLogger(__name__)

Snapshotter = Callable[[UnitDeclaration], SourceSnapshot]


class PlannedDerivation(BaseModel):
    """A derivation together with everything the executor needs to run it."""

    model_config = ConfigDict(frozen=True)

    derivation: Derivation
    environment: BuildEnvironment
    snapshot: SourceSnapshot
    dependencies: dict[str, str] = {}  # dependency unit name -> node key
    timeout: float | None = None


@dataclass
class _Node:
    index: int
    key: str
    unit: UnitDeclaration
    target: Platform
    deps: list[int] = field(default_factory=list)
    dependents: list[int] = field(default_factory=list)


class DerivationGraph:
    """Directed acyclic graph of derivations, one node per (unit, target).

    Parameters
    ----------
    units:
        The declared build units, in declaration order.
    resolver:
        Target resolver used to compute build environments. Required only for
        ``plan()``.
    snapshotter:
        Callable returning the filtered source snapshot for a unit. Required
        only for ``plan()``.
    """

    def __init__(
        self,
        units: Iterable[UnitDeclaration],
        *,
        resolver: TargetResolver | None = None,
        snapshotter: Snapshotter | None = None,
    ) -> None:
        self._units: dict[str, UnitDeclaration] = {}
        for unit in units:
            if unit.name in self._units:
                raise DeclarationError(f"Unit {unit.name!r} is declared twice")
            self._units[unit.name] = unit

        self._resolver = resolver
        self._snapshotter = snapshotter
        self._nodes: list[_Node] = []
        self._index: dict[str, int] = {}
        self._memo: dict[int, PlannedDerivation | Exception] = {}
        self._memo_lock = threading.RLock()

        self._expand()
        self._link()
        self._order = self._topological_sort()
        self._depth = self._compute_depths()

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------

    def _expand(self) -> None:
        for unit in self._units.values():
            if not unit.targets:
                raise DeclarationError(f"Unit {unit.name!r} declares no targets")
            for label in unit.targets:
                try:
                    target = Platform.parse(label)
                except PlatformParseError as exc:
                    raise DeclarationError(f"Unit {unit.name!r}: {exc}") from exc
                key = node_key(unit.name, target)
                if key in self._index:
                    continue
                self._index[key] = len(self._nodes)
                self._nodes.append(
                    _Node(index=len(self._nodes), key=key, unit=unit, target=target)
                )

    def _bind(self, node: _Node, dep_name: str) -> int:
        """Pick the node of ``dep_name`` that ``node`` depends on."""
        dep_unit = self._units.get(dep_name)
        if dep_unit is None:
            raise UnknownReferenceError(node.unit.name, dep_name)
        same_target = self._index.get(node_key(dep_name, node.target))
        if same_target is not None:
            return same_target
        if len(dep_unit.targets) == 1:
            # single-target units (host tools, generators) serve every target
            return self._index[node_key(dep_name, Platform.parse(dep_unit.targets[0]))]
        raise UnknownReferenceError(
            node.unit.name,
            dep_name,
            f"no {node.target.label} variant among {dep_unit.targets}",
        )

    def _link(self) -> None:
        for node in self._nodes:
            for dep_name in node.unit.deps:
                dep = self._bind(node, dep_name)
                node.deps.append(dep)
                self._nodes[dep].dependents.append(node.index)

    def _topological_sort(self) -> list[int]:
        """Kahn's algorithm; ties are broken by declaration order."""
        in_degree = [len(node.deps) for node in self._nodes]
        ready = [n.index for n in self._nodes if in_degree[n.index] == 0]
        heapq.heapify(ready)
        order: list[int] = []
        while ready:
            idx = heapq.heappop(ready)
            order.append(idx)
            for dep in self._nodes[idx].dependents:
                in_degree[dep] -= 1
                if in_degree[dep] == 0:
                    heapq.heappush(ready, dep)

        if len(order) != len(self._nodes):
            raise CycleError(self._cycle_members(set(order)))
        return order

    def _cycle_members(self, visited: set[int]) -> list[str]:
        """Nodes on (or between) cycles: the residue of Kahn's algorithm with
        nodes that merely hang off a cycle peeled away."""
        residual = {n.index for n in self._nodes} - visited
        changed = True
        while changed:
            changed = False
            for idx in sorted(residual):
                node = self._nodes[idx]
                if not any(d in residual for d in node.dependents):
                    residual.discard(idx)
                    changed = True
        return [self._nodes[i].key for i in sorted(residual)]

    def _compute_depths(self) -> list[int]:
        depth = [0] * len(self._nodes)
        for idx in self._order:
            deps = self._nodes[idx].deps
            depth[idx] = 1 + max((depth[d] for d in deps), default=-1)
        return depth

    # ------------------------------------------------------------------
    # Query methods
    # ------------------------------------------------------------------

    def __len__(self) -> int:
        return len(self._nodes)

    def __contains__(self, key: str) -> bool:
        return key in self._index

    @property
    def keys(self) -> list[str]:
        """All node keys in topological order."""
        return [self._nodes[i].key for i in self._order]

    def topological_order(self) -> list[str]:
        return self.keys

    def unit(self, key: str) -> UnitDeclaration:
        return self._node(key).unit

    def target(self, key: str) -> Platform:
        return self._node(key).target

    def _node(self, key: str) -> _Node:
        try:
            return self._nodes[self._index[key]]
        except KeyError:
            raise KeyError(f"No derivation {key!r} in the graph") from None

    def dependencies(self, key: str) -> list[str]:
        """Direct dependency keys, in declared order."""
        return [self._nodes[d].key for d in self._node(key).deps]

    def dependents(self, key: str) -> list[str]:
        """All transitive dependent keys (BFS)."""
        result: list[str] = []
        queue = deque(self._node(key).dependents)
        visited: set[int] = set()
        while queue:
            idx = queue.popleft()
            if idx in visited:
                continue
            visited.add(idx)
            result.append(self._nodes[idx].key)
            queue.extend(self._nodes[idx].dependents)
        return result

    def closure(self, keys: Iterable[str]) -> list[str]:
        """``keys`` plus everything they transitively depend on, topologically."""
        wanted: set[int] = set()
        stack = [self._node(k).index for k in keys]
        while stack:
            idx = stack.pop()
            if idx in wanted:
                continue
            wanted.add(idx)
            stack.extend(self._nodes[idx].deps)
        return [self._nodes[i].key for i in self._order if i in wanted]

    def levels(self) -> list[list[str]]:
        """Nodes grouped by depth; each level only depends on earlier ones."""
        grouped: dict[int, list[str]] = {}
        for idx in self._order:
            grouped.setdefault(self._depth[idx], []).append(self._nodes[idx].key)
        return [grouped[d] for d in sorted(grouped)]

    def select(self, names: Iterable[str], target: str | None = None) -> list[str]:
        """Translate unit names or explicit keys into node keys.

        A bare unit name selects every target variant of the unit, or only
        ``target`` when given.
        """
        wanted_target = Platform.parse(target).label if target else None
        selected: list[str] = []
        for name in names:
            if "@" in name:
                if name not in self._index:
                    raise UnknownReferenceError("<command line>", name)
                selected.append(name)
                continue
            if name not in self._units:
                raise UnknownReferenceError("<command line>", name)
            matches = [
                n.key for n in self._nodes
                if n.unit.name == name
                and (wanted_target is None or n.target.label == wanted_target)
            ]
            if not matches:
                raise UnknownReferenceError(
                    "<command line>", name, f"not declared for {wanted_target}"
                )
            selected.extend(matches)
        return selected

    # ------------------------------------------------------------------
    # Derivation planning (memoized per node)
    # ------------------------------------------------------------------

    def plan(self, key: str) -> PlannedDerivation:
        """Compute (once) the derivation and build environment for ``key``.

        Raises ``UnsupportedTargetError`` when no toolchain covers the node's
        target; the error is memoized like a result.
        """
        if self._resolver is None or self._snapshotter is None:
            raise RuntimeError("DerivationGraph.plan() needs a resolver and a snapshotter")
        node = self._node(key)
        with self._memo_lock:
            memo = self._memo.get(node.index)
            if memo is None:
                try:
                    memo = self._plan_node(node)
                except Exception as exc:
                    self._memo[node.index] = exc
                    raise
                self._memo[node.index] = memo
        if isinstance(memo, Exception):
            raise memo
        return memo

    def derivation(self, key: str) -> Derivation:
        return self.plan(key).derivation

    def _plan_node(self, node: _Node) -> PlannedDerivation:
        unit = node.unit
        environment = self._resolver.resolve(node.target, unit.packages)

        input_ids: dict[str, str] = {}
        dependencies: dict[str, str] = {}
        for dep_name, dep_idx in zip(unit.deps, node.deps):
            dep_key = self._nodes[dep_idx].key
            input_ids[dep_name] = self.plan(dep_key).derivation.drv_id
            dependencies[dep_name] = dep_key

        snapshot = self._snapshotter(unit)
        derivation = Derivation(
            key=node.key,
            name=unit.name,
            target=node.target,
            host=self._resolver.host,
            source_snapshot=snapshot.snapshot_id,
            input_ids=input_ids,
            packages=list(unit.packages),
            command=unit.command,
            outputs=list(unit.outputs),
            env=dict(unit.env),
            environment_hash=environment.fingerprint(),
        )
        derivation = derivation.model_copy(
            update={"drv_id": content_address(derivation.identity_payload())}
        )
        logger.debug("planned %s as %s", node.key, derivation.drv_id)
        return PlannedDerivation(
            derivation=derivation,
            environment=environment,
            snapshot=snapshot,
            dependencies=dependencies,
            timeout=unit.timeout,
        )
