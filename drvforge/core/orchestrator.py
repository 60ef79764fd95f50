"""Orchestrator — the central coordinator for drvforge runs.

The Orchestrator wires together the ContentStore, SourceFilter,
TargetResolver, DerivationGraph, SandboxExecutor, Bundler and
ReleasePublisher for one project declaration.

``realize()`` schedules the graph over a thread pool: a node is started once
all of its dependencies are realized, derivations already present in the
store are reused, and a failure only stops the nodes that depend on it.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterable
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from pathlib import Path

from drvforge.core.bundler import Bundler
from drvforge.core.content_store import ContentStore
from drvforge.core.declarations import ProjectDeclaration
from drvforge.core.derivation_graph import DerivationGraph, PlannedDerivation
from drvforge.core.publisher import LocalReleaseBackend, ReleaseBackend, ReleasePublisher
from drvforge.core.release_registry import ReleaseRegistry
from drvforge.core.sandbox import SandboxExecutor
from drvforge.core.source_filter import FilterPolicy, SourceFilter
from drvforge.core.target_resolver import TargetResolver
from drvforge.errors import (
    BuildCancelled,
    BuildFailure,
    DeclarationError,
    IncompleteRealizationError,
    StoreIntegrityError,
    UnsupportedTargetError,
)
from drvforge.models.artifacts import Bundle, Realization
from drvforge.models.config import EngineConfig
from drvforge.models.derivations import SUCCESS_STATES, DerivationState, UnitDeclaration
from drvforge.models.environment import BuildEnvironment
from drvforge.models.platforms import Platform
from drvforge.models.releases import PublishResult
from drvforge.models.reports import FailureRecord, RealizationReport
from drvforge.models.sources import SourceSnapshot

logger = logging.getLogger(__name__)


class Orchestrator:
    """Central build orchestrator.

    Parameters
    ----------
    declaration:
        The project's units, bundles, toolchain layers and release defaults.
    config:
        Engine configuration. Uses defaults rooted at the declaration's
        directory if not provided.
    backend:
        Release upload backend. Defaults to a ``LocalReleaseBackend`` under
        ``config.releases_path``.
    """

    def __init__(
        self,
        declaration: ProjectDeclaration,
        config: EngineConfig | None = None,
        *,
        backend: ReleaseBackend | None = None,
    ) -> None:
        self.declaration = declaration
        self.config = config or EngineConfig(
            project_root=declaration.root,
            store_path=declaration.root / ".drvforge/store",
            releases_path=declaration.root / ".drvforge/releases",
            registry_path=declaration.root / ".drvforge/releases.db",
        )

        # Core subsystems
        self.store = ContentStore(self.config.store_path)
        self.resolver = TargetResolver(self.config.host, declaration.toolchains)
        self.graph = DerivationGraph(
            declaration.unit_list(),
            resolver=self.resolver,
            snapshotter=self._snapshot,
        )
        self.executor = SandboxExecutor(
            self.store,
            timeout=self.config.build_timeout,
            keep_failed=self.config.keep_failed,
            isolate_network=self.config.isolate_network,
        )
        self.bundler = Bundler(self.store)
        self._backend = backend
        self._publisher: ReleasePublisher | None = None

        self._filters: dict[str, SourceFilter] = {}
        self._realized: dict[str, Realization] = {}  # drv_id -> realization
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    # Sources
    # ------------------------------------------------------------------

    def _snapshot(self, unit: UnitDeclaration) -> SourceSnapshot:
        policy = FilterPolicy().extended(exclude=unit.exclude, include=unit.include)
        with self._lock:
            source_filter = self._filters.setdefault(
                policy.policy_hash, SourceFilter(policy)
            )
        root = Path(self.declaration.root) / unit.src
        return source_filter.snapshot(root, self.store)

    # ------------------------------------------------------------------
    # Realization
    # ------------------------------------------------------------------

    def realize(
        self,
        targets: Iterable[str] | None = None,
        *,
        fail_fast: bool | None = None,
        cancel_event: threading.Event | None = None,
    ) -> RealizationReport:
        """Realize ``targets`` (node keys) and their dependency closure.

        With no targets the whole graph is realized. Build failures do not
        raise; they are recorded in the returned report. A keyboard interrupt
        cancels in-flight builds and is reported as cancellation.
        """
        keys = self.graph.closure(targets) if targets is not None else self.graph.keys
        fail_fast = self.config.fail_fast if fail_fast is None else fail_fast
        cancel = cancel_event or threading.Event()

        run = _Run(keys)
        deps = {key: self.graph.dependencies(key) for key in keys}
        running: dict[Future, str] = {}

        def fill(pool: ThreadPoolExecutor) -> None:
            # topological order: a node's dependencies settle earlier in the same pass
            for key in keys:
                if cancel.is_set():
                    return
                if run.states[key] != DerivationState.PENDING:
                    continue
                if not all(run.states[d] in SUCCESS_STATES for d in deps[key]):
                    continue
                try:
                    planned = self.graph.plan(key)
                except UnsupportedTargetError as exc:
                    run.fail(self.graph, key, DerivationState.UNSUPPORTED, str(exc))
                    if fail_fast:
                        cancel.set()
                    continue
                except (OSError, StoreIntegrityError) as exc:
                    run.fail(self.graph, key, DerivationState.FAILED, f"cannot prepare sources: {exc}")
                    if fail_fast:
                        cancel.set()
                    continue

                cached = self._lookup(planned.derivation.drv_id)
                if cached is not None:
                    logger.debug("%s is cached (%s)", key, cached.drv_id[:19])
                    run.states[key] = DerivationState.CACHED
                    run.realizations[key] = cached
                    continue
                if len(running) >= self.config.max_workers:
                    continue

                inputs = {
                    name: run.realizations[dep_key]
                    for name, dep_key in planned.dependencies.items()
                }
                run.states[key] = DerivationState.RUNNING
                future = pool.submit(self.executor.execute, planned, inputs, cancel_event=cancel)
                running[future] = key

        with ThreadPoolExecutor(max_workers=self.config.max_workers) as pool:
            fill(pool)
            while running:
                try:
                    done, _ = wait(running, return_when=FIRST_COMPLETED)
                except KeyboardInterrupt:
                    logger.warning("interrupted; cancelling in-flight builds")
                    cancel.set()
                    continue
                for future in done:
                    key = running.pop(future)
                    self._settle(run, key, future, fail_fast, cancel)
                fill(pool)

        for key, state in run.states.items():
            if state == DerivationState.PENDING:
                run.states[key] = DerivationState.CANCELLED
                run.failures[key] = FailureRecord(
                    key=key,
                    state=DerivationState.CANCELLED,
                    origin=key,
                    reason="run cancelled before the build started",
                )

        report = run.report()
        logger.info(
            "realized %d/%d derivations (%d built)",
            len(report.realizations), len(report.states), len(report.built),
        )
        return report

    def _settle(
        self,
        run: _Run,
        key: str,
        future: Future,
        fail_fast: bool,
        cancel: threading.Event,
    ) -> None:
        planned = self.graph.plan(key)
        try:
            realization = future.result()
        except BuildCancelled as exc:
            run.states[key] = DerivationState.CANCELLED
            run.failures[key] = FailureRecord(
                key=key,
                state=DerivationState.CANCELLED,
                origin=key,
                reason=str(exc),
                drv_id=exc.drv_id,
            )
            return
        except BuildFailure as exc:
            logger.error("%s failed: %s", key, exc)
            run.fail(
                self.graph,
                key,
                DerivationState.FAILED,
                str(exc),
                drv_id=exc.drv_id,
                exit_status=exc.exit_status,
                log=exc.log,
            )
        except (OSError, StoreIntegrityError) as exc:
            logger.error("%s failed: %s", key, exc)
            run.fail(
                self.graph,
                key,
                DerivationState.FAILED,
                str(exc),
                drv_id=planned.derivation.drv_id,
            )
        else:
            with self._lock:
                self._realized[realization.drv_id] = realization
            run.states[key] = DerivationState.BUILT
            run.realizations[key] = realization
            run.built.append(key)
            return

        if fail_fast and not cancel.is_set():
            logger.warning("fail-fast: cancelling remaining builds")
            cancel.set()

    def _lookup(self, drv_id: str) -> Realization | None:
        with self._lock:
            hit = self._realized.get(drv_id)
        if hit is not None:
            return hit.model_copy(update={"cached": True})
        stored = self.store.lookup_realization(drv_id)
        if stored is None:
            return None
        with self._lock:
            self._realized[drv_id] = stored
        return stored.model_copy(update={"cached": True})

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def plan(self, key: str) -> PlannedDerivation:
        return self.graph.plan(key)

    def environment(self, unit: str, target: str | None = None) -> BuildEnvironment:
        """Resolved build environment of a unit for one target."""
        keys = self.graph.select([unit], target)
        if len(keys) > 1:
            raise DeclarationError(
                f"Unit {unit!r} has several targets; pick one of "
                f"{[self.graph.target(k).label for k in keys]}"
            )
        return self.graph.plan(keys[0]).environment

    # ------------------------------------------------------------------
    # Bundling and publishing
    # ------------------------------------------------------------------

    def bundle_targets(self, name: str, targets: Iterable[str] | None = None) -> list[Platform]:
        """Platforms a bundle is produced for.

        Explicit targets win, then the bundle's declared targets, then the
        targets shared by every unit in the bundle.
        """
        spec = self.declaration.bundle(name)
        labels = list(targets or spec.targets)
        if not labels:
            shared: list[str] | None = None
            for unit_name in spec.units:
                unit = self.declaration.units.get(unit_name)
                if unit is None:
                    raise DeclarationError(f"Bundle {name!r} names unknown unit {unit_name!r}")
                unit_targets = [Platform.parse(t).label for t in unit.targets]
                shared = unit_targets if shared is None else [t for t in shared if t in unit_targets]
            labels = shared or []
        if not labels:
            raise DeclarationError(f"Bundle {name!r} has no common target platform")
        return [Platform.parse(label) for label in labels]

    def bundle_matrix(
        self,
        name: str,
        targets: Iterable[str] | None = None,
        *,
        cancel_event: threading.Event | None = None,
    ) -> dict[str, Bundle]:
        """Realize and bundle ``name`` for every requested platform.

        Raises ``IncompleteRealizationError`` if any required derivation
        could not be realized; no bundle is produced in that case.
        """
        spec = self.declaration.bundle(name)
        platforms = self.bundle_targets(name, targets)
        selections = {
            platform.label: self.graph.select(spec.units, platform.label)
            for platform in platforms
        }
        wanted = [key for keys in selections.values() for key in keys]
        report = self.realize(wanted, cancel_event=cancel_event)
        if not report.success:
            failed = report.keys_in(
                DerivationState.FAILED,
                DerivationState.UNBUILDABLE,
                DerivationState.UNSUPPORTED,
                DerivationState.CANCELLED,
            )
            raise IncompleteRealizationError(
                f"Cannot bundle {name!r}: {', '.join(failed)} not realized", report
            )

        bundles: dict[str, Bundle] = {}
        for platform in platforms:
            realizations = [
                (self.graph.unit(key).name, report.realizations[key])
                for key in selections[platform.label]
            ]
            bundles[platform.label] = self.bundler.bundle(spec, platform, realizations)
        return bundles

    def bundle(self, name: str, platform: str) -> Bundle:
        return self.bundle_matrix(name, [platform])[Platform.parse(platform).label]

    @property
    def publisher(self) -> ReleasePublisher:
        if self._publisher is None:
            backend = self._backend or LocalReleaseBackend(self.config.releases_path)
            self._publisher = ReleasePublisher(
                backend, ReleaseRegistry(self.config.registry_path)
            )
        return self._publisher

    def publish(
        self,
        label: str,
        bundle: str | None = None,
        targets: Iterable[str] | None = None,
        *,
        overwrite: bool = False,
    ) -> list[PublishResult]:
        """Bundle and publish a release for a platform matrix.

        ``bundle`` and ``targets`` default to the ``[release]`` declaration.
        """
        name = bundle or self.declaration.release.bundle
        if not name:
            raise DeclarationError("No bundle given and no [release] bundle declared")
        targets = list(targets or self.declaration.release.targets) or None
        bundles = self.bundle_matrix(name, targets)
        return self.publisher.publish(label, bundles, overwrite=overwrite)


class _Run:
    """Mutable bookkeeping for one ``realize()`` call."""

    def __init__(self, keys: list[str]) -> None:
        self.states: dict[str, DerivationState] = {k: DerivationState.PENDING for k in keys}
        self.realizations: dict[str, Realization] = {}
        self.failures: dict[str, FailureRecord] = {}
        self.built: list[str] = []

    def fail(
        self,
        graph: DerivationGraph,
        key: str,
        state: DerivationState,
        reason: str,
        **details,
    ) -> None:
        """Record a failure and mark every pending dependent unbuildable."""
        self.states[key] = state
        self.failures[key] = FailureRecord(
            key=key, state=state, origin=key, reason=reason, **details
        )
        for dependent in graph.dependents(key):
            if self.states.get(dependent) != DerivationState.PENDING:
                continue
            self.states[dependent] = DerivationState.UNBUILDABLE
            self.failures[dependent] = FailureRecord(
                key=dependent,
                state=DerivationState.UNBUILDABLE,
                origin=key,
                reason=f"dependency {key} is {state.value}",
            )

    def report(self) -> RealizationReport:
        return RealizationReport(
            states=dict(self.states),
            realizations={k: r for k, r in self.realizations.items()},
            failures=dict(self.failures),
            built=list(self.built),
        )
