"""Sandboxed executor — run one derivation's build command in isolation.

Each build gets a private scratch directory::

    {scratch}/src/                 writable copy of the filtered source snapshot
    {scratch}/deps/{unit}/{output} links to dependency outputs in the store
                                   (executable file outputs are copied, mode 0555)
    {scratch}/out/                 where declared outputs must be written
    {scratch}/tmp/  {scratch}/home/
    {scratch}/build.log            combined stdout/stderr

The command runs under ``/bin/sh -eu -c`` with a cleared environment: only
the build environment, the declared unit variables and the sandbox's own
variables are visible. Outputs are registered in the content store only
after the command succeeded and every declared output exists. Absolute
symlinks into ``$out`` are rewritten as relative links before ingest.
"""

from __future__ import annotations

import functools
import logging
import os
import shutil
import signal
import subprocess
import tempfile
import threading
import time
from pathlib import Path

from drvforge.core.content_store import ContentStore
from drvforge.core.derivation_graph import PlannedDerivation
from drvforge.errors import BuildCancelled, BuildFailure, BuildTimeout
from drvforge.models.artifacts import ArtifactKind, Realization

logger = logging.getLogger(__name__)

SYSTEM_PATH: tuple[str, ...] = ("/usr/local/bin", "/usr/bin", "/bin")
SHELL: tuple[str, ...] = ("/bin/sh", "-eu", "-c")
UNSHARE_NET: tuple[str, ...] = ("--net", "--map-root-user", "--")


def dependency_env_name(unit: str) -> str:
    """``cgt-core`` -> ``CGT_CORE_OUT``."""
    return "".join(c if c.isalnum() else "_" for c in unit).upper() + "_OUT"


@functools.lru_cache(maxsize=None)
def find_unshare() -> str | None:
    """Path of an ``unshare`` that can create a network namespace here, or None."""
    unshare = shutil.which("unshare")
    if unshare is None:
        return None
    try:
        result = subprocess.run(
            [unshare, *UNSHARE_NET, "true"], capture_output=True, timeout=5
        )
    except (OSError, subprocess.TimeoutExpired):
        return None
    return unshare if result.returncode == 0 else None


def _force_rmtree(path: Path) -> None:
    """Remove a scratch tree even if the build left read-only directories."""
    if not path.exists():
        return
    for dirpath, dirnames, _ in os.walk(path):
        for name in dirnames:
            sub = Path(dirpath) / name
            if not sub.is_symlink():
                sub.chmod(0o755)
    shutil.rmtree(path)


def _relativize_links(out: Path, scratch: Path) -> list[str]:
    """Rewrite absolute symlinks below ``out`` that point into it as relative.

    Returns the nested links that still point somewhere else in ``scratch``;
    those would dangle once the scratch directory is gone. Top-level output
    links are dereferenced on ingest and may point anywhere.
    """
    escaped: list[str] = []
    for dirpath, dirnames, filenames in os.walk(out):
        for name in dirnames + filenames:
            link = Path(dirpath) / name
            if not link.is_symlink():
                continue
            target = os.readlink(link)
            if not os.path.isabs(target):
                continue
            resolved = Path(os.path.normpath(target))
            if resolved.is_relative_to(out):
                link.unlink()
                link.symlink_to(os.path.relpath(resolved, link.parent))
            elif resolved.is_relative_to(scratch) and Path(dirpath) != out:
                escaped.append(link.relative_to(out).as_posix())
    return sorted(escaped)


class SandboxExecutor:
    """Executes derivations in throwaway scratch directories.

    Parameters
    ----------
    store:
        The content store supplying inputs and receiving outputs.
    timeout:
        Default time budget per build in seconds; ``None`` disables it.
        A unit's own ``timeout`` takes precedence.
    keep_failed:
        Keep the scratch directory of failed builds for inspection.
    isolate_network:
        Run builds in a fresh network namespace via ``unshare``. Without a
        working ``unshare`` a warning is logged and builds run unisolated.
    log_tail_bytes:
        How much of the end of the build log a failure carries.
    """

    def __init__(
        self,
        store: ContentStore,
        *,
        timeout: float | None = None,
        keep_failed: bool = False,
        isolate_network: bool = True,
        scratch_root: Path | None = None,
        log_tail_bytes: int = 64 * 1024,
        poll_interval: float = 0.05,
    ) -> None:
        self._store = store
        self._timeout = timeout
        self._keep_failed = keep_failed
        self._unshare: str | None = None
        if isolate_network:
            self._unshare = find_unshare()
            if self._unshare is None:
                logger.warning(
                    "unshare cannot create a network namespace; "
                    "building without network isolation"
                )
        self._scratch_root = Path(scratch_root or store.base_path / "tmp")
        self._scratch_root.mkdir(parents=True, exist_ok=True)
        self._log_tail_bytes = log_tail_bytes
        self._poll_interval = poll_interval

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    def execute(
        self,
        planned: PlannedDerivation,
        inputs: dict[str, Realization],
        *,
        cancel_event: threading.Event | None = None,
    ) -> Realization:
        """Build ``planned`` and register its outputs.

        ``inputs`` maps each dependency unit name to its realization.
        Raises ``BuildFailure``, ``BuildTimeout`` or ``BuildCancelled``;
        nothing is registered in those cases.
        """
        drv = planned.derivation
        scratch = Path(
            tempfile.mkdtemp(prefix=f"build-{drv.name}-", dir=self._scratch_root)
        ).resolve()
        failed = True
        try:
            src, out = self._prepare(scratch, planned, inputs)
            env = self._environment(scratch, planned, inputs)
            timeout = planned.timeout if planned.timeout is not None else self._timeout

            logger.info("building %s (%s)", drv.key, drv.drv_id[:19])
            exit_status = self._run(
                self._argv(drv.command),
                cwd=src,
                env=env,
                log_path=scratch / "build.log",
                timeout=timeout,
                cancel_event=cancel_event,
                drv_id=drv.drv_id,
                key=drv.key,
            )
            log = self._log_tail(scratch / "build.log")
            if exit_status != 0:
                raise BuildFailure(drv.drv_id, exit_status, log, key=drv.key)

            missing = [name for name in drv.outputs if not os.path.lexists(out / name)]
            if missing:
                raise BuildFailure(
                    drv.drv_id,
                    exit_status,
                    log,
                    key=drv.key,
                    reason=f"declared outputs not produced: {', '.join(missing)}",
                )
            escaped = _relativize_links(out, scratch)
            if escaped:
                raise BuildFailure(
                    drv.drv_id,
                    exit_status,
                    log,
                    key=drv.key,
                    reason=f"outputs link into the build directory: {', '.join(escaped)}",
                )

            outputs = {
                name: self._store.ingest(out / name, name=name, drv_id=drv.drv_id)
                for name in drv.outputs
            }
            realization = self._store.register_realization(
                Realization(drv_id=drv.drv_id, key=drv.key, outputs=outputs)
            )
            failed = False
            logger.info("built %s", drv.key)
            return realization
        finally:
            if failed and self._keep_failed:
                logger.warning("kept scratch directory of %s at %s", drv.key, scratch)
            else:
                _force_rmtree(scratch)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _prepare(
        self,
        scratch: Path,
        planned: PlannedDerivation,
        inputs: dict[str, Realization],
    ) -> tuple[Path, Path]:
        src = scratch / "src"
        self._store.materialize_snapshot(planned.snapshot, src, writable=True)
        for dep_name in planned.dependencies:
            dep_dir = scratch / "deps" / dep_name
            dep_dir.mkdir(parents=True)
            for output, artifact in inputs[dep_name].outputs.items():
                link = dep_dir / output
                link.parent.mkdir(parents=True, exist_ok=True)
                stored = self._store.artifact_path(artifact)
                if artifact.kind == ArtifactKind.FILE and artifact.executable:
                    # blobs are shared and 0444
                    shutil.copyfile(stored, link)
                    link.chmod(0o555)
                else:
                    link.symlink_to(stored)
        out = scratch / "out"
        for sub in ("out", "tmp", "home"):
            (scratch / sub).mkdir(exist_ok=True)
        return src, out

    def _environment(
        self,
        scratch: Path,
        planned: PlannedDerivation,
        inputs: dict[str, Realization],
    ) -> dict[str, str]:
        drv = planned.derivation
        env: dict[str, str] = {}
        env.update(planned.environment.env)
        env.update(drv.env)
        for dep_name in planned.dependencies:
            env[dependency_env_name(dep_name)] = str(scratch / "deps" / dep_name)
        env.update({
            "PATH": ":".join([*planned.environment.path, *SYSTEM_PATH]),
            "HOME": str(scratch / "home"),
            "TMPDIR": str(scratch / "tmp"),
            "out": str(scratch / "out"),
            "src": str(scratch / "src"),
            "DRV_ID": drv.drv_id,
            "DRV_NAME": drv.name,
            "DRV_TARGET": drv.target.label,
            "SOURCE_DATE_EPOCH": "1",
            "LANG": "C.UTF-8",
            "TZ": "UTC",
        })
        return env

    def _argv(self, command: str) -> list[str]:
        argv = [*SHELL, command]
        if self._unshare:
            return [self._unshare, *UNSHARE_NET, *argv]
        return argv

    def _run(
        self,
        argv: list[str],
        *,
        cwd: Path,
        env: dict[str, str],
        log_path: Path,
        timeout: float | None,
        cancel_event: threading.Event | None,
        drv_id: str,
        key: str,
    ) -> int:
        deadline = time.monotonic() + timeout if timeout else None
        with open(log_path, "wb") as log:
            proc = subprocess.Popen(
                argv,
                cwd=cwd,
                env=env,
                stdin=subprocess.DEVNULL,
                stdout=log,
                stderr=subprocess.STDOUT,
                start_new_session=True,
            )
            while True:
                try:
                    return proc.wait(timeout=self._poll_interval)
                except subprocess.TimeoutExpired:
                    pass
                if cancel_event is not None and cancel_event.is_set():
                    self._kill(proc)
                    raise BuildCancelled(drv_id, key=key)
                if deadline is not None and time.monotonic() > deadline:
                    self._kill(proc)
                    raise BuildTimeout(drv_id, timeout, self._log_tail(log_path), key=key)

    @staticmethod
    def _kill(proc: subprocess.Popen) -> None:
        """Kill the build's whole process group and reap it."""
        try:
            os.killpg(proc.pid, signal.SIGKILL)
        except ProcessLookupError:
            pass
        proc.wait()

    def _log_tail(self, log_path: Path) -> str:
        if not log_path.exists():
            return ""
        size = log_path.stat().st_size
        with open(log_path, "rb") as fh:
            if size > self._log_tail_bytes:
                fh.seek(size - self._log_tail_bytes)
            return fh.read().decode("utf-8", errors="replace")
