"""``drvforge realize [UNIT...]`` — build derivations and their dependencies.

Prints a per-derivation report and the build log of every failed build.
Exit status: 0 all realized, 2 declaration or graph error, 3 build failure,
130 cancelled.
"""

from __future__ import annotations

from pathlib import Path

import typer
from rich.console import Console

from drvforge.cli.context import (
    CONFIG_ERRORS,
    EXIT_CANCELLED,
    EXIT_CONFIG,
    FILE_OPTION,
    abort,
    load_orchestrator,
    report_exit_code,
)
from drvforge.models.platforms import Platform
from drvforge.monitor.renderer import ReportRenderer

console = Console()


def realize_cmd(
    units: list[str] = typer.Argument(
        None,
        help="Units (or name@platform keys) to realize. Default: everything.",
    ),
    target: str = typer.Option(
        None,
        "--target",
        "-t",
        help="Only realize the variants for this platform.",
    ),
    fail_fast: bool = typer.Option(
        False,
        "--fail-fast",
        help="Cancel remaining builds on the first failure.",
    ),
    workers: int = typer.Option(
        None,
        "--workers",
        "-j",
        min=1,
        help="Maximum number of concurrent builds.",
    ),
    timeout: float = typer.Option(
        None,
        "--timeout",
        help="Per-build time budget in seconds.",
    ),
    declaration_file: Path = FILE_OPTION,
) -> None:
    """Realize derivations, reusing anything already in the store."""
    try:
        orchestrator = load_orchestrator(
            declaration_file,
            max_workers=workers,
            build_timeout=timeout,
            fail_fast=fail_fast,
        )
        if units:
            keys = orchestrator.graph.select(units, target)
        elif target:
            label = Platform.parse(target).label
            keys = [k for k in orchestrator.graph.keys if orchestrator.graph.target(k).label == label]
            if not keys:
                abort(console, "Nothing to realize", f"no unit targets {label}", EXIT_CONFIG)
        else:
            keys = None
        report = orchestrator.realize(keys)
    except CONFIG_ERRORS as exc:
        abort(console, "Evaluation failed", exc, EXIT_CONFIG)
    except KeyboardInterrupt:
        console.print("[yellow]Cancelled.[/yellow]")
        raise typer.Exit(code=EXIT_CANCELLED)

    ReportRenderer(console).print_report(report)
    raise typer.Exit(code=report_exit_code(report))
