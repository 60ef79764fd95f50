"""``drvforge graph`` — print the topological build plan."""

from __future__ import annotations

from pathlib import Path

import typer
from rich.console import Console

from drvforge.cli.context import CONFIG_ERRORS, EXIT_CONFIG, FILE_OPTION, abort, load_orchestrator
from drvforge.monitor.renderer import ReportRenderer

console = Console()


def graph_cmd(
    ids: bool = typer.Option(
        False,
        "--ids",
        help="Also compute and print derivation identifiers.",
    ),
    declaration_file: Path = FILE_OPTION,
) -> None:
    """Show every derivation in build order, grouped by level."""
    try:
        orchestrator = load_orchestrator(declaration_file)
        console.print(ReportRenderer(console).render_plan(orchestrator.graph))
        if ids:
            for key in orchestrator.graph.keys:
                console.print(f"{key}  [dim]{orchestrator.graph.derivation(key).drv_id}[/dim]")
    except CONFIG_ERRORS as exc:
        abort(console, "Evaluation failed", exc, EXIT_CONFIG)
