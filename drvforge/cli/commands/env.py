"""``drvforge env UNIT`` — show the resolved build environment of a unit."""

from __future__ import annotations

from pathlib import Path

import typer
from rich.console import Console

from drvforge.cli.context import CONFIG_ERRORS, EXIT_CONFIG, FILE_OPTION, abort, load_orchestrator
from drvforge.models.derivations import node_key
from drvforge.monitor.renderer import ReportRenderer

console = Console()


def env_cmd(
    unit: str = typer.Argument(..., help="Unit name."),
    target: str = typer.Option(
        None,
        "--target",
        "-t",
        help="Target platform (required when the unit has several).",
    ),
    declaration_file: Path = FILE_OPTION,
) -> None:
    """Print the toolchain variables a unit is built with."""
    try:
        orchestrator = load_orchestrator(declaration_file)
        environment = orchestrator.environment(unit, target)
    except CONFIG_ERRORS as exc:
        abort(console, "Cannot resolve environment", exc, EXIT_CONFIG)

    key = node_key(unit, environment.target)
    console.print(ReportRenderer(console).render_environment(key, environment))
