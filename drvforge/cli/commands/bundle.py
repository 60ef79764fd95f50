"""``drvforge bundle NAME`` — realize and pack a bundle per platform."""

from __future__ import annotations

from pathlib import Path

import typer
from rich.console import Console

from drvforge.cli.context import (
    CONFIG_ERRORS,
    EXIT_BUILD,
    EXIT_CANCELLED,
    EXIT_CONFIG,
    FILE_OPTION,
    abort,
    load_orchestrator,
    report_exit_code,
)
from drvforge.errors import IncompleteRealizationError
from drvforge.monitor.renderer import ReportRenderer

console = Console()


def bundle_cmd(
    name: str = typer.Argument(..., help="Bundle name from [bundles.<name>]."),
    targets: list[str] = typer.Option(
        None,
        "--target",
        "-t",
        help="Platform to bundle for (repeatable). Default: declared targets.",
    ),
    out_dir: Path = typer.Option(
        None,
        "--out",
        "-o",
        help="Copy the finished archives into this directory.",
    ),
    declaration_file: Path = FILE_OPTION,
) -> None:
    """Build a bundle's units and write one deterministic archive per platform."""
    renderer = ReportRenderer(console)
    try:
        orchestrator = load_orchestrator(declaration_file)
        bundles = orchestrator.bundle_matrix(name, targets or None)
    except CONFIG_ERRORS as exc:
        abort(console, "Cannot bundle", exc, EXIT_CONFIG)
    except IncompleteRealizationError as exc:
        renderer.print_report(exc.report)
        abort(console, "Cannot bundle", exc, report_exit_code(exc.report) or EXIT_BUILD)
    except KeyboardInterrupt:
        console.print("[yellow]Cancelled.[/yellow]")
        raise typer.Exit(code=EXIT_CANCELLED)

    console.print(renderer.render_bundles(bundles))
    if out_dir is not None:
        for bundle in bundles.values():
            dest = orchestrator.bundler.export(bundle, out_dir)
            console.print(f"wrote [cyan]{dest}[/cyan]")
