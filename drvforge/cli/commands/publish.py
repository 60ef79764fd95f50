"""``drvforge publish LABEL`` — bundle and publish a release.

Publishing the same content again is a no-op. Replacing an asset that is
already published with different content requires ``--overwrite``; without
it nothing is uploaded and the command exits with status 4.
"""

from __future__ import annotations

from pathlib import Path

import typer
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel

from drvforge.cli.context import (
    CONFIG_ERRORS,
    EXIT_BUILD,
    EXIT_CANCELLED,
    EXIT_CONFIG,
    EXIT_PUBLISH,
    FILE_OPTION,
    abort,
    load_orchestrator,
    report_exit_code,
)
from drvforge.errors import IncompleteRealizationError, ReleaseConflictError
from drvforge.monitor.renderer import ReportRenderer

console = Console()


def publish_cmd(
    label: str = typer.Argument(..., help="Release label, e.g. v1.2.0."),
    bundle: str = typer.Option(
        None,
        "--bundle",
        "-b",
        help="Bundle to publish. Default: [release] bundle.",
    ),
    targets: list[str] = typer.Option(
        None,
        "--target",
        "-t",
        help="Platform to publish for (repeatable). Default: [release] targets.",
    ),
    overwrite: bool = typer.Option(
        False,
        "--overwrite",
        help="Replace assets already published with different content.",
    ),
    declaration_file: Path = FILE_OPTION,
) -> None:
    """Publish one asset per platform under a release label."""
    renderer = ReportRenderer(console)
    try:
        orchestrator = load_orchestrator(declaration_file)
        results = orchestrator.publish(label, bundle, targets or None, overwrite=overwrite)
    except CONFIG_ERRORS as exc:
        abort(console, "Cannot publish", exc, EXIT_CONFIG)
    except IncompleteRealizationError as exc:
        renderer.print_report(exc.report)
        abort(console, "Cannot publish", exc, report_exit_code(exc.report) or EXIT_BUILD)
    except ReleaseConflictError as exc:
        console.print(
            Panel(
                "\n".join([
                    f"[bold red]{escape(str(exc))}[/bold red]",
                    "",
                    f"[bold]Published:[/bold] {exc.existing}",
                    f"[bold]New:[/bold]       {exc.new}",
                    "",
                    "[dim]Re-run with --overwrite to replace it.[/dim]",
                ]),
                title="[bold]Release conflict[/bold]",
                border_style="red",
                padding=(1, 2),
            )
        )
        raise typer.Exit(code=EXIT_PUBLISH)
    except OSError as exc:
        abort(console, "Upload failed", exc, EXIT_PUBLISH)
    except KeyboardInterrupt:
        console.print("[yellow]Cancelled.[/yellow]")
        raise typer.Exit(code=EXIT_CANCELLED)

    console.print(renderer.render_publish(label, results))
