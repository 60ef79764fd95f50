"""Shared plumbing for CLI commands: loading the project and exit codes."""

from __future__ import annotations

from pathlib import Path
from typing import NoReturn

import typer
from rich.console import Console
from rich.markup import escape

from drvforge.config import Settings
from drvforge.core.declarations import load_declarations
from drvforge.core.orchestrator import Orchestrator
from drvforge.errors import (
    BundleConflictError,
    DeclarationError,
    GraphError,
    UnsupportedTargetError,
)
from drvforge.models.derivations import DerivationState
from drvforge.models.platforms import PlatformParseError
from drvforge.models.reports import RealizationReport

EXIT_OK = 0
EXIT_CONFIG = 2
EXIT_BUILD = 3
EXIT_PUBLISH = 4
EXIT_CANCELLED = 130

# Errors in what was declared or requested rather than in a build
CONFIG_ERRORS = (
    DeclarationError,
    GraphError,
    UnsupportedTargetError,
    BundleConflictError,
    PlatformParseError,
)

FILE_OPTION = typer.Option(
    None,
    "--file",
    "-f",
    help="Declaration file (default: $DRVFORGE_DECLARATION_FILE or drvforge.toml).",
)


def load_orchestrator(declaration_file: Path | None = None, **overrides) -> Orchestrator:
    """Build an Orchestrator from settings, the declaration file and CLI flags."""
    settings = Settings()
    declaration = load_declarations(declaration_file or settings.declaration_file)
    config = settings.engine_config(declaration.root, **overrides)
    return Orchestrator(declaration, config)


def report_exit_code(report: RealizationReport) -> int:
    if report.success:
        return EXIT_OK
    if report.keys_in(DerivationState.FAILED, DerivationState.UNBUILDABLE):
        return EXIT_BUILD
    if report.cancelled:
        return EXIT_CANCELLED
    return EXIT_CONFIG


def abort(console: Console, title: str, exc: object, code: int) -> NoReturn:
    """Print an error line and exit with ``code``."""
    console.print(f"[bold red]{title}:[/bold red] {escape(str(exc))}")
    raise typer.Exit(code=code)
