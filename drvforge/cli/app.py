"""Main Typer application — imports and registers all CLI commands.

Entry point: ``drvforge`` (configured via pyproject.toml project.scripts).

Commands: realize, graph, env, bundle, publish.
"""

from __future__ import annotations

import logging

import typer
from rich.console import Console
from rich.logging import RichHandler

from drvforge import __version__
from drvforge.cli.commands.bundle import bundle_cmd
from drvforge.cli.commands.env import env_cmd
from drvforge.cli.commands.graph import graph_cmd
from drvforge.cli.commands.publish import publish_cmd
from drvforge.cli.commands.realize import realize_cmd
from drvforge.config import Settings

app = typer.Typer(
    name="drvforge",
    help="drvforge: declarative, content-addressed builds and release bundles.",
    no_args_is_help=True,
    rich_markup_mode="rich",
    add_completion=False,
)

# Register subcommands
app.command(name="realize", help="Build derivations and their dependencies.")(realize_cmd)
app.command(name="graph", help="Show the build plan in topological order.")(graph_cmd)
app.command(name="env", help="Show the resolved build environment of a unit.")(env_cmd)
app.command(name="bundle", help="Pack a bundle's artifacts for each platform.")(bundle_cmd)
app.command(name="publish", help="Publish bundles as release assets.")(publish_cmd)


def configure_logging(level: str) -> None:
    """Send drvforge logs through Rich on stderr."""
    handler = RichHandler(
        console=Console(stderr=True),
        show_path=False,
        rich_tracebacks=True,
    )
    handler.setFormatter(logging.Formatter("%(message)s", datefmt="[%X]"))
    root = logging.getLogger("drvforge")
    root.handlers[:] = [handler]
    root.setLevel(level.upper())
    root.propagate = False


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"drvforge {__version__}")
        raise typer.Exit()


@app.callback()
def main_callback(
    verbose: bool = typer.Option(
        False, "--verbose", "-v", help="Log debug output."
    ),
    version: bool = typer.Option(
        False,
        "--version",
        callback=_version_callback,
        is_eager=True,
        help="Show the version and exit.",
    ),
) -> None:
    configure_logging("DEBUG" if verbose else Settings().log_level)


def main() -> None:
    """CLI entry point."""
    app()


if __name__ == "__main__":
    main()
