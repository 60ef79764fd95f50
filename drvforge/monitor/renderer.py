"""Rich terminal renderer for realization reports, plans and releases.

Color scheme
------------
- green     : BUILT
- cyan      : CACHED
- red       : FAILED
- bold red  : UNBUILDABLE
- magenta   : UNSUPPORTED
- yellow    : CANCELLED
- dim       : PENDING
"""

from __future__ import annotations

from rich.console import Console, Group
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from drvforge.core.derivation_graph import DerivationGraph
from drvforge.models.artifacts import Bundle
from drvforge.models.derivations import DerivationState
from drvforge.models.environment import BuildEnvironment
from drvforge.models.releases import PublishResult, PublishStatus
from drvforge.models.reports import RealizationReport

# ---------------------------------------------------------------------------
# State -> Rich style mapping
# ---------------------------------------------------------------------------

_STATE_ICONS: dict[DerivationState, str] = {
    DerivationState.BUILT: "[green]BUILT[/green]",
    DerivationState.CACHED: "[cyan]CACHED[/cyan]",
    DerivationState.FAILED: "[red]FAILED[/red]",
    DerivationState.UNBUILDABLE: "[bold red]UNBUILDABLE[/bold red]",
    DerivationState.UNSUPPORTED: "[magenta]UNSUPPORTED[/magenta]",
    DerivationState.CANCELLED: "[yellow]CANCELLED[/yellow]",
    DerivationState.RUNNING: "[yellow]RUNNING[/yellow]",
    DerivationState.PENDING: "[dim]PENDING[/dim]",
}

_PUBLISH_ICONS: dict[PublishStatus, str] = {
    PublishStatus.PUBLISHED: "[green]published[/green]",
    PublishStatus.UNCHANGED: "[dim]unchanged[/dim]",
    PublishStatus.OVERWRITTEN: "[yellow]overwritten[/yellow]",
}


def _short(address: str, width: int = 19) -> str:
    return address[:width] if address else "-"


class ReportRenderer:
    """Renders drvforge results as Rich terminal output.

    Parameters
    ----------
    console:
        Rich Console instance.  A new one is created if not provided.
    """

    def __init__(self, console: Console | None = None) -> None:
        self.console = console or Console()

    # ------------------------------------------------------------------
    # Realization reports
    # ------------------------------------------------------------------

    def render_report(self, report: RealizationReport) -> Panel:
        """Render a RealizationReport as a Panel with one row per derivation."""
        table = Table(show_header=True, header_style="bold cyan", expand=True)
        table.add_column("Derivation", min_width=20)
        table.add_column("State", justify="center", min_width=12)
        table.add_column("Outputs / Reason", min_width=30)

        for key, state in report.states.items():
            if key in report.realizations:
                details = ", ".join(
                    f"{name} [dim]{_short(address)}[/dim]"
                    for name, address in report.realizations[key].output_ids().items()
                )
            elif key in report.failures:
                failure = report.failures[key]
                details = escape(failure.reason)
                if failure.origin != key:
                    details = f"[red]{details}[/red]"
            else:
                details = "[dim]-[/dim]"
            table.add_row(key, _STATE_ICONS.get(state, state.value), details)

        counts = {s: len(report.keys_in(s)) for s in DerivationState}
        summary = "  |  ".join([
            f"[bold]Built:[/bold] {counts[DerivationState.BUILT]}",
            f"[bold]Cached:[/bold] {counts[DerivationState.CACHED]}",
            f"[bold]Failed:[/bold] {counts[DerivationState.FAILED]}",
            f"[bold]Unbuildable:[/bold] {counts[DerivationState.UNBUILDABLE]}",
        ])
        border = "green" if report.success else ("yellow" if report.cancelled else "red")
        return Panel(
            Group(table, Text(""), Text.from_markup(summary)),
            title="[bold]Realization[/bold]",
            border_style=border,
            padding=(1, 2),
        )

    def print_report(self, report: RealizationReport, *, show_logs: bool = True) -> None:
        self.console.print(self.render_report(report))
        if not show_logs:
            return
        for key, failure in report.failures.items():
            if failure.state != DerivationState.FAILED or not failure.log:
                continue
            self.console.print(
                Panel(
                    Text(failure.log.rstrip()),
                    title=f"[bold red]build log: {key}[/bold red]",
                    subtitle=escape(failure.reason),
                    border_style="red",
                )
            )

    # ------------------------------------------------------------------
    # Plans and environments
    # ------------------------------------------------------------------

    def render_plan(self, graph: DerivationGraph) -> Table:
        """Topological plan: one row per node, grouped by level."""
        table = Table(title="Build plan", show_header=True, header_style="bold cyan")
        table.add_column("Level", justify="right", style="dim")
        table.add_column("Derivation", style="cyan")
        table.add_column("Depends on")
        for level, keys in enumerate(graph.levels()):
            for key in keys:
                deps = ", ".join(graph.dependencies(key)) or "[dim]-[/dim]"
                table.add_row(str(level), key, deps)
        return table

    def render_environment(self, key: str, environment: BuildEnvironment) -> Panel:
        table = Table(show_header=False, box=None, pad_edge=False)
        table.add_column("Name", style="bold")
        table.add_column("Value")
        for name, value in environment.env.items():
            table.add_row(name, value)
        if environment.path:
            table.add_row("PATH", ":".join(environment.path))
        kind = (
            f"[yellow]cross[/yellow] ({environment.target_triple})"
            if environment.is_cross
            else "[green]native[/green]"
        )
        header = Text.from_markup(
            f"[bold]Host:[/bold] {environment.host.label}  |  "
            f"[bold]Target:[/bold] {environment.target.label}  |  "
            f"[bold]Toolchain:[/bold] {environment.toolchain}  |  {kind}"
        )
        return Panel(
            Group(header, Text(""), table),
            title=f"[bold]Build environment: {key}[/bold]",
            border_style="blue",
        )

    # ------------------------------------------------------------------
    # Bundles and releases
    # ------------------------------------------------------------------

    def render_bundles(self, bundles: dict[str, Bundle]) -> Table:
        table = Table(title="Bundles", show_header=True, header_style="bold cyan")
        table.add_column("Platform")
        table.add_column("Asset", style="cyan")
        table.add_column("Entries", justify="right")
        table.add_column("Size", justify="right")
        table.add_column("Address", style="dim")
        for platform, bundle in bundles.items():
            table.add_row(
                platform,
                bundle.asset_name,
                str(len(bundle.manifest.entries)),
                f"{bundle.size_bytes:,}",
                _short(bundle.content_address, 23),
            )
        return table

    def render_publish(self, label: str, results: list[PublishResult]) -> Table:
        table = Table(title=f"Release {label}", show_header=True, header_style="bold cyan")
        table.add_column("Platform")
        table.add_column("Asset", style="cyan")
        table.add_column("Status", justify="center")
        table.add_column("Location", style="dim")
        for result in results:
            table.add_row(
                result.asset.platform,
                result.asset.asset_name,
                _PUBLISH_ICONS[result.status],
                result.asset.location,
            )
        return table
