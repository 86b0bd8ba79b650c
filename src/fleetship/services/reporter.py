"""Phase-structured console output."""

from typing import List

from rich.console import Console
from rich.table import Table

from fleetship.models import ServerOutcome


class ConsoleReporter:
    """Renders the announced phases, per-server timings and the final summary."""

    def __init__(self, console: Console):
        self.console = console

    def deployment_start(self, release_id: str, mode: str):
        self.console.print(f"[bold blue]Deploying {mode} (release {release_id})[/bold blue]")

    def phase(self, title: str):
        self.console.print(f"\n[bold]{title}[/bold]")

    def step_complete(self, label: str, seconds: float):
        self.console.print(f"  [green]✓[/green] {label} [dim]({seconds:.1f}s)[/dim]")

    def step_failed(self, label: str, error: str):
        self.console.print(f"  [red]✗[/red] {label}: {error}")

    def server_outcome(self, outcome: ServerOutcome):
        label = f"{outcome.entry_name} → {outcome.server}"
        if outcome.succeeded:
            self.step_complete(label, outcome.duration_seconds)
        else:
            self.step_failed(label, outcome.error or "failed")
        for warning in outcome.warnings:
            self.console.print(f"    [yellow]![/yellow] {warning}")

    def summary(self, outcomes: List[ServerOutcome], urls: List[str], success: bool):
        if outcomes:
            table = Table(title="Deployment summary")
            table.add_column("Entry")
            table.add_column("Server")
            table.add_column("State")
            table.add_column("Duration", justify="right")
            table.add_column("Error")
            for outcome in outcomes:
                state = outcome.state.value if outcome.state else "-"
                style = "green" if outcome.succeeded else "red"
                table.add_row(
                    outcome.entry_name,
                    outcome.server,
                    f"[{style}]{state}[/{style}]",
                    f"{outcome.duration_seconds:.1f}s",
                    outcome.error or "",
                )
            self.console.print(table)

        if urls:
            self.console.print("[bold]Your app is live at:[/bold]")
            for url in urls:
                self.console.print(f"  {url}")

        if success:
            self.console.print("[bold green]Deployment completed successfully.[/bold green]")
        else:
            self.console.print("[bold red]Deployment finished with failures.[/bold red]")
