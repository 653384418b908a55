"""Terminal UI components for the studio CLI."""

from typing import Dict, Iterable, List, Optional

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from .jobs import IntakeResult, Job, JobStatus


console = Console()

STATUS_STYLES = {
    JobStatus.PENDING: "yellow",
    JobStatus.PROCESSING: "cyan",
    JobStatus.DONE: "green",
    JobStatus.ERROR: "red",
}


class StudioUI:
    """Renders jobs and session state with rich."""

    def __init__(self, out: Optional[Console] = None):
        """Initialize the UI."""
        self.console = out or console

    def display_jobs(self, jobs: Iterable[Job], title: str = "📷 Images"):
        """Display a table of jobs."""
        jobs = list(jobs)
        if not jobs:
            self.console.print("[dim]No images yet. Add some with 'studio-shot add'.[/dim]")
            return

        table = Table(title=title, show_header=True, header_style="bold cyan")
        table.add_column("Id", style="dim", no_wrap=True)
        table.add_column("Original", style="white")
        table.add_column("Status")
        table.add_column("Studio Shot", style="white")
        table.add_column("Error", style="red")

        for job in jobs:
            style = STATUS_STYLES.get(job.status, "white")
            table.add_row(
                job.id,
                job.original_name,
                f"[{style}]{job.status.value}[/{style}]",
                job.processed_name or "-",
                job.error or "",
            )

        self.console.print(table)

    def display_intake(self, result: IntakeResult):
        for job in result.jobs:
            self.console.print(f"  ➕ {job.original_name} [dim]({job.id})[/dim]")
        for failure in result.failures:
            self.console.print(f"  ❌ {failure.name} - Error: {failure.error}")

    def display_credits(self, balance: int, to_process: int):
        style = "green" if balance >= to_process else "red"
        panel = Panel(
            f"Credits: [{style}]{balance}[/{style}]\nReady to generate: {to_process}",
            title="💳 Session",
            border_style="blue",
            expand=False,
        )
        self.console.print(panel)

    def display_summary(self, stats: Dict, counts: Dict[str, int]):
        """Display a summary when a batch is complete."""
        table = Table(title="✨ Batch Complete!", show_header=True, header_style="bold green")
        table.add_column("Metric", style="dim", width=24)
        table.add_column("Value", style="white")

        table.add_row("Processed", str(stats.get("total_processed", 0)))
        table.add_row("Successful", str(stats.get("successful", 0)))
        table.add_row("Errors", str(stats.get("errors", 0)))
        for status, count in counts.items():
            table.add_row(f"Now {status}", str(count))

        self.console.print(table)

    def display_export(self, path: str, entries: List[str]):
        self.console.print(f"[bold green]Saved {len(entries)} studio shots to {path}[/bold green]")
        for name in entries[:10]:
            self.console.print(f"  🖼  {name}")
        if len(entries) > 10:
            self.console.print(f"  ... and {len(entries) - 10} more files")

    def display_error(self, message: str):
        self.console.print(f"[bold red]Error:[/bold red] {message}")
