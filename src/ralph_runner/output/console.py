# ABOUTME: Rich console output for Ralph Runner
# ABOUTME: Status lines, iteration headers, countdowns, project status and run summary

"""Terminal output helpers built on rich."""

from contextlib import contextmanager
from typing import Any, Callable, Dict, Iterator, List, Optional

from rich.console import Console
from rich.panel import Panel
from rich.progress import BarColumn, Progress, TextColumn
from rich.rule import Rule
from rich.table import Table

from ..status import StatusSnapshot
from ..tasks import Task


def format_duration(seconds: float) -> str:
    """``3725`` -> ``1h 2m 5s``."""
    seconds = max(0, int(seconds))
    hours, rest = divmod(seconds, 3600)
    minutes, secs = divmod(rest, 60)
    if hours:
        return f"{hours}h {minutes}m {secs}s"
    if minutes:
        return f"{minutes}m {secs}s"
    return f"{secs}s"


class RalphConsole:
    """Coloured console output for the loop and the CLI."""

    def __init__(self, console: Optional[Console] = None):
        self.console = console or Console()

    def print_status(self, message: str, style: str = "cyan") -> None:
        self.console.print(f"[{style}]{message}[/{style}]")

    def print_success(self, message: str) -> None:
        self.console.print(f"[green]✓[/green] {message}")

    def print_error(self, message: str) -> None:
        self.console.print(f"[red bold]✗[/red bold] {message}")

    def print_warning(self, message: str) -> None:
        self.console.print(f"[yellow]⚠[/yellow] {message}")

    def print_info(self, message: str) -> None:
        self.console.print(f"[blue]ℹ[/blue] {message}")

    def print_header(self, title: str) -> None:
        self.console.print(Rule(f"[bold]{title}[/bold]"))

    def print_message(self, text: str) -> None:
        self.console.print(text, markup=False, highlight=False)

    def print_iteration_header(self, iteration: int, max_iterations: int = 0) -> None:
        if max_iterations > 0:
            title = f"Loop #{iteration} / {max_iterations}"
        else:
            title = f"Loop #{iteration}"
        self.console.print(Rule(f"[bold magenta]{title}[/bold magenta]"))

    @contextmanager
    def countdown(self, label: str, total_seconds: float) -> Iterator[Callable[[float], None]]:
        """Show a transient progress bar; yields ``update(remaining_seconds)``."""
        if total_seconds <= 0:
            yield lambda remaining: None
            return

        progress = Progress(
            TextColumn("[yellow]{task.description}"),
            BarColumn(),
            TextColumn("{task.fields[remaining]}"),
            console=self.console,
            transient=True,
        )
        with progress:
            task_id = progress.add_task(label, total=total_seconds, remaining=format_duration(total_seconds))

            def update(remaining: float) -> None:
                progress.update(
                    task_id,
                    completed=total_seconds - remaining,
                    remaining=format_duration(remaining),
                )

            yield update

    def print_project_status(
        self,
        project_name: str,
        snapshot: Optional[StatusSnapshot],
        pending: List[Task],
        breaker_lines: List[str],
    ) -> None:
        self.print_header(f"Project: {project_name}")

        if snapshot is None:
            self.print_warning("No status file found - the loop has not run yet")
        else:
            table = Table(show_header=False, box=None)
            table.add_column("field", style="bold")
            table.add_column("value")
            table.add_row("Status", snapshot.status)
            table.add_row("Loop count", str(snapshot.loop_count))
            table.add_row("Current story", snapshot.current_story or "none")
            table.add_row("Progress", f"{snapshot.stories_complete}/{snapshot.stories_total} stories")
            table.add_row("Calls this hour", f"{snapshot.calls_this_hour}/{snapshot.max_calls_per_hour}")
            if snapshot.reason:
                table.add_row("Reason", snapshot.reason)
            table.add_row("Last updated", snapshot.timestamp)
            self.console.print(table)

        self.print_header("Pending Stories")
        if not pending:
            self.print_message("  (none)")
        for task in pending[:5]:
            self.print_message(f"  ○ [{task.id}] P{task.priority} {task.description[:45]}")

        self.console.print(Panel("\n".join(breaker_lines), title="Circuit Breaker Status", expand=False))

    def print_summary(self, final_state: str, reason: str, metrics: Dict[str, Any]) -> None:
        self.print_header("Ralph Run Summary")
        table = Table(show_header=False, box=None)
        table.add_column("metric", style="bold")
        table.add_column("value")
        table.add_row("Final state", final_state)
        if reason:
            table.add_row("Reason", reason)
        table.add_row("Iterations", str(metrics.get("iterations", 0)))
        table.add_row("Successful", str(metrics.get("successful_iterations", 0)))
        table.add_row("Failed", str(metrics.get("failed_iterations", 0)))
        table.add_row("Timeouts", str(metrics.get("timeouts", 0)))
        table.add_row("Elapsed", format_duration(metrics.get("elapsed_hours", 0) * 3600))
        self.console.print(table)
