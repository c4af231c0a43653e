"""Line-by-line batch progress output.

Prints one line per task transition instead of redrawing in place, so the
output stays readable when piped or captured. Everything goes to stderr.
"""

from rich.console import Console
from rich.table import Table

from .activity import LogEntry
from .orchestrator import BatchEvent, BatchEventType, BatchResult
from .models import TaskStatus
from .usage import CostBreakdown, UsageLedger

# Progress console writes to stderr (stdout is kept for --json output)
_console = Console(stderr=True)

_ENTRY_STYLES = {
    "info": "white",
    "success": "green",
    "warning": "yellow",
    "error": "red",
}

_STATUS_ICONS = {
    TaskStatus.PENDING: "[dim]○[/dim]",
    TaskStatus.PROCESSING: "[yellow]⏳[/yellow]",
    TaskStatus.COMPLETED: "[green]✓[/green]",
    TaskStatus.FAILED: "[red]✗[/red]",
}


def set_console(console: Console) -> None:
    """Swap the output console (tests capture output this way)."""
    global _console
    _console = console


def print_header(total_images: int, model: str) -> None:
    _console.print()
    _console.print("━" * 55, style="yellow")
    _console.print(" 🍌 BANANA BATCH", style="bold yellow")
    _console.print("━" * 55, style="yellow")
    _console.print()
    _console.print(f" [dim]Images:[/dim] {total_images}")
    _console.print(f" [dim]Model:[/dim]  {model}")
    _console.print()


def print_event(event: BatchEvent) -> None:
    """Render one orchestrator event."""
    if event.type == BatchEventType.QUEUED:
        _console.print(f" [cyan]Queued {event.total} task(s)[/cyan]")
    elif event.type == BatchEventType.STARTED:
        _console.print(
            f" {_STATUS_ICONS[TaskStatus.PROCESSING]} [{event.index + 1}/{event.total}] "
            f"{event.task.prompt_name}"
        )
    elif event.type == BatchEventType.SUCCEEDED:
        usage = event.usage
        _console.print(
            f" {_STATUS_ICONS[TaskStatus.COMPLETED]} [{event.index + 1}/{event.total}] "
            f"{event.task.prompt_name} [dim]({usage.total_tokens} tokens, ${event.cost:.4f})[/dim]"
        )
    elif event.type == BatchEventType.FAILED:
        _console.print(
            f" {_STATUS_ICONS[TaskStatus.FAILED]} [{event.index + 1}/{event.total}] "
            f"{event.task.prompt_name}: [red]{event.message}[/red]"
        )
    elif event.type == BatchEventType.ABORTED:
        _console.print(" [bold red]Batch stopped: API key rejected[/bold red]")


def print_entry(entry: LogEntry) -> None:
    style = _ENTRY_STYLES.get(entry.type, "white")
    _console.print(f"[dim][{entry.timestamp}][/dim] [{style}]{entry.message}[/{style}]")


def print_summary(result: BatchResult) -> None:
    _console.print()
    table = Table(title="Results", show_lines=False)
    table.add_column("#", justify="right")
    table.add_column("Prompt")
    table.add_column("Status")
    table.add_column("Detail", overflow="fold")
    for i, task in enumerate(result.tasks, 1):
        detail = task.error_message or ""
        if task.usage:
            detail = f"{task.usage.total_tokens} tokens"
        table.add_row(str(i), task.prompt_name, f"{_STATUS_ICONS[task.status]} {task.status.value}", detail)
    _console.print(table)


def print_usage(ledger: UsageLedger, breakdown: CostBreakdown, model: str) -> None:
    table = Table(title=f"Usage ({model})")
    table.add_column("Metric")
    table.add_column("Value", justify="right")
    table.add_row("Images", str(ledger.image_count))
    table.add_row("Input tokens", f"{ledger.input_tokens:,}")
    table.add_row("Output text tokens", f"{ledger.output_text_tokens:,}")
    table.add_row("Output image tokens", f"{ledger.output_image_tokens:,}")
    table.add_row("Total tokens", f"{ledger.total_tokens:,}")
    table.add_row("Input cost", f"${breakdown.input_cost:.4f}")
    table.add_row("Output cost", f"${breakdown.output_cost:.4f}")
    table.add_row("Session cost", f"${breakdown.total_cost:.4f}")
    table.add_row("Lifetime cost", f"${breakdown.lifetime_cost:.4f}")
    table.add_row("Lifetime images", str(ledger.lifetime_image_count))
    _console.print(table)


def print_error(message: str) -> None:
    _console.print()
    _console.print("━" * 55, style="red")
    _console.print(" ❌ ERROR", style="bold red")
    _console.print("━" * 55, style="red")
    _console.print()
    _console.print(f" {message}", style="red")
    _console.print()
