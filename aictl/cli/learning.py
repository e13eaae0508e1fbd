"""aictl agent learning status | enable | disable"""

from __future__ import annotations

import typer
from rich.console import Console
from rich.table import Table

from aictl.cli.context import AictlContext, run_async
from aictl.exceptions import AictlError

app = typer.Typer(help="Monitor and control agent learning")
console = Console()

_TASK_STATUS = {
    "symbolic": "[green]Learned (Symbolic)[/green]",
    "neural": "[yellow]Learning (Neural)[/yellow]",
    "hybrid": "[blue]Hybrid[/blue]",
}


def _confidence_style(confidence: float) -> str:
    if confidence >= 85:
        return "green"
    if confidence >= 70:
        return "yellow"
    return "red"


def _call(method: str, name: str):
    ctx = AictlContext.get()

    async def _do():
        try:
            return await getattr(ctx.learning, method)(name)
        finally:
            await ctx.close()

    try:
        return run_async(_do())
    except AictlError as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(1)


@app.command("status")
def status(name: str = typer.Argument(help="Agent name")):
    """Show learning status and optimization history."""
    info = _call("status", name)

    enabled = "[green]Enabled[/green]" if info.enabled else "[yellow]Disabled[/yellow]"
    console.print(f"[bold]Agent:[/bold] {info.agent}")
    console.print(f"[bold]Learning:[/bold] {enabled}")
    console.print(f"[bold]Created:[/bold] {info.created or 'Unknown'}")
    if info.ready is not None:
        ready = "[green]Ready[/green]" if info.ready else "[yellow]Not Ready[/yellow]"
        console.print(f"[bold]Status:[/bold] {ready} (last activity {info.last_activity or 'unknown'})")
    console.print()

    if info.tasks:
        table = Table(title="Learned Tasks")
        table.add_column("Task", style="cyan")
        table.add_column("Status")
        table.add_column("Confidence", justify="right")
        table.add_column("Executions", justify="right")
        for task in info.tasks:
            style = _confidence_style(task.confidence)
            table.add_row(
                task.name,
                _TASK_STATUS.get(task.status, f"[dim]{task.status.capitalize()}[/dim]"),
                f"[{style}]{task.confidence:g}%[/{style}]",
                str(task.executions),
            )
        console.print(table)

    if info.history:
        console.print("[bold]Optimization History:[/bold]")
        for event in info.history:
            console.print(f"  [dim]{event.timestamp}[/dim] - {event.action} [cyan]{event.task}[/cyan]")
        console.print()

    if not info.has_data:
        if info.enabled:
            console.print("[dim]No learning data yet. Learning begins automatically once the agent "
                          "has completed enough runs.[/dim]")
        else:
            console.print("[yellow]Learning is disabled for this agent.[/yellow]")

    hint = "disable" if info.enabled else "enable"
    console.print(f"[dim]aictl agent learning {hint} {info.agent}[/dim]")


@app.command("enable")
def enable(name: str = typer.Argument(help="Agent name")):
    """Enable automatic learning for an agent."""
    result = _call("enable", name)
    console.print(f"[green]{result.message}[/green]" if result.changed else f"[dim]{result.message}[/dim]")


@app.command("disable")
def disable(name: str = typer.Argument(help="Agent name")):
    """Disable automatic learning for an agent."""
    result = _call("disable", name)
    console.print(f"[yellow]{result.message}[/yellow]" if result.changed else f"[dim]{result.message}[/dim]")
