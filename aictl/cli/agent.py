"""Agent commands — aictl agent code, versions, optimize, rollback, logs, create, watch."""

from __future__ import annotations

import sys

import httpx
import typer
from rich.console import Console
from rich.panel import Panel
from rich.prompt import Confirm, Prompt
from rich.syntax import Syntax
from rich.table import Table

from aictl.cli import learning
from aictl.cli.context import AictlContext, run_async
from aictl.cluster.resources import agent_name_from, language_agent
from aictl.code.synthesis import SynthesisResult, SynthesisState
from aictl.exceptions import AictlError
from aictl.learning.analyzer import parse_since
from aictl.learning.pipeline import BatchReport, Decision
from aictl.types import KIND_AGENT, KIND_MODEL, ORIGINAL, Proposal

app = typer.Typer(help="Manage agents and their code versions")
app.add_typer(learning.app, name="learning", help="Monitor and control agent learning")
console = Console()


def _fail(e: Exception) -> None:
    console.print(f"[red]Error: {e}[/red]")
    raise typer.Exit(1)


def _run(coro_fn):
    """Run `coro_fn(ctx)` and close the store in the same event loop."""
    ctx = AictlContext.get()

    async def _wrapped():
        try:
            return await coro_fn(ctx)
        finally:
            await ctx.close()

    return run_async(_wrapped())


# ── Code & versions ──────────────────────────────────────────────


@app.command("code")
def code(
    name: str = typer.Argument(help="Agent name"),
    version: str = typer.Option(None, "--version", "-v", help="Version to show (e.g. v3 or 3)"),
):
    """Show the synthesized code of an agent."""
    try:
        artifact = _run(lambda ctx: ctx.versions.get_version(name, version))
    except AictlError as e:
        _fail(e)

    title = f"{name} — {artifact.version}"
    if artifact.optimized_task:
        title += f" (optimized: {artifact.optimized_task})"
    console.print(Panel(Syntax(artifact.code, "ruby", line_numbers=True), title=title))


@app.command("versions")
def versions(name: str = typer.Argument(help="Agent name")):
    """List code versions, newest first."""
    try:
        entries = _run(lambda ctx: ctx.rollback.list_versions(name))
    except AictlError as e:
        _fail(e)

    if not entries:
        console.print(f"[dim]No versioned code for '{name}' yet (running {ORIGINAL}).[/dim]")
        return
    _print_versions(name, entries)


def _print_versions(name: str, entries) -> None:
    table = Table(title=f"Versions — {name}")
    table.add_column("Version", style="cyan", no_wrap=True)
    table.add_column("Created", style="dim")
    table.add_column("Task", style="white")
    table.add_column("Source", style="blue")
    table.add_column("", style="green")
    for entry in entries:
        table.add_row(
            entry.version,
            entry.created_at or "unknown",
            entry.task or "-",
            entry.source_type,
            "current" if entry.current else "",
        )
    console.print(table)


# ── Optimize ─────────────────────────────────────────────────────


def _print_proposal(proposal: Proposal) -> None:
    score = f"{proposal.consistency_score * 100:.1f}%"
    console.print(Panel(
        Syntax(proposal.proposed_code, "ruby"),
        title=f"Proposal — {proposal.task_name} ({proposal.method}, consistency {score}, "
              f"{proposal.execution_count} executions)",
    ))
    if proposal.explanation:
        console.print(f"[dim]{proposal.explanation}[/dim]")
    for violation in proposal.violations:
        console.print(f"[red]  ✗ {violation}[/red]")


def _prompt_decision(proposal: Proposal) -> Decision:
    answer = Prompt.ask(
        f"Apply optimization for '{proposal.task_name}'? ([y]es / [n]o / [a]bort)",
        choices=["y", "n", "a"],
        default="n",
    )
    return {"y": Decision.ACCEPT, "a": Decision.ABORT}.get(answer, Decision.REJECT)


def _print_report(report: BatchReport) -> None:
    for outcome in report.outcomes:
        if outcome.status == "applied":
            result = outcome.result
            console.print(
                f"[green]✓ {outcome.task_name}: {result.previous_version} → {result.version}[/green]"
            )
            for pruned in result.pruned:
                console.print(f"[dim]  cleaned up {pruned}[/dim]")
        elif outcome.status == "dry_run":
            console.print(f"[yellow][DRY RUN] Would apply optimization for '{outcome.task_name}'[/yellow]")
        elif outcome.status == "skipped":
            console.print(f"[yellow]Cannot optimize '{outcome.task_name}': {outcome.message}[/yellow]")
        elif outcome.status == "failed":
            console.print(f"[red]✗ {outcome.task_name}: {outcome.message}[/red]")
        elif outcome.status == "aborted":
            console.print("[yellow]Optimization aborted[/yellow]")
        else:
            console.print(f"[yellow]Skipped optimization for '{outcome.task_name}'[/yellow]")


@app.command("optimize")
def optimize(
    name: str = typer.Argument(help="Agent name"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Show what would be optimized without applying"),
    status_only: bool = typer.Option(False, "--status-only", help="Show learning opportunities only"),
    auto_accept: bool = typer.Option(False, "--auto-accept", help="Auto-accept optimizations above min-confidence"),
    min_confidence: float = typer.Option(None, "--min-confidence", help="Minimum consistency for auto-accept (0.0-1.0)"),
    tasks: str = typer.Option(None, "--tasks", help="Comma-separated task names to optimize"),
    since: str = typer.Option(None, "--since", help="Only analyze traces since (e.g. 2h, 1d, 1w)"),
    use_synthesis: bool = typer.Option(False, "--use-synthesis", help="Use LLM synthesis instead of pattern detection"),
    synthesis_model: str = typer.Option(None, "--synthesis-model", help="Model to use for synthesis"),
):
    """Convert stable neural tasks into symbolic code."""
    ctx = AictlContext.get()
    analyzer = ctx.analyzer()
    if analyzer is None:
        console.print("[yellow]Trace analysis endpoint not configured.[/yellow]")
        console.print("Set AICTL_OTEL_QUERY_ENDPOINT (and AICTL_OTEL_QUERY_API_KEY) to enable learning.")
        raise typer.Exit(1)

    threshold = ctx.settings.min_confidence if min_confidence is None else min_confidence
    task_filter = [t.strip() for t in tasks.split(",") if t.strip()] if tasks else None
    time_range = parse_since(since)
    chooser = None if dry_run or not sys.stdin.isatty() else _prompt_decision

    async def _optimize(ctx: AictlContext):
        try:
            await ctx.store.get(KIND_AGENT, name, ctx.namespace)
            if not await analyzer.available():
                raise AictlError("Trace analysis service not available")
            pipeline = ctx.pipeline(name, analyzer, use_synthesis, synthesis_model)
            if status_only:
                return await pipeline.analyze(time_range)
            return await pipeline.run(
                time_range=time_range,
                tasks=task_filter,
                auto_accept=auto_accept,
                min_confidence=threshold,
                dry_run=dry_run,
                chooser=chooser,
                on_proposal=_print_proposal,
            )
        finally:
            await analyzer.close()

    try:
        result = _run(_optimize)
    except (AictlError, httpx.HTTPError) as e:
        _fail(e)

    if status_only:
        table = Table(title=f"Learning opportunities — {name}")
        table.add_column("Task", style="cyan")
        table.add_column("Executions", justify="right")
        table.add_column("Consistency", justify="right")
        table.add_column("Ready", style="green")
        table.add_column("Reason", style="dim")
        for opp in result:
            table.add_row(
                opp.task_name,
                str(opp.execution_count),
                f"{opp.consistency_score * 100:.1f}%",
                "yes" if opp.ready_for_learning else "no",
                opp.reason,
            )
        console.print(table)
        return

    if not result.opportunities:
        console.print(f"No optimization opportunities found for agent '{name}'")
        console.print(f"Tasks need at least {ctx.settings.min_executions} executions before optimization can begin.")
        return
    _print_report(result)
    if result.by_status("failed"):
        raise typer.Exit(1)


# ── Rollback ─────────────────────────────────────────────────────


@app.command("rollback")
def rollback(
    name: str = typer.Argument(help="Agent name"),
    version: str = typer.Option(None, "--version", "-v", help="Version to restore (e.g. v2 or 2)"),
    list_only: bool = typer.Option(False, "--list", help="List available versions and exit"),
    force: bool = typer.Option(False, "--force", "-f", help="Skip confirmation"),
):
    """Restore a previous code version."""

    async def _rollback(ctx: AictlContext):
        target = version
        if list_only or not target:
            choices = await ctx.rollback.choices(name)
            if not choices:
                console.print(f"[dim]No versions available for '{name}'.[/dim]")
                return None
            for choice in choices:
                style = "dim" if choice.disabled else "white"
                console.print(f"[{style}]{choice.label}[/{style}]")
            if list_only:
                return None
            selectable = [c.value for c in choices if not c.disabled]
            if not selectable:
                console.print(f"[dim]Only the current version exists for '{name}'.[/dim]")
                return None
            target = Prompt.ask("Select version to restore", choices=selectable)

        if not force and not Confirm.ask(f"Roll back '{name}' to {target}?"):
            console.print("[dim]Rollback cancelled.[/dim]")
            return None
        return await ctx.rollback.rollback(name, target)

    try:
        result = _run(_rollback)
    except AictlError as e:
        _fail(e)
    if result is None:
        return
    if not result.success:
        console.print(f"[red]Error: {result.message}[/red]")
        if result.error and result.error != result.message:
            console.print(f"[dim]{result.error}[/dim]")
        raise typer.Exit(1)

    if result.captured_version:
        console.print(f"[dim]Saved running code as {result.captured_version}[/dim]")
    console.print(f"[green]{result.message}[/green] (was {result.previous_version})")
    if result.restarted_pods:
        console.print(f"[dim]Restarted {len(result.restarted_pods)} pod(s)[/dim]")


# ── Logs ─────────────────────────────────────────────────────────


@app.command("logs")
def logs(
    name: str = typer.Argument(help="Agent name"),
    follow: bool = typer.Option(False, "--follow", "-f", help="Follow log output"),
    tail: int = typer.Option(100, "--tail", help="Lines of recent output to show"),
):
    """Stream an agent's logs through kubectl."""
    ctx = AictlContext.get()
    cmd = ctx.logs.command(name, tail=tail, follow=follow)
    try:
        code = run_async(ctx.logs.stream(cmd))
    except FileNotFoundError:
        _fail(AictlError(f"'{ctx.settings.kubectl}' not found on PATH"))
    except KeyboardInterrupt:
        raise typer.Exit(130)
    if code:
        raise typer.Exit(code)


# ── Create & watch ───────────────────────────────────────────────


def _print_synthesis(name: str, result: SynthesisResult) -> None:
    if result.warning:
        console.print(f"[yellow]{result.warning}[/yellow]")
        console.print(f"[dim]Check later with: aictl agent code {name}[/dim]")
    elif result.state is SynthesisState.SUCCEEDED:
        details = f"{result.duration:.1f}s"
        if result.model:
            details += f", {result.model}"
        if result.token_count:
            details += f", {result.token_count:,} tokens"
        console.print(f"[green]✓ Agent '{name}' synthesized ({details})[/green]")
    elif result.state is SynthesisState.TIMEOUT:
        console.print(f"[yellow]{result.message}[/yellow]")
        console.print(f"[dim]Check later with: aictl agent code {name}[/dim]")
    else:
        console.print(f"[red]Synthesis failed: {result.message}[/red]")


@app.command("create")
def create(
    description: str = typer.Argument(None, help="What the agent should do"),
    name: str = typer.Option(None, "--name", help="Agent name (generated from the description if omitted)"),
    schedule: str = typer.Option(None, "--schedule", help="Cron schedule for scheduled agents"),
    persona: str = typer.Option(None, "--persona", help="Persona to use"),
    tools: str = typer.Option(None, "--tools", help="Comma-separated tool names"),
    models: str = typer.Option(None, "--models", help="Comma-separated model names (default: all in namespace)"),
    workspace: bool = typer.Option(True, "--workspace/--no-workspace", help="Enable workspace persistence"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Print the resource without applying"),
    wait: bool = typer.Option(True, "--wait/--no-wait", help="Wait for synthesis to finish"),
):
    """Create an agent from a natural-language description."""
    if description is None and not sys.stdin.isatty():
        description = sys.stdin.read().strip()
    if not description:
        _fail(AictlError("A description is required"))

    agent = name or agent_name_from(description)

    async def _create(ctx: AictlContext):
        model_names = [m.strip() for m in models.split(",") if m.strip()] if models else []
        if not model_names:
            available = await ctx.store.list(KIND_MODEL, ctx.namespace)
            model_names = [m.get("metadata", {}).get("name", "") for m in available]
            if not model_names:
                raise AictlError(f"No models found in namespace '{ctx.namespace}'")
        resource = language_agent(
            agent,
            instructions=description,
            namespace=ctx.namespace,
            schedule=schedule,
            persona=persona,
            tools=[t.strip() for t in tools.split(",") if t.strip()] if tools else [],
            models=model_names,
            workspace=workspace,
        )
        if dry_run:
            return resource, None
        await ctx.store.create(KIND_AGENT, ctx.namespace, resource)
        if not wait:
            return resource, None
        return resource, await ctx.watcher().watch(agent)

    try:
        resource, result = _run(_create)
    except AictlError as e:
        _fail(e)

    if dry_run:
        console.print_json(data=resource)
        return
    console.print(f"[green]Created agent '{agent}'[/green]")
    if result is not None:
        _print_synthesis(agent, result)
        if not result.success:
            raise typer.Exit(1)


@app.command("watch")
def watch(name: str = typer.Argument(help="Agent name")):
    """Wait for an agent's synthesis to finish."""
    try:
        result = _run(lambda ctx: ctx.watcher().watch(name))
    except AictlError as e:
        _fail(e)
    _print_synthesis(name, result)
    if not result.success:
        raise typer.Exit(1)
