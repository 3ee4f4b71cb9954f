"""codevolve CLI — drive the evolution pipeline from a terminal.

`codevolve run` starts the daemon until interrupted, `codevolve once`
runs a single cycle, and the rest inspect or feed the pipeline.
"""

from __future__ import annotations

import asyncio
import logging
import signal
from typing import Any, Coroutine

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from codevolve.config import settings

app = typer.Typer(
    name="codevolve",
    help="codevolve -- autonomous code evolution from issues to commits.",
    no_args_is_help=True,
)
console = Console()


def run_async(coro: Coroutine) -> Any:
    """Run an async coroutine from sync CLI code."""
    return asyncio.run(coro)


def _build_daemon():
    from codevolve.events.bus import EventBus
    from codevolve.evolution.daemon import EvolutionDaemon
    from codevolve.llm.anthropic import AnthropicProvider

    if not settings.anthropic_api_key:
        console.print("[red]CODEVOLVE_ANTHROPIC_API_KEY is not set.[/red]")
        raise typer.Exit(1)

    llm = AnthropicProvider(api_key=settings.anthropic_api_key, model=settings.default_model)
    return EvolutionDaemon.from_settings(settings, llm, event_bus=EventBus())


@app.callback()
def main() -> None:
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@app.command("run")
def run():
    """Run the daemon until SIGINT or SIGTERM."""
    daemon = _build_daemon()

    async def _run():
        stop = asyncio.Event()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, stop.set)
            except NotImplementedError:
                # Windows event loops have no signal handlers; Ctrl+C still raises
                pass

        await daemon.start()
        console.print(
            f"[bold cyan]codevolve daemon[/bold cyan] running every "
            f"{settings.interval_seconds}s (max {settings.max_proposals_per_day}/day)"
        )
        console.print("[dim]Press Ctrl+C to stop.[/dim]")
        try:
            await stop.wait()
        finally:
            console.print("[dim]Stopping; waiting for the current proposal...[/dim]")
            await daemon.stop()

    try:
        run_async(_run())
    except KeyboardInterrupt:
        pass
    console.print("[green]Daemon stopped.[/green]")


@app.command("once")
def once():
    """Run a single evolution cycle and print the outcomes."""
    daemon = _build_daemon()
    outcomes = run_async(daemon.run_cycle())

    if not outcomes:
        console.print("[dim]Nothing processed this cycle.[/dim]")
        return

    for outcome in outcomes:
        style = "green" if outcome in ("committed", "pr_created", "branch_pushed") else "yellow"
        console.print(f"  [{style}]{outcome}[/{style}]")


@app.command("submit")
def submit(
    title: str = typer.Argument(help="Short title of the change"),
    body: str = typer.Argument(help="What should change and why"),
    author: str = typer.Option("anonymous", "--author", "-a", help="Who is asking"),
):
    """Queue a proposal for the next cycle."""
    from codevolve.evolution.inbox import InboxCollector

    inbox = InboxCollector.from_settings(settings)
    proposal = inbox.add_proposal(title, body, author)
    console.print(f"[green]Queued[/green] {proposal.id}: {proposal.title}")


@app.command("status")
def status(
    limit: int = typer.Option(20, "--limit", "-n", help="Max processed records"),
):
    """Show configuration and recently processed proposals."""
    from codevolve import __version__
    from codevolve.evolution.inbox import ProcessedStore

    has_key = bool(settings.anthropic_api_key)
    mode = "direct commit" if settings.direct_commit else "pull request"
    console.print(Panel(
        f"[bold]codevolve v{__version__}[/bold]\n\n"
        f"API Key:    {'[green]set[/green]' if has_key else '[red]not set[/red]'}\n"
        f"Repository: {settings.repo or '[dim]none (local queue only)[/dim]'}\n"
        f"Root:       {settings.project_root.resolve()}\n"
        f"Mode:       {mode} on {settings.base_branch}\n"
        f"Interval:   {settings.interval_seconds}s, max {settings.max_proposals_per_day}/day\n"
        f"Gates:      approve >= {settings.approval_threshold:g}, "
        f"safety >= {settings.safety_minimum:g}",
        title="Evolution Status",
        border_style="cyan",
    ))

    records = sorted(
        ProcessedStore(settings.processed_file).items(),
        key=lambda item: item[1].processed_at,
        reverse=True,
    )[:limit]
    if not records:
        console.print("[dim]No proposals processed yet.[/dim]")
        return

    table = Table(title="Processed Proposals")
    table.add_column("When", style="dim", no_wrap=True, max_width=19)
    table.add_column("Proposal", style="cyan")
    table.add_column("Outcome", style="white")
    for proposal_id, record in records:
        table.add_row(
            record.processed_at.strftime("%Y-%m-%d %H:%M"),
            proposal_id,
            record.outcome,
        )
    console.print(table)


@app.command("audit")
def audit(
    event: str = typer.Option("", "--event", "-e", help="Filter by event name"),
    limit: int = typer.Option(20, "--limit", "-n", help="Max entries"),
):
    """Show the evolution audit log, most recent first."""
    from codevolve.audit.log import AuditLog

    entries = run_async(AuditLog(settings.audit_file).query(event=event.upper(), limit=limit))

    if not entries:
        console.print("[dim]No audit entries yet.[/dim]")
        return

    table = Table(title="Audit Log")
    table.add_column("When", style="dim", no_wrap=True, max_width=19)
    table.add_column("Event", style="green", max_width=22)
    table.add_column("Detail", style="white")

    for e in entries:
        extra = e.model_extra or {}
        detail = ", ".join(f"{k}={v}" for k, v in extra.items())
        table.add_row(
            e.timestamp.strftime("%Y-%m-%d %H:%M"),
            e.event,
            detail[:100] + ("..." if len(detail) > 100 else ""),
        )

    console.print(table)


if __name__ == "__main__":
    app()
