"""Interactive CLI for the Truth Engine using Typer and Rich."""

import asyncio
import sys
from typing import Any, Optional

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from truth_engine import __version__
from truth_engine.config.logging import get_logger
from truth_engine.config.settings import settings
from truth_engine.session.manager import EventChannel, SessionManager
from truth_engine.session.protocol import (
    TERMINAL_MESSAGE_TYPES,
    FollowUpQuestions,
    OutboundBase,
    VerificationOptions,
)
from truth_engine.sources.registry import build_default_registry

# Initialize CLI app
app = typer.Typer(
    help="Truth Engine CLI - Real-time claim verification",
    add_completion=False,
)

console = Console()

logger = get_logger("cli")

VERDICT_STYLES = {
    "DEFINITE_SCAM": "bold red",
    "SCAM": "red",
    "LIKELY_SCAM": "red",
    "SUSPICIOUS": "yellow",
    "LEGITIMATE": "green",
    "INCONCLUSIVE": "dim",
    "COMPLETED": "cyan",
    "MANUAL_REVIEW_REQUIRED": "magenta",
}


@app.command()
def status() -> None:
    """
    Display engine configuration and registered sources.
    """
    logger.info("Displaying system status")
    registry = build_default_registry()
    stats = registry.get_statistics()

    table = Table(title="Truth Engine Status", show_header=True, header_style="bold magenta")
    table.add_column("Component", style="cyan", width=20)
    table.add_column("Status", style="green", width=15)
    table.add_column("Details", style="yellow")

    python_version = f"Python {sys.version_info.major}.{sys.version_info.minor}.{sys.version_info.micro}"
    table.add_row("Environment", "✓ Ready", python_version)
    table.add_row(
        "Sources",
        f"✓ {stats['total_sources']} registered",
        f"{stats['traditional']} traditional, {stats['capability_providers']} capability providers",
    )
    table.add_row(
        "Timeouts",
        "✓ Active",
        f"Session {settings.session_timeout_seconds}s, task x{settings.task_timeout_factor}",
    )
    table.add_row(
        "Follow-up",
        "✓ Enabled",
        f"Below {settings.clarification_threshold:.0%}, window {settings.answer_window_seconds}s",
    )
    table.add_row("Logging", "✓ Active", f"Level: {settings.log_level}, Format: {settings.log_format}")

    console.print(table)


@app.command()
def sources() -> None:
    """List every verification source and capability provider."""
    registry = build_default_registry()

    table = Table(title="Verification Sources", show_header=True, header_style="bold magenta")
    table.add_column("Name", style="cyan", no_wrap=True)
    table.add_column("Tier", justify="center")
    table.add_column("Kind", style="yellow")
    table.add_column("Capabilities")
    table.add_column("Expected", justify="right")

    for source in registry.list_sources():
        table.add_row(
            source.name,
            f"{int(source.tier)} ({source.tier.label})",
            source.kind.value,
            ", ".join(sorted(c.value for c in source.capabilities)) or "-",
            f"{source.expected_duration:.1f}s",
        )
    console.print(table)


@app.command()
def serve(
    host: Optional[str] = typer.Option(None, help="Bind address"),
    port: Optional[int] = typer.Option(None, help="Bind port"),
) -> None:
    """Run the WebSocket verification server."""
    import uvicorn

    from truth_engine.server.app import create_app

    host = host or settings.host
    port = port or settings.port
    logger.info(f"Starting server on {host}:{port}")
    console.print(f"[bold cyan]Truth Engine[/bold cyan] listening on ws://{host}:{port}/ws/verification")
    uvicorn.run(create_app(), host=host, port=port, log_level=settings.log_level.lower())


@app.command()
def verify(
    text: str = typer.Argument(..., help="Claim text to verify"),
    follow_up: bool = typer.Option(False, "--follow-up/--no-follow-up", help="Answer clarifying questions"),
    timeout: Optional[float] = typer.Option(None, help="Verification timeout in seconds"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Print every event"),
) -> None:
    """
    Verify a claim in-process and print the verdict.

    Args:
        text: Claim text, e.g. a suspicious email body
    """
    logger.info("Verify command invoked", length=len(text))
    options = VerificationOptions(ask_follow_up=follow_up, timeout_seconds=timeout)
    try:
        final = asyncio.run(_verify_local(text, options, verbose))
    except Exception as e:
        console.print(f"\n[red]✗[/red] Error: {e}")
        logger.error(f"Verification failed: {e}")
        raise typer.Exit(1)
    _print_final(final)


@app.command("verify-remote")
def verify_remote(
    text: str = typer.Argument(..., help="Claim text to verify"),
    url: Optional[str] = typer.Option(None, help="Server WebSocket URL"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Print every event"),
) -> None:
    """Verify a claim against a running server, reconnecting on connection loss."""
    from truth_engine.client.client import VerificationClient

    url = url or f"ws://{settings.host}:{settings.port}/ws/verification"

    async def on_message(message: OutboundBase) -> None:
        _print_event(message, verbose)

    async def answer(round_: FollowUpQuestions) -> Optional[dict[str, str]]:
        return await asyncio.to_thread(_prompt_answers, round_.questions)

    client = VerificationClient(url, answer_provider=answer, on_message=on_message)
    try:
        final = asyncio.run(client.verify_text(text))
    except Exception as e:
        console.print(f"\n[red]✗[/red] Error: {e}")
        logger.error(f"Remote verification failed: {e}")
        raise typer.Exit(1)
    _print_final(final)


@app.command()
def version() -> None:
    """Display version information."""
    console.print("[bold]Truth Engine[/bold]")
    console.print(f"Version: {__version__}")


# ── Helpers ─────────────────────────────────────────────────────────


async def _verify_local(text: str, options: VerificationOptions, verbose: bool) -> OutboundBase:
    manager = SessionManager()
    channel = EventChannel("cli")
    session = await manager.start_text(text, options, channel=channel)
    try:
        while True:
            message = await channel.get()
            _print_event(message, verbose)
            if message.type in TERMINAL_MESSAGE_TYPES:
                return message
            if isinstance(message, FollowUpQuestions):
                answers = await asyncio.to_thread(_prompt_answers, message.questions)
                if answers:
                    await manager.submit_answers(session.session_id, answers)
    finally:
        await manager.shutdown()


def _prompt_answers(questions: list[dict[str, Any]]) -> dict[str, str]:
    answers: dict[str, str] = {}
    for question in questions:
        values = [o["value"] for o in question["options"]]
        labels = ", ".join(f"{o['value']}={o['label']}" for o in question["options"])
        console.print(f"\n[bold]{question['question']}[/bold] [dim]({labels})[/dim]")
        choice = typer.prompt("Answer (blank to skip)", default="", show_default=False)
        if choice in values:
            answers[question["id"]] = choice
    return answers


def _print_event(message: OutboundBase, verbose: bool) -> None:
    kind = message.type
    if kind == "source_completed":
        console.print(
            f"[green]✓[/green] {message.source} "
            f"[dim](tier {message.tier}, live {message.live_confidence:.0%})[/dim]"
        )
    elif kind == "source_failed":
        console.print(f"[red]✗[/red] {message.source}: {message.error}")
    elif kind == "capability_completed":
        console.print(
            f"[green]✓[/green] {message.capability} "
            f"[dim]({message.successful} ok, {message.failed} failed)[/dim]"
        )
    elif kind == "capability_failed":
        console.print(f"[red]✗[/red] {message.capability}: {message.error}")
    elif kind == "verification_plan":
        console.print(
            f"[bold cyan]Plan:[/bold cyan] {len(message.sources)} sources, "
            f"{len(message.capability_tasks)} capability tasks "
            f"(~{message.estimated_duration:.1f}s)"
        )
    elif kind == "follow_up_questions":
        console.print(f"\n[yellow]?[/yellow] {message.explanation}")
    elif verbose:
        console.print(f"[dim]{kind}: {message.to_wire()}[/dim]")


def _print_final(final: OutboundBase) -> None:
    if final.type == "verification_error":
        console.print(Panel(final.error, title="Verification Error", border_style="red"))
        raise typer.Exit(1)

    style = VERDICT_STYLES.get(final.verdict, "bold")
    body = [
        f"[{style}]{final.verdict}[/{style}]  confidence {final.confidence:.0%}  risk {final.risk_level}",
        "",
        final.explanation,
    ]
    if final.evidence_summary:
        body += ["", "[bold]Evidence[/bold]"] + [f"  • {line}" for line in final.evidence_summary]
    if final.recommendations:
        body += ["", "[bold]Recommendations[/bold]"] + [f"  • {r}" for r in final.recommendations]
    console.print(Panel("\n".join(body), title="Verdict", border_style="green"))


if __name__ == "__main__":
    app()
