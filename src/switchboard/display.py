"""Terminal display: Rich-based formatting for routing state.

Renders routing history, session summaries, and single routing
decisions to the terminal with scenario color-coding.

Typical usage::

    from switchboard.display import render_history

    render_history(store.history(limit=10))
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from rich.console import Console
from rich.table import Table

from switchboard.models import RoutingState
from switchboard.types import RouteDecision, Scenario

console = Console()

# Scenario → color mapping for visual distinction.
SCENARIO_COLORS: dict[str, str] = {
    Scenario.BACKGROUND: "green",
    Scenario.THINK: "magenta",
    Scenario.LONG_CONTEXT: "yellow",
    Scenario.WEB_SEARCH: "cyan",
}

DEFAULT_COLOR = "white"


def _get_color(scenario: Scenario | str) -> str:
    return SCENARIO_COLORS.get(scenario, DEFAULT_COLOR)


def format_tokens(tokens: int) -> str:
    """Format a token count compactly (e.g. 45000 → "45.0k").

    Args:
        tokens: Token count.

    Returns:
        The count, abbreviated with a ``k`` suffix from 1000 upwards.
    """
    if tokens >= 1000:
        return f"{tokens / 1000:.1f}k"
    return str(tokens)


def _format_time(value: datetime) -> str:
    return value.astimezone().strftime("%H:%M:%S")


def render_history(entries: list[RouteDecision]) -> None:
    """Render routing history entries as a Rich table, oldest first.

    Args:
        entries: Decisions as returned by ``RoutingStateStore.history()``.
    """
    if not entries:
        console.print("[yellow]No routing history available.[/yellow]")
        console.print("[dim]History is recorded when requests are routed through Switchboard.[/dim]")
        return

    table = Table(
        show_header=True,
        padding=(0, 1),
        title=f"Routing history (last {len(entries)} entries)",
    )
    table.add_column("Time", style="dim")
    table.add_column("Scenario")
    table.add_column("Model", style="cyan")
    table.add_column("Provider")
    table.add_column("Tokens", justify="right")
    table.add_column("Reason", style="dim")

    for entry in entries:
        color = _get_color(entry.scenario)
        table.add_row(
            _format_time(entry.timestamp),
            f"[{color}]{entry.scenario}[/{color}]",
            entry.model,
            entry.provider,
            format_tokens(entry.input_tokens),
            entry.reason,
        )

    console.print()
    console.print(table)
    console.print()


def render_summary(state: RoutingState) -> None:
    """Render session counters and the most recent decision.

    Args:
        state: Current routing state.
    """
    session = state.session
    console.print()
    console.print("[bold]Session summary[/bold]")
    console.print(f"  Started: {session.start_time.astimezone().strftime('%Y-%m-%d %H:%M:%S')}")
    console.print(f"  Total requests: {session.request_count}")

    if session.model_breakdown:
        table = Table(show_header=True, padding=(0, 1))
        table.add_column("Model", style="cyan")
        table.add_column("Provider")
        table.add_column("Requests", justify="right")
        for key, count in sorted(session.model_breakdown.items(), key=lambda kv: -kv[1]):
            provider, _, model = key.partition("/")
            table.add_row(model, provider, str(count))
        console.print(table)

    if state.last_request is not None:
        console.print(f"  Last request: {format_decision(state.last_request)}")
    console.print()


def format_decision(decision: RouteDecision) -> str:
    """One-line Rich markup summary of a routing decision."""
    color = _get_color(decision.scenario)
    return (
        f"[{color}]{decision.scenario}[/{color}] → "
        f"[cyan]{decision.model}[/cyan] @ {decision.provider} "
        f"[dim]({format_tokens(decision.input_tokens)} tok) {decision.reason}[/dim]"
    )


def history_payload(entries: list[RouteDecision], state: RoutingState) -> dict[str, Any]:
    """JSON-ready history export: entries plus session counters."""
    return {
        "history": [entry.to_dict() for entry in entries],
        "session": state.session.to_dict(),
    }
