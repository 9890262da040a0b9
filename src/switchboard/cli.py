"""CLI entry point for Switchboard.

Provides the ``switchboard`` command with subcommands for inspecting
routing history, resetting the session, dry-running routing decisions,
validating configuration, and editing the routing table.

Typical usage::

    switchboard history -n 20
    switchboard history --json
    switchboard route request.json --tokens 72000
    switchboard check
    switchboard config set-route think deepseek,deepseek-reasoner
"""

from __future__ import annotations

import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import NoReturn

import click
from rich.console import Console

from switchboard import __version__
from switchboard.config import CONFIG_PATH, Config, load_config, write_config
from switchboard.display import (
    format_decision,
    history_payload,
    render_history,
    render_summary,
)
from switchboard.errors import SwitchboardError
from switchboard.router import ScenarioRouter
from switchboard.routes import parse_route, require_route
from switchboard.signals import estimate_signals
from switchboard.state import RoutingStateStore
from switchboard.transformers.registry import TransformerRegistry
from switchboard.types import Scenario, UnifiedChatRequest

console = Console(stderr=True)

DEFAULT_HISTORY_LIMIT = 10


def _fail(message: str) -> NoReturn:
    console.print(f"[red bold]Error:[/red bold] {message}")
    sys.exit(1)


def _load(ctx: click.Context) -> Config:
    """Load config from the path given to the group, exiting on errors."""
    path: Path | None = ctx.obj.get("config_path")
    try:
        return load_config(path)
    except SwitchboardError as exc:
        _fail(str(exc))


@click.group()
@click.version_option(version=__version__, prog_name="switchboard")
@click.option(
    "--config",
    "config_path",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help=f"Config file (default: {CONFIG_PATH}).",
)
@click.option("--verbose", is_flag=True, default=False, help="Enable debug logging.")
@click.pass_context
def main(ctx: click.Context, config_path: Path | None, verbose: bool) -> None:
    """Scenario routing and provider transformation for chat completions.

    Inspect the routing decisions recorded by Switchboard and validate
    its configuration.
    """
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config_path


@main.command()
@click.option(
    "-n",
    "--limit",
    default=DEFAULT_HISTORY_LIMIT,
    type=click.IntRange(1),
    help=f"Show the last N entries (default: {DEFAULT_HISTORY_LIMIT}).",
)
@click.option("-a", "--all", "show_all", is_flag=True, default=False, help="Show all entries.")
@click.option("-s", "--summary", is_flag=True, default=False, help="Also show the session summary.")
@click.option("--json", "as_json", is_flag=True, default=False, help="Output as JSON.")
@click.pass_context
def history(ctx: click.Context, limit: int, show_all: bool, summary: bool, as_json: bool) -> None:
    """Show recent routing decisions, oldest first.

    Args:
        limit: Number of most recent entries to show.
        show_all: Ignore the limit and show the whole history.
        summary: Append session counters.
        as_json: Emit JSON instead of a table.
    """
    config = _load(ctx)
    store = RoutingStateStore(config.state_path)
    entries = store.history(None if show_all else limit)

    if as_json:
        click.echo(json.dumps(history_payload(entries, store.read()), indent=2))
        return

    render_history(entries)
    if summary:
        render_summary(store.read())


@main.command()
@click.pass_context
def status(ctx: click.Context) -> None:
    """Show session counters and the last routing decision."""
    config = _load(ctx)
    render_summary(RoutingStateStore(config.state_path).read())


@main.command()
@click.pass_context
def reset(ctx: click.Context) -> None:
    """Start a new session: clear history and counters."""
    config = _load(ctx)

    async def _reset() -> None:
        async with RoutingStateStore(config.state_path) as store:
            await store.initialize()

    asyncio.run(_reset())
    console.print(f"[dim]Routing state reset: {config.state_path}[/dim]")


@main.command()
@click.argument("request_file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option(
    "--tokens",
    default=None,
    type=click.IntRange(0),
    help="Input token count (default: estimated from the request).",
)
@click.option("--json", "as_json", is_flag=True, default=False, help="Output as JSON.")
@click.pass_context
def route(ctx: click.Context, request_file: Path, tokens: int | None, as_json: bool) -> None:
    """Dry-run the router on a JSON chat request. Nothing is recorded.

    Args:
        request_file: Path to a chat completion request body.
        tokens: Override the estimated input token count.
        as_json: Emit the decision as JSON.
    """
    config = _load(ctx)
    try:
        body = json.loads(request_file.read_text(encoding="utf-8"))
    except ValueError as exc:
        _fail(f"{request_file} is not valid JSON: {exc}")
    if not isinstance(body, dict):
        _fail(f"{request_file} must contain a JSON object")

    request = UnifiedChatRequest.from_dict(body)
    try:
        decision = ScenarioRouter(config.router).route(
            request, estimate_signals(request, input_tokens=tokens)
        )
    except SwitchboardError as exc:
        _fail(str(exc))

    if as_json:
        click.echo(json.dumps(decision.to_dict(), indent=2))
    else:
        Console().print(format_decision(decision))


@main.command()
@click.pass_context
def check(ctx: click.Context) -> None:
    """Validate routes and transformer chains in the config."""
    config = _load(ctx)
    try:
        require_route(config.router.route_for(Scenario.DEFAULT))
        TransformerRegistry().validate(config)
    except SwitchboardError as exc:
        _fail(str(exc))

    problems = 0
    for scenario, route_str in config.router.routes.items():
        target = parse_route(route_str)
        if target is None:
            console.print(
                f"[yellow]Warning:[/yellow] {scenario.value} route {route_str!r} "
                "is not 'provider,model'; it will be skipped"
            )
            problems += 1
            continue
        if config.providers and target.provider not in config.providers:
            console.print(
                f"[yellow]Warning:[/yellow] {scenario.value} routes to unknown provider "
                f"'{target.provider}'"
            )
            problems += 1

    suffix = f" with {problems} warning(s)" if problems else ""
    console.print(f"[green]✓[/green] Configuration OK{suffix}")


@main.group()
def config() -> None:
    """Manage configuration."""


@config.command()
@click.pass_context
def path(ctx: click.Context) -> None:
    """Print the configuration file path."""
    click.echo(ctx.obj.get("config_path") or CONFIG_PATH)


@config.command("set-route")
@click.argument("scenario", type=click.Choice([s.value for s in Scenario]))
@click.argument("route_str", metavar="ROUTE")
@click.pass_context
def config_set_route(ctx: click.Context, scenario: str, route_str: str) -> None:
    """Point SCENARIO at ROUTE ("provider,model") and save the config file.

    Environment overrides are not applied before writing, so API keys
    exported in the shell stay out of the file.
    """
    try:
        target = require_route(route_str)
    except SwitchboardError as exc:
        _fail(str(exc))

    config_file: Path = ctx.obj.get("config_path") or CONFIG_PATH
    try:
        cfg = load_config(config_file, apply_env=False)
    except SwitchboardError as exc:
        _fail(str(exc))

    cfg.router.routes[Scenario(scenario)] = route_str
    write_config(cfg, config_file)
    console.print(f"[green]✓[/green] {scenario} → {target.key} ({config_file})")
