"""CLI command for inspecting the leader key of a service.

Usage:
    consul-leader status --service orders
    consul-leader status --service orders --consul-url http://consul:8500
"""

from __future__ import annotations

import asyncio

import typer
from rich.console import Console

from consul_leader.config import Settings
from consul_leader.distributed.client import ConsulClient

app = typer.Typer(help="Show the current leader of a service")


@app.callback(invoke_without_command=True)
def status(
    service: str | None = typer.Option(
        None,
        "--service",
        "-s",
        help="Service name (defaults to CONSUL_LEADER_SERVICE_NAME)",
    ),
    consul_url: str | None = typer.Option(
        None,
        "--consul-url",
        "-u",
        help="Consul base URL (defaults to CONSUL_HTTP_ADDR)",
    ),
) -> None:
    """Print the session holding the leader key of a service.

    Exits with code 1 if the coordination service cannot be read.
    """
    overrides = {"consul_url": consul_url} if consul_url else {}
    settings = Settings(**overrides)
    service_name = service or settings.service_name

    exit_code = asyncio.run(_status(settings, service_name))
    if exit_code:
        raise typer.Exit(code=exit_code)


async def _status(settings: Settings, service_name: str) -> int:
    """Async implementation of status command."""
    console = Console()

    async with ConsulClient.from_settings(settings) as client:
        holder = await client.get_leader_holder(service_name)

    if not holder.ok:
        console.print(f"[red]✗[/red] Unable to read leader of '{service_name}': {holder.failure}")
        return 1

    session_id = holder.unwrap()
    if session_id is None:
        console.print(f"[yellow]No leader[/yellow] for '{service_name}'")
    else:
        console.print(f"[green]Leader[/green] of '{service_name}': session {session_id}")
    return 0
