"""CLI command for joining the leader election of a service.

Usage:
    consul-leader run --service orders
    consul-leader run --service orders --interval 2 --log-level debug
    consul-leader run --service orders --polls 10
"""

from __future__ import annotations

import asyncio
import contextlib
import signal

import typer
from rich.console import Console

from consul_leader.config import Settings
from consul_leader.distributed.election import LeaderElection, create_election
from consul_leader.observability.logging import configure_logging
from consul_leader.observability.metrics import LeadershipMetrics

app = typer.Typer(help="Join the leader election for a service")


@app.callback(invoke_without_command=True)
def run(
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
    interval: float | None = typer.Option(
        None,
        "--interval",
        "-i",
        help="Seconds between polls",
    ),
    polls: int | None = typer.Option(
        None,
        "--polls",
        "-n",
        help="Stop after this many polls (runs until interrupted by default)",
    ),
    log_level: str | None = typer.Option(
        None,
        "--log-level",
        "-l",
        help="Log level: debug, info, warning, error",
    ),
    json_logs: bool = typer.Option(
        False,
        "--json-logs",
        help="Emit JSON logs",
    ),
) -> None:
    """Poll for leadership until interrupted.

    The session is destroyed and the leader key released on exit.
    """
    overrides: dict[str, object] = {}
    if service:
        overrides["service_name"] = service
    if consul_url:
        overrides["consul_url"] = consul_url
    if interval is not None:
        overrides["poll_interval"] = interval
    if log_level:
        overrides["log_level"] = log_level
    settings = Settings(**overrides)

    configure_logging(json_format=json_logs or settings.log_json, level=settings.log_level)

    typer.echo(f"Joining leader election for '{settings.service_name}'")
    typer.echo(f"  Consul: {settings.consul_url}")
    typer.echo(f"  Poll interval: {settings.poll_interval}s")
    typer.echo()

    asyncio.run(_run(settings, polls))


async def _run(settings: Settings, polls: int | None) -> None:
    """Async implementation of run command."""
    console = Console()
    metrics = LeadershipMetrics() if settings.enable_metrics else None
    election = create_election(settings, metrics=metrics)
    service_name = election.service_name

    election.on_elected(lambda: console.print(f"[green]Leading[/green] '{service_name}'"))
    election.on_demoted(lambda: console.print(f"[yellow]Following[/yellow] '{service_name}'"))

    try:
        if polls is not None:
            await _poll_n_times(election, polls)
        else:
            await election.start()
            await _wait_for_shutdown()
    finally:
        await election.stop()


async def _poll_n_times(election: LeaderElection, polls: int) -> None:
    for i in range(polls):
        outcome = await election.run_once()
        typer.echo(f"poll {i + 1}/{polls}: {outcome.value}")
        if i + 1 < polls:
            await asyncio.sleep(election.poll_interval)


async def _wait_for_shutdown() -> None:
    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        # Not available on every platform; Ctrl-C still cancels asyncio.run
        with contextlib.suppress(NotImplementedError):
            loop.add_signal_handler(sig, stop.set)
    await stop.wait()
