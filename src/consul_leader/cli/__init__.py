"""CLI commands for consul-leader.

Provides command-line interface using Typer:
- consul-leader run: Join the election for a service and report transitions
- consul-leader status: Show which session holds a service's leader key

Usage:
    consul-leader --help
    consul-leader run --service orders
    consul-leader status --service orders
"""

import typer

from consul_leader.cli.run_cmd import app as run_app
from consul_leader.cli.status_cmd import app as status_app

# Main CLI application
app = typer.Typer(
    name="consul-leader",
    help="consul-leader: leader election over Consul sessions",
    no_args_is_help=True,
)

# Add subcommands
app.add_typer(run_app, name="run")
app.add_typer(status_app, name="status")


@app.callback()
def callback() -> None:
    """consul-leader: leader election over Consul sessions."""
    pass


def main() -> None:
    """Entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
