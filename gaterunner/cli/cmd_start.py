"""Start command."""

import asyncio

import click

from . import cli
from .shared import console


@cli.command()
@click.option("--debug", is_flag=True, help="Enable debug logging")
def start(debug):
    """Start the relay bot and the driver account."""
    from gaterunner.config import load_settings
    from gaterunner.errors import ConfigError
    from gaterunner.main import configure_logging, run

    settings = load_settings()
    configure_logging(settings, debug=debug)
    try:
        settings.require_credentials()
    except ConfigError as e:
        console.print(f"[red]{e}[/red]")
        raise SystemExit(1)

    console.print("[bold blue]Starting GateRunner...[/bold blue]")
    try:
        asyncio.run(run(settings))
    except KeyboardInterrupt:
        console.print("[dim]Stopped.[/dim]")
