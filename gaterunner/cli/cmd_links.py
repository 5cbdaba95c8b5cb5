"""Link inspection commands."""

import click
from rich.table import Table

from . import cli
from .shared import console


@cli.command()
@click.argument("text")
def links(text):
    """Show start links found in TEXT."""
    from gaterunner.links import extract_links

    found = extract_links(text)
    if not found:
        console.print("[yellow]No bot links found.[/yellow]")
        return

    table = Table(title=f"{len(found)} bot link(s)")
    table.add_column("#", style="dim")
    table.add_column("Bot", style="bold")
    table.add_column("Start token")
    for index, link in enumerate(found, start=1):
        table.add_row(str(index), f"@{link.target_name}", link.start_token)
    console.print(table)


@cli.group()
def deeplink():
    """Encode or decode /start deep-link parameters."""
    pass


@deeplink.command()
@click.argument("text")
def encode(text):
    """Pack the start links found in TEXT into a /start parameter."""
    from gaterunner.errors import DeepLinkError
    from gaterunner.links import encode_deep_link, extract_links

    try:
        payload, dropped = encode_deep_link(extract_links(text))
    except DeepLinkError as e:
        console.print(f"[red]{e}[/red]")
        raise SystemExit(1)

    console.print(payload)
    if dropped:
        console.print(f"[yellow]Parameter too long: kept the first link, dropped {dropped}.[/yellow]")


@deeplink.command()
@click.argument("payload")
def decode(payload):
    """Unpack a /start parameter into start links."""
    from gaterunner.errors import DeepLinkError
    from gaterunner.links import decode_deep_link

    try:
        targets = decode_deep_link(payload)
    except DeepLinkError as e:
        console.print(f"[red]{e}[/red]")
        raise SystemExit(1)

    for target in targets:
        console.print(target.url)
