"""Login command: interactive Telethon sign-in for the driver account."""

import asyncio

import click

from . import cli
from .shared import console


@cli.command()
@click.option("--reset", is_flag=True, help="Discard the saved session and sign in again")
def login(reset):
    """Sign in the driver account and save its session."""
    from gaterunner.config import load_settings
    from gaterunner.main import build_client
    from gaterunner.session import SessionStore

    settings = load_settings()
    if not settings.api_id or not settings.api_hash:
        console.print("[red]GATERUNNER_API_ID and GATERUNNER_API_HASH must be set.[/red]")
        raise SystemExit(1)

    store = SessionStore(settings.session_path)
    if reset:
        store.clear()

    async def _login():
        client = build_client(settings, store.load() or "")
        try:
            await client.start(
                phone=lambda: settings.phone or click.prompt("Phone number"),
                code_callback=lambda: click.prompt("Login code"),
                password=lambda: click.prompt("2FA password", hide_input=True),
            )
            me = await client.get_me()
            if not store.save(client.session.save()):
                console.print(f"[red]Could not write session to {store.path}[/red]")
                raise SystemExit(1)
            console.print(f"[green]✓ Signed in as {me.first_name} (@{me.username or 'no username'})[/green]")
            console.print(f"[dim]Session saved to {store.path}[/dim]")
        finally:
            await client.disconnect()

    asyncio.run(_login())
