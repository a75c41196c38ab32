"""
webwx CLI

- run:     scan the QR code and stay connected, printing messages
- onboard: write a default config file
- status:  show the configuration in use
"""

from __future__ import annotations

import asyncio
import sys
from typing import Final, Optional

import typer
from loguru import logger
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from webwx import __logo__, __version__


# ============================================================================
# CLI App
# ============================================================================

APP_NAME: Final[str] = "webwx"

app = typer.Typer(
    name=APP_NAME,
    help=f"{__logo__} webwx - QR-login web chat bot",
    no_args_is_help=True,
)

console = Console()


def _configure_logging(verbose: bool) -> None:
    logger.remove()
    logger.add(sys.stderr, level="DEBUG" if verbose else "INFO")


# ============================================================================
# Version
# ============================================================================

def version_callback(value: bool):
    if value:
        console.print(f"{__logo__} webwx v{__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(
        None, "--version", "-V", callback=version_callback, is_eager=True
    ),
):
    """webwx - QR-login web chat bot."""
    pass


# ============================================================================
# Onboard
# ============================================================================

@app.command()
def onboard():
    """Write a default configuration file."""
    from webwx.config.loader import get_config_path, save_config
    from webwx.config.schema import Config

    config_path = get_config_path()

    if config_path.exists():
        console.print(f"[yellow]Config already exists at {config_path}[/yellow]")
        if not typer.confirm("Overwrite?"):
            raise typer.Exit()

    save_config(Config(), config_path)
    console.print(f"[green]✓[/green] Created config at {config_path}")
    console.print("\nNext: [cyan]webwx run[/cyan]")


# ============================================================================
# Handlers used by `run`
# ============================================================================

async def _print_message(session, msg, cancel: asyncio.Event) -> None:
    where = f"[magenta]{escape(msg.chat_id)}[/magenta] " if msg.is_group else ""
    at = f"[dim]{escape(msg.at)}[/dim]" if msg.at else ""
    console.print(
        f"{where}[cyan]{escape(msg.who)}[/cyan] ({msg.msg_type}): {at}{escape(msg.content)}"
    )


async def _echo(session, msg, cancel: asyncio.Event) -> None:
    if session.me is None or msg.who == session.me.user_name:
        return
    if cancel.is_set():
        return
    await session.reply(msg, msg.content)


# ============================================================================
# Run
# ============================================================================

@app.command()
def run(
    echo: bool = typer.Option(False, "--echo", help="Reply to text messages with their own content"),
    qr: Optional[str] = typer.Option(None, "--qr", help="terminal | file | none"),
    verbose: bool = typer.Option(False, "--verbose", "-v"),
):
    """Log in by QR code and serve messages until logged out."""
    from webwx.bus.events import MSG_EMOTION, MSG_IMG, MSG_TEXT
    from webwx.config.loader import load_config
    from webwx.exceptions import QRExpiredError, WebWxError
    from webwx.handlers.registry import HandlerRegistry
    from webwx.session.manager import Session

    _configure_logging(verbose)

    config = load_config()
    if qr:
        if qr not in ("terminal", "file", "none"):
            console.print(f"[red]Unknown --qr mode: {qr}[/red]")
            raise typer.Exit(2)
        config.runtime.qr_mode = qr

    registry = HandlerRegistry()
    for msg_type in (MSG_TEXT, MSG_IMG, MSG_EMOTION):
        registry.register(msg_type, _print_message, name="print")
    if echo:
        registry.register(MSG_TEXT, _echo, name="echo")

    async def _run() -> None:
        session = await Session.create(config, registry=registry)
        console.print(f"{__logo__} Scan to log in: [cyan]{session.qr_url}[/cyan]")
        if session.qr_path:
            console.print(f"QR image: {session.qr_path}")
        try:
            await session.login_and_serve()
        finally:
            await session.close()

    try:
        asyncio.run(_run())
    except QRExpiredError:
        console.print("[red]QR code expired, run again to get a new one.[/red]")
        raise typer.Exit(1)
    except WebWxError as e:
        console.print(f"[red]Session ended: {e}[/red]")
        raise typer.Exit(1)
    except KeyboardInterrupt:
        console.print("\nShutting down...")
    else:
        console.print("Logged out elsewhere.")


# ============================================================================
# Status
# ============================================================================

@app.command()
def status():
    """Show the configuration webwx will use."""
    from webwx.config.loader import get_config_path, load_config

    config_path = get_config_path()
    config = load_config()

    console.print(f"{__logo__} webwx Status\n")
    console.print(
        f"Config: {config_path} "
        f"{'[green]✓[/green]' if config_path.exists() else '[dim]defaults[/dim]'}"
    )

    table = Table(show_header=False)
    table.add_row("Login URL", config.session.login_url)
    table.add_row("Device ID", config.session.device_id)
    table.add_row("CGI domain", config.session.cgi_domain)
    table.add_row("Sync host", config.session.sync_host)
    table.add_row("QR mode", config.runtime.qr_mode)
    table.add_row("Max handlers", str(config.runtime.max_concurrent_handlers))
    console.print(table)


if __name__ == "__main__":
    app()
