# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Command-line interface for the mail relay.

Usage:
    mail-relay serve --host 0.0.0.0 --port 10000
    mail-relay imap-check

``imap-check`` runs the Sent-folder discovery against the configured IMAP
account and prints the folder that Sent copies will go to. It exits with
status 1 when discovery fails.
"""

from __future__ import annotations

import asyncio
import os

import click
from rich.console import Console
from rich.table import Table

from mail_relay.config_loader import load_settings
from mail_relay.imap import SentFolderDiscoveryError, SentFolderResolver
from mail_relay.logger import configure_logging, mask_user

console = Console()
err_console = Console(stderr=True)


def run_async(coro):
    """Execute an async coroutine synchronously from CLI context."""
    return asyncio.run(coro)


def print_error(message: str) -> None:
    err_console.print(f"[red]Error:[/red] {message}")


def print_success(message: str) -> None:
    console.print(f"[green]✓[/green] {message}")


@click.group()
@click.option(
    "--config", "config_path",
    type=click.Path(dir_okay=False),
    default=None,
    help="INI configuration file (defaults to MAIL_RELAY_CONFIG or config.ini).",
)
@click.pass_context
def main(ctx: click.Context, config_path: str | None) -> None:
    """HTTP to SMTP mail relay."""
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config_path


@main.command()
@click.option("--host", default=None, help="Bind address (defaults to HOST or 0.0.0.0).")
@click.option("--port", type=int, default=None, help="Bind port (defaults to PORT or 10000).")
@click.option("--reload", is_flag=True, help="Reload on code changes (development only).")
@click.pass_context
def serve(ctx: click.Context, host: str | None, port: int | None, reload: bool) -> None:
    """Run the HTTP API with uvicorn."""
    import uvicorn

    config_path = ctx.obj.get("config_path")
    if config_path:
        # The ASGI module loads its settings on import
        os.environ["MAIL_RELAY_CONFIG"] = config_path
    settings = load_settings(config_path)
    configure_logging(settings.log_level)
    uvicorn.run(
        "mail_relay.server:app",
        host=host or settings.http_host,
        port=port or settings.http_port,
        reload=reload,
        log_level=settings.log_level.lower(),
    )


@main.command("imap-check")
@click.pass_context
def imap_check(ctx: click.Context) -> None:
    """Discover (or create) the Sent folder of the configured IMAP account."""
    settings = load_settings(ctx.obj.get("config_path"))
    configure_logging(settings.log_level)
    imap = settings.imap

    console.print(f"[bold]IMAP discovery[/bold] on {imap.host}:{imap.port} as {mask_user(imap.user)}")
    try:
        result = run_async(SentFolderResolver(imap).resolve())
    except SentFolderDiscoveryError as exc:
        print_error(str(exc))
        err_console.print("Check IMAP_USER/IMAP_PASS (or SMTP_USER/SMTP_PASS) and connectivity to the IMAP server.")
        raise SystemExit(1) from exc

    table = Table(title="Sent folder")
    table.add_column("Path", style="cyan")
    table.add_column("Delimiter")
    table.add_column("Created")
    table.add_row(result.sent_path, result.delimiter, "yes" if result.created else "no (already existed)")
    console.print(table)
    print_success("The folder is ready to receive sent messages")


if __name__ == "__main__":
    main()
