"""Status commands: status, pending."""

from __future__ import annotations

import sys

import click
from rich.panel import Panel
from rich.table import Table

from ..errors import SyncError
from ._common import console, home_option_default, load, open_store


def register_status_commands(main: click.Group) -> None:
    """Register status and pending."""

    @main.command("status")
    @click.option("--home", default=home_option_default, type=click.Path())
    def status(home):
        """Show replica counts and whether a sync token is stored."""
        try:
            home_path, config = load(home)
            store = open_store(home_path, config)
            if store is None:
                console.print("[yellow]No replica yet.[/] Run [cyan]sncache sync[/] first.")
                return
            with store:
                stats = store.stats()
        except SyncError as exc:
            console.print(f"[bold red]Error:[/] {exc}")
            sys.exit(1)

        console.print()
        console.print(
            Panel(
                f"Store: [cyan]{config.resolved_store_path(home_path)}[/]\n"
                f"Server: [cyan]{config.server}[/] ({config.remote})\n"
                f"Records: [bold]{stats.records}[/]\n"
                f"Pending: [bold]{stats.pending}[/]\n"
                f"Deleted: {stats.deleted}\n"
                f"Sync token: {'[green]stored[/]' if stats.has_token else '[yellow]none[/]'}",
                title="sncache",
                border_style="cyan",
            )
        )
        console.print()

    @main.command("pending")
    @click.option("--home", default=home_option_default, type=click.Path())
    def pending(home):
        """List records with local edits not yet acknowledged."""
        try:
            home_path, config = load(home)
            store = open_store(home_path, config)
            if store is None:
                console.print("[yellow]No replica yet.[/]")
                return
            with store:
                records = store.get_pending()
        except SyncError as exc:
            console.print(f"[bold red]Error:[/] {exc}")
            sys.exit(1)

        if not records:
            console.print("[green]Nothing pending.[/]")
            return

        table = Table(title="Pending records")
        table.add_column("ID", style="cyan")
        table.add_column("Type")
        table.add_column("Deleted")
        table.add_column("Pending since", style="dim")
        for r in records:
            table.add_row(
                r.id,
                r.content_type,
                "yes" if r.deleted else "",
                r.pending_since.isoformat() if r.pending_since else "",
            )
        console.print(table)
