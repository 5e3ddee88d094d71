"""Sync commands: init, sync."""

from __future__ import annotations

import sys
from pathlib import Path

import click

from ..config import CacheConfig, load_config, resolve_home, save_config, session_from_config
from ..errors import ConfigurationError, SyncError
from ..reconciler import synchronize
from ..remote import create_remote
from ._common import console, home_option_default, load, logger


def register_sync_commands(main: click.Group) -> None:
    """Register init and sync."""

    @main.command("init")
    @click.option("--home", default=home_option_default, type=click.Path())
    @click.option("--server", default=None, help="Sync server base URL.")
    @click.option(
        "--remote",
        type=click.Choice(["http", "memory"]),
        default="http",
        show_default=True,
    )
    def init(home, server, remote):
        """Write a config file for the local replica."""
        home_path = resolve_home(Path(home))
        try:
            config = load_config(home_path)
        except ConfigurationError as exc:
            logger.warning("Replacing unreadable config: %s", exc)
            config = CacheConfig()

        updates = {"remote": remote}
        if server:
            updates["server"] = server
        config = config.model_copy(update=updates)
        path = save_config(config, home_path)
        console.print(f"\n  Config written to [cyan]{path}[/]")
        console.print(f"  Token is read from [cyan]${config.token_env_var}[/]\n")

    @main.command("sync")
    @click.option("--home", default=home_option_default, type=click.Path())
    def sync(home):
        """Push pending edits and pull remote changes."""
        try:
            home_path, config = load(home)
            session = session_from_config(config)
            remote = create_remote(config)
            result = synchronize(
                session,
                remote,
                location=config.resolved_store_path(home_path),
                lock_timeout=config.lock_timeout_seconds,
            )
        except SyncError as exc:
            console.print(f"[bold red]Sync failed:[/] {exc}")
            sys.exit(1)

        try:
            console.print(
                f"\n  Pulled [bold]{len(result.pulled)}[/], "
                f"acknowledged [green]{len(result.acknowledged)}[/], "
                f"unacknowledged [yellow]{len(result.unacknowledged)}[/]"
            )
            for record_id in result.unacknowledged_ids:
                console.print(f"    [yellow]retry next sync:[/] {record_id}")
            console.print()
        finally:
            result.store.close()
