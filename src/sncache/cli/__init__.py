"""
sncache CLI — local replica command line.

The main Click group is defined here and command groups register
themselves from their own modules.

Entry point: sncache.cli:main
"""

from __future__ import annotations

import logging

import click

from .. import __version__


@click.group()
@click.version_option(version=__version__, prog_name="sncache")
@click.option("--verbose", "-v", is_flag=True, help="Log progress at INFO level.")
def main(verbose):
    """sncache — keep a local replica of your encrypted notes in sync."""
    logging.basicConfig(
        level=logging.INFO if verbose else logging.WARNING,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )


from .status import register_status_commands
from .sync_cmd import register_sync_commands

register_sync_commands(main)
register_status_commands(main)
