"""Shared utilities for the CLI command modules."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

from rich.console import Console

from .. import SNCACHE_HOME
from ..config import CacheConfig, load_config, resolve_home
from ..store import RecordStore

console = Console()
logger = logging.getLogger("sncache.cli")

home_option_default = SNCACHE_HOME


def load(home: Optional[str]) -> tuple[Path, CacheConfig]:
    """Resolve the home directory and read its config."""
    home_path = resolve_home(Path(home) if home else None)
    return home_path, load_config(home_path)


def open_store(home_path: Path, config: CacheConfig) -> Optional[RecordStore]:
    """Open the configured replica, or None if it was never created."""
    path = config.resolved_store_path(home_path)
    if not RecordStore.exists(path):
        return None
    return RecordStore.open(path, lock_timeout=config.lock_timeout_seconds)
