"""
Cache configuration — where the replica lives and how to reach the server.

Stored as YAML at ``<home>/config.yaml``. Home defaults to
``$SNCACHE_HOME`` or ``~/.sncache``. The bearer token is never written
to disk; it is read from the environment variable named by
``token_env_var``.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Literal, Optional

import yaml
from pydantic import BaseModel, ValidationError

from . import SNCACHE_HOME
from .errors import ConfigurationError
from .remote import TokenSession

logger = logging.getLogger("sncache.config")

CONFIG_FILENAME = "config.yaml"


class CacheConfig(BaseModel):
    """Complete cache configuration."""

    store_path: Optional[Path] = None
    server: str = "https://api.standardnotes.com"
    token_env_var: str = "SNCACHE_TOKEN"
    remote: Literal["http", "memory"] = "http"
    page_limit: int = 150
    timeout_seconds: float = 30.0
    lock_timeout_seconds: float = 0.0

    def resolved_store_path(self, home: Path) -> Path:
        """The replica location, defaulting to ``<home>/cache.db``."""
        if self.store_path is None:
            return home / "cache.db"
        return self.store_path.expanduser()


def resolve_home(home: Optional[Path] = None) -> Path:
    return Path(home or SNCACHE_HOME).expanduser()


def load_config(home: Optional[Path] = None) -> CacheConfig:
    """Load configuration, falling back to defaults when no file exists.

    Raises:
        ConfigurationError: The file exists but is not valid.
    """
    config_file = resolve_home(home) / CONFIG_FILENAME
    if not config_file.exists():
        logger.debug("No config at %s, using defaults", config_file)
        return CacheConfig()

    try:
        data = yaml.safe_load(config_file.read_text(encoding="utf-8")) or {}
        return CacheConfig(**data)
    except (yaml.YAMLError, ValidationError, TypeError) as exc:
        raise ConfigurationError(f"Invalid config {config_file}: {exc}") from exc


def save_config(config: CacheConfig, home: Optional[Path] = None) -> Path:
    """Persist configuration to ``<home>/config.yaml``."""
    home_path = resolve_home(home)
    home_path.mkdir(parents=True, exist_ok=True)
    config_file = home_path / CONFIG_FILENAME
    data = config.model_dump(mode="json", exclude_none=True)
    config_file.write_text(yaml.dump(data, default_flow_style=False), encoding="utf-8")
    logger.info("Wrote config %s", config_file)
    return config_file


def session_from_config(config: CacheConfig) -> TokenSession:
    """Build a session from the server URL and the token env var."""
    return TokenSession(
        server=config.server,
        token=os.environ.get(config.token_env_var, ""),
    )
