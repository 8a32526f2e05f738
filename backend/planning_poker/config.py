"""Planning poker server configuration.

Loads settings from a single YAML file:
  * poker.settings.yaml: non-secret configuration

The path can be overridden with the ``POKER_SETTINGS_FILE`` environment
variable or by passing ``settings_path`` to :func:`load_config`.  A missing
file is not an error; every field has a default.
"""
from __future__ import annotations

import logging
import os
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from pydantic import BaseModel, Field, field_validator

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

SETTINGS_FILE = Path("poker.settings.yaml")
SETTINGS_ENV_VAR = "POKER_SETTINGS_FILE"


def _load_yaml(path: Path) -> Dict[str, Any]:
    if not path.exists():
        logger.warning("Config file not found: %s", path)
        return {}
    with path.open(encoding="utf-8") as fh:
        return yaml.safe_load(fh) or {}


# ---------------------------------------------------------------------------
# Settings models
# ---------------------------------------------------------------------------


class ServerSettings(BaseModel):
    host: str = "0.0.0.0"
    port: int = 8080


class LoggingSettings(BaseModel):
    level: str = "info"


class RoomSettings(BaseModel):
    """Per-room limits and policies."""

    max_participants: int = Field(default=0, ge=0, description="0 means unlimited")
    idle_ttl_seconds: int = Field(default=0, ge=0, description="0 disables eviction")
    allowed_votes: Optional[List[str]] = Field(
        default=None,
        description="Accepted vote values; None accepts any non-empty string",
    )
    id_length: int = Field(default=8, ge=4, le=32)

    @field_validator("allowed_votes")
    @classmethod
    def _no_blank_votes(cls, value: Optional[List[str]]) -> Optional[List[str]]:
        if value is None:
            return None
        if not value:
            raise ValueError("allowed_votes must not be empty; use null to accept any vote")
        if any(not str(v).strip() for v in value):
            raise ValueError("allowed_votes must not contain blank values")
        return [str(v) for v in value]


class PresenceSettings(BaseModel):
    sweep_interval_seconds: float = Field(default=5.0, ge=0, description="0 disables the sweep loop")


class ConnectionSettings(BaseModel):
    send_queue_size: int = Field(default=64, ge=1)


class AppConfig(BaseModel):
    server:      ServerSettings     = Field(default_factory=ServerSettings)
    logging:     LoggingSettings    = Field(default_factory=LoggingSettings)
    rooms:       RoomSettings       = Field(default_factory=RoomSettings)
    presence:    PresenceSettings   = Field(default_factory=PresenceSettings)
    connections: ConnectionSettings = Field(default_factory=ConnectionSettings)


# ---------------------------------------------------------------------------
# Public loader
# ---------------------------------------------------------------------------


def load_config(settings_path: Optional[Path] = None) -> AppConfig:
    """Load settings into a single *AppConfig* object.

    Resolution order for the file: explicit ``settings_path``, then the
    ``POKER_SETTINGS_FILE`` environment variable, then ``poker.settings.yaml``
    in the working directory.
    """
    if settings_path is None:
        env_path = os.environ.get(SETTINGS_ENV_VAR)
        settings_path = Path(env_path) if env_path else SETTINGS_FILE

    config = AppConfig(**_load_yaml(Path(settings_path)))
    logger.info(
        "Settings loaded (server=%s:%s, sweep_interval=%ss, idle_ttl=%ss, max_participants=%s)",
        config.server.host,
        config.server.port,
        config.presence.sweep_interval_seconds,
        config.rooms.idle_ttl_seconds,
        config.rooms.max_participants,
    )
    return config


@lru_cache(maxsize=1)
def get_config() -> AppConfig:
    """Return the process-wide configuration, loading it on first use."""
    return load_config()


def reset_config() -> None:
    """Forget the cached configuration (used by tests)."""
    get_config.cache_clear()
