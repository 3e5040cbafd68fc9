"""Relay application configuration.

Loads settings from a single YAML file:
  * relay.settings.yaml  — non-secret configuration

Lookup order for the settings file:
  1. explicit ``settings_path`` argument
  2. ``RELAY_SETTINGS`` environment variable
  3. ./relay.settings.yaml
  4. ./config/relay.settings.yaml

A few deployment knobs can also come from the environment, as on most
PaaS hosts: ``PORT`` overrides ``server.port`` and ``CORS_ORIGIN`` is
appended to ``server.allowed_origins``.
"""
from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from pydantic import BaseModel, Field, field_validator

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

SETTINGS_FILENAME = "relay.settings.yaml"
SETTINGS_ENV_VAR = "RELAY_SETTINGS"
IN_MEMORY_DB = ":memory:"

_VALID_LOG_LEVELS = ("critical", "error", "warning", "info", "debug")


def _load_yaml(path: Path) -> Dict[str, Any]:
    if not path.exists():
        logger.warning("Config file not found: %s", path)
        return {}
    with path.open(encoding="utf-8") as fh:
        return yaml.safe_load(fh) or {}


def _find_settings_file(settings_path: Optional[Path] = None) -> Path:
    if settings_path is not None:
        return Path(settings_path)

    env_path = os.environ.get(SETTINGS_ENV_VAR)
    if env_path:
        return Path(env_path)

    candidates = [
        Path.cwd() / SETTINGS_FILENAME,
        Path.cwd() / "config" / SETTINGS_FILENAME,
    ]
    for candidate in candidates:
        if candidate.exists():
            return candidate
    return candidates[0]


# ---------------------------------------------------------------------------
# Settings models
# ---------------------------------------------------------------------------


class ServerSettings(BaseModel):
    host:            str       = "0.0.0.0"
    port:            int       = 10000
    allowed_origins: List[str] = Field(
        default_factory=lambda: ["http://localhost:5173", "http://127.0.0.1:5173"]
    )


class DatabaseSettings(BaseModel):
    """Where chat messages are stored (DuckDB file or ``:memory:``)."""
    path: str = "relay_messages.duckdb"


class LoggingSettings(BaseModel):
    level: str = "info"

    @field_validator("level")
    @classmethod
    def _check_level(cls, value: str) -> str:
        normalized = value.lower().strip()
        if normalized not in _VALID_LOG_LEVELS:
            raise ValueError(
                f"logging.level must be one of {', '.join(_VALID_LOG_LEVELS)}"
            )
        return normalized


class ChatSettings(BaseModel):
    # strftime format for the server-assigned message timestamp
    timestamp_format: str = "%H:%M"


class AppConfig(BaseModel):
    server:   ServerSettings   = Field(default_factory=ServerSettings)
    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    logging:  LoggingSettings  = Field(default_factory=LoggingSettings)
    chat:     ChatSettings     = Field(default_factory=ChatSettings)


# ---------------------------------------------------------------------------
# Environment overrides
# ---------------------------------------------------------------------------


def _apply_env_overrides(config: AppConfig) -> None:
    port = os.environ.get("PORT")
    if port:
        try:
            config.server.port = int(port)
        except ValueError:
            logger.warning("Ignoring non-numeric PORT=%r", port)

    origin = os.environ.get("CORS_ORIGIN")
    if origin and origin not in config.server.allowed_origins:
        config.server.allowed_origins.append(origin)


def _resolve_db_path(config: AppConfig, base_dir: Path) -> None:
    """Resolve a relative database path against the settings file directory."""
    raw = config.database.path
    if raw == IN_MEMORY_DB:
        return
    path = Path(raw)
    if not path.is_absolute():
        config.database.path = str(base_dir / path)


# ---------------------------------------------------------------------------
# Public loader
# ---------------------------------------------------------------------------


def load_config(settings_path: Optional[Path] = None) -> AppConfig:
    """Load settings into an *AppConfig* object."""
    path = _find_settings_file(settings_path)
    data = _load_yaml(path)

    config = AppConfig(**data)
    _resolve_db_path(config, path.resolve().parent)
    _apply_env_overrides(config)

    logger.info(
        "Settings loaded (server=%s:%s, database=%s, log_level=%s)",
        config.server.host,
        config.server.port,
        config.database.path,
        config.logging.level,
    )
    return config


_config: Optional[AppConfig] = None


def get_config() -> AppConfig:
    """Return the process-wide configuration, loading it on first use."""
    global _config
    if _config is None:
        _config = load_config()
    return _config


def reset_config() -> None:
    """Forget the cached configuration (used by tests)."""
    global _config
    _config = None
