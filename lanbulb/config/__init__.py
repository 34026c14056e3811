"""
Configuration management for lanbulb.

Settings are loaded from the packaged defaults.toml and optionally overlaid
by a user TOML file with the same layout. The core library never reads
configuration itself; callers (the CLI) load a ClientConfig and pass the
values in explicitly.
"""

from __future__ import annotations

import logging
import tomllib
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any

from lanbulb.errors import LanBulbError

logger = logging.getLogger(__name__)

# Path to the config directory
CONFIG_DIR = Path(__file__).parent

DEFAULT_CONFIG_PATH = CONFIG_DIR / "defaults.toml"


class ConfigError(LanBulbError):
    """Invalid configuration file or value."""

    pass


@dataclass(frozen=True)
class ClientConfig:
    """Client settings consumed by the session, discovery and music mode."""

    port: int = 55443
    connect_timeout: float = 5.0
    response_timeout: float = 5.0
    notification_buffer: int = 10
    discovery_timeout: float = 5.0
    music_host: str = ""
    music_port: int = 0
    music_bind_host: str = "0.0.0.0"
    music_accept_timeout: float = 10.0

    def session_kwargs(self) -> dict[str, Any]:
        """Keyword arguments for Session.connect / DiscoveredDevice.connect."""
        return {
            "connect_timeout": self.connect_timeout,
            "response_timeout": self.response_timeout,
            "notification_buffer": self.notification_buffer,
        }


# TOML (section, key) -> ClientConfig field
_KEY_MAP: dict[tuple[str, str], str] = {
    ("connection", "port"): "port",
    ("connection", "connect_timeout"): "connect_timeout",
    ("connection", "response_timeout"): "response_timeout",
    ("notifications", "buffer"): "notification_buffer",
    ("discovery", "timeout"): "discovery_timeout",
    ("music", "host"): "music_host",
    ("music", "port"): "music_port",
    ("music", "bind_host"): "music_bind_host",
    ("music", "accept_timeout"): "music_accept_timeout",
}

_FIELD_TYPES: dict[str, type] = {f.name: type(f.default) for f in fields(ClientConfig)}


def _coerce(name: str, value: Any) -> Any:
    """Check a TOML value against the field type; ints are accepted for floats."""
    expected = _FIELD_TYPES[name]
    if expected is float and isinstance(value, int) and not isinstance(value, bool):
        return float(value)
    if not isinstance(value, expected) or isinstance(value, bool):
        raise ConfigError(f"{name} must be {expected.__name__}, got {type(value).__name__}: {value!r}")
    return value


def _apply(config: ClientConfig, data: dict[str, Any], source: Path) -> ClientConfig:
    changes: dict[str, Any] = {}
    for section, values in data.items():
        if not isinstance(values, dict):
            logger.warning("Ignoring top-level key %r in %s", section, source)
            continue
        for key, value in values.items():
            name = _KEY_MAP.get((section, key))
            if name is None:
                logger.warning("Ignoring unknown setting %s.%s in %s", section, key, source)
                continue
            changes[name] = _coerce(name, value)
    return replace(config, **changes)


def _read(path: Path) -> dict[str, Any]:
    try:
        with path.open("rb") as f:
            return tomllib.load(f)
    except OSError as e:
        raise ConfigError(f"Cannot read config file {path}: {e}") from e
    except tomllib.TOMLDecodeError as e:
        raise ConfigError(f"Invalid TOML in {path}: {e}") from e


def load_config(config_path: Path | None = None) -> ClientConfig:
    """
    Load the client configuration.

    Args:
        config_path: Optional user TOML file overlaid on the defaults.

    Returns:
        The merged ClientConfig.

    Raises:
        ConfigError: If a file cannot be read or a value has the wrong type.
    """
    logger.debug("Loading default config from %s", DEFAULT_CONFIG_PATH)
    config = _apply(ClientConfig(), _read(DEFAULT_CONFIG_PATH), DEFAULT_CONFIG_PATH)

    if config_path is not None:
        logger.debug("Loading user config from %s", config_path)
        config = _apply(config, _read(config_path), config_path)

    return config
