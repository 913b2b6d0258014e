"""
Shared configuration loader for music-presence.

Loads a single JSON config file.  Search order:
  1. ~/.config/music-presence/config.json        (per-user install)
  2. config.json                                 (CWD — handy for local dev)
  3. ../../config/default.json                   (repo fallback)

$MUSIC_PRESENCE_CONFIG (or --config) replaces the search entirely.

Usage:
    from .config import cfg

    interval   = cfg("player", "poll_interval", default=1)
    client_id  = cfg("presence", "local_client_id")
    stations   = cfg("stations")  # returns the whole dict
"""

import json
import logging
import os

from .errors import ConfigurationError

logger = logging.getLogger(__name__)

_config: dict | None = None

CONFIG_ENV = "MUSIC_PRESENCE_CONFIG"


def _search_paths() -> list[str]:
    return [
        os.path.expanduser("~/.config/music-presence/config.json"),
        "config.json",
        os.path.join(os.path.dirname(__file__), "..", "..", "config", "default.json"),
    ]


def _read(path: str) -> dict:
    with open(path) as f:
        data = json.load(f)
    if not isinstance(data, dict):
        raise ValueError(f"top level is {type(data).__name__}, expected an object")
    return data


def _validate(config: dict, path: str) -> None:
    """Warn about missing or suspicious config values."""
    presence = config.get("presence") or {}
    if not presence.get("local_client_id"):
        logger.warning("Config %s: missing presence.local_client_id — presence cannot connect", path)
    if not presence.get("station_client_id"):
        logger.info("Config %s: no presence.station_client_id — stations share the local profile's application", path)
    player = config.get("player") or {}
    interval = player.get("poll_interval", 1)
    if not isinstance(interval, (int, float)) or interval <= 0:
        logger.warning("Config %s: player.poll_interval '%s' is not a positive number", path, interval)
    stations = config.get("stations") or {}
    if not stations.get("icon_map_url"):
        logger.info("Config %s: no stations.icon_map_url — station icons fall back to station names", path)


def load_config() -> dict:
    """Return the active config, reading it on first use.

    A path in $MUSIC_PRESENCE_CONFIG is used as-is and must exist and parse;
    otherwise the first readable file on the search path wins.  Unreadable
    candidates on the search path are skipped.

    Raises ConfigurationError when an explicit config file is unusable.
    """
    global _config
    if _config is not None:
        return _config

    override = os.getenv(CONFIG_ENV)
    if override:
        try:
            data = _read(override)
        except FileNotFoundError as e:
            raise ConfigurationError(f"Config file {override} does not exist") from e
        except (OSError, ValueError) as e:
            raise ConfigurationError(f"Config file {override} is unusable: {e}") from e
        return _activate(data, override)

    for path in _search_paths():
        try:
            return _activate(_read(path), path)
        except FileNotFoundError:
            continue
        except (OSError, ValueError) as e:
            logger.error("Skipping config %s: %s", path, e)

    logger.warning("No config file found — running on built-in defaults")
    _config = {}
    return _config


def _activate(data: dict, path: str) -> dict:
    global _config
    logger.info("Config loaded from %s", path)
    _validate(data, path)
    _config = data
    return _config


def cfg(section: str, key: str | None = None, *, default=None):
    """Read a config value.

    cfg("status")                         → config["status"]
    cfg("player", "application")          → config["player"]["application"]
    cfg("player", "poll_interval", default=1)  → config["player"]["poll_interval"] or 1
    """
    config = load_config()
    val = config.get(section)
    if key is None:
        return val if val is not None else default
    if isinstance(val, dict):
        return val.get(key, default)
    return default


def reload_config():
    """Drop the cached config and read it again."""
    global _config
    _config = None
    return load_config()
