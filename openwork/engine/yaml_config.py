"""YAML configuration loader.

Loads a single YAML file layered over the environment. When no YAML is
provided, env vars work exactly as before.

Example YAML:
    connection:
      base_url: http://127.0.0.1:4096
      directory: /path/to/project
      health_timeout_seconds: 20
      request_timeout_seconds: 60

    logging:
      level: DEBUG
"""
from __future__ import annotations

import logging
from dataclasses import fields, replace
from pathlib import Path

import yaml

from .config import SyncConfig
from .errors import ConfigError

logger = logging.getLogger(__name__)

CONFIG_DIRNAME = ".openwork"
CONFIG_FILENAME = "openwork.yaml"

_FLOAT_FIELDS = {
    "health_timeout_seconds",
    "health_interval_seconds",
    "request_timeout_seconds",
}


def discover_config_path(cwd: Path) -> Path | None:
    """Return ``.openwork/openwork.yaml`` under *cwd* when it exists."""
    candidate = cwd / CONFIG_DIRNAME / CONFIG_FILENAME
    if candidate.exists():
        return candidate
    return None


def load_yaml_config(path: str | Path, base: SyncConfig | None = None) -> SyncConfig:
    """Load a YAML config file and layer it over *base* (env defaults).

    Raises:
        FileNotFoundError: *path* does not exist.
        ConfigError: the file is not valid YAML or has the wrong shape.
    """
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    try:
        raw = yaml.safe_load(config_path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as exc:
        raise ConfigError(str(config_path), str(exc)) from exc
    if not isinstance(raw, dict):
        raise ConfigError(str(config_path), "top level must be a mapping")

    config = base or SyncConfig.from_env()
    connection = raw.get("connection") or {}
    if not isinstance(connection, dict):
        raise ConfigError(str(config_path), "'connection' must be a mapping")

    known = {f.name for f in fields(SyncConfig)}
    updates: dict[str, object] = {}
    for key, value in connection.items():
        if key not in known:
            logger.warning("Ignoring unknown connection key %r in %s", key, config_path)
            continue
        try:
            if key in _FLOAT_FIELDS:
                value = float(value)
            elif key == "event_log_size":
                value = int(value)
            elif value is not None:
                value = str(value)
        except (TypeError, ValueError) as exc:
            raise ConfigError(str(config_path), f"{key}: {exc}") from exc
        updates[key] = value

    log_section = raw.get("logging") or {}
    if isinstance(log_section, dict) and log_section.get("level"):
        updates["log_level"] = str(log_section["level"]).upper()

    result = replace(config, **updates)
    logger.info(
        "Loaded YAML config %s (base_url=%s directory=%s)",
        config_path, result.base_url, result.directory,
    )
    return result
