"""Connection configuration and the OpenWork exception hierarchy."""
from .config import DEFAULT_BASE_URL, SyncConfig
from .errors import (
    ConfigError,
    HealthCheckError,
    NotConnectedError,
    OpenWorkError,
    ServerClientError,
)
from .yaml_config import discover_config_path, load_yaml_config

__all__ = [
    "DEFAULT_BASE_URL",
    "SyncConfig",
    "ConfigError",
    "HealthCheckError",
    "NotConnectedError",
    "OpenWorkError",
    "ServerClientError",
    "discover_config_path",
    "load_yaml_config",
]
