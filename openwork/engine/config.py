"""Connection configuration loaded from environment variables.

All settings have sensible defaults. Override via OPENWORK_* env vars.
"""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "http://127.0.0.1:4096"


@dataclass
class SyncConfig:
    """Settings for one connection to an execution server."""

    base_url: str = DEFAULT_BASE_URL
    # Project directory forwarded to the server on every request.
    directory: str | None = None

    # Health probe. The connect flow waits a little longer than the
    # probe's own default because a freshly spawned engine is slow to bind.
    health_timeout_seconds: float = 12.0
    health_interval_seconds: float = 0.25

    # Total timeout for plain REST calls. The event stream has none.
    request_timeout_seconds: float = 30.0

    # Size of the recent-events ring kept for the developer log.
    event_log_size: int = 150

    # Logging
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> SyncConfig:
        """Load configuration from OPENWORK_* environment variables."""
        overrides = {
            k: v for k, v in os.environ.items() if k.startswith("OPENWORK_")
        }
        if overrides:
            logger.info(
                "SyncConfig.from_env: OPENWORK_* env overrides: %s",
                ", ".join(f"{k}={v}" for k, v in sorted(overrides.items())),
            )
        else:
            logger.debug("SyncConfig.from_env: no OPENWORK_* env vars set, using defaults")

        config = cls(
            base_url=os.getenv("OPENWORK_BASE_URL", cls.base_url),
            directory=os.getenv("OPENWORK_DIRECTORY") or None,
            health_timeout_seconds=float(os.getenv(
                "OPENWORK_HEALTH_TIMEOUT", str(cls.health_timeout_seconds)
            )),
            health_interval_seconds=float(os.getenv(
                "OPENWORK_HEALTH_INTERVAL", str(cls.health_interval_seconds)
            )),
            request_timeout_seconds=float(os.getenv(
                "OPENWORK_REQUEST_TIMEOUT", str(cls.request_timeout_seconds)
            )),
            event_log_size=int(os.getenv(
                "OPENWORK_EVENT_LOG_SIZE", str(cls.event_log_size)
            )),
            log_level=os.getenv("OPENWORK_LOG_LEVEL", cls.log_level),
        )
        logger.info(
            "SyncConfig.from_env: base_url=%s directory=%s log_level=%s",
            config.base_url, config.directory, config.log_level,
        )
        return config
