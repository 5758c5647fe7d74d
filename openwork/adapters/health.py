"""Health probe for a (possibly still starting) execution server."""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Protocol

from openwork.engine.errors import HealthCheckError

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 10.0
DEFAULT_INTERVAL_SECONDS = 0.25
UNHEALTHY_REASON = "Server reported unhealthy"
ATTEMPT_TIMEOUT_REASON = "Health check request timed out"


@dataclass(frozen=True)
class HealthStatus:
    healthy: bool
    version: str | None = None
    raw: dict[str, Any] = field(default_factory=dict, hash=False, repr=False)

    @classmethod
    def from_dict(cls, payload: Any) -> HealthStatus:
        if not isinstance(payload, dict):
            return cls(healthy=False)
        version = payload.get("version")
        return cls(
            healthy=payload.get("healthy") is True,
            version=str(version) if version is not None else None,
            raw=dict(payload),
        )


class SupportsHealth(Protocol):
    async def health(self) -> HealthStatus: ...


async def wait_for_healthy(
    client: SupportsHealth,
    timeout: float = DEFAULT_TIMEOUT_SECONDS,
    interval: float = DEFAULT_INTERVAL_SECONDS,
) -> HealthStatus:
    """Poll ``client.health()`` until healthy or *timeout* elapses.

    Each failed attempt (unhealthy reply or raised error) replaces the
    remembered failure reason; a timeout raises HealthCheckError with the
    last one so the user sees why, not just that it took too long.
    """
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    last_error: str | None = None
    attempts = 0

    while True:
        remaining = deadline - loop.time()
        if remaining <= 0:
            break
        attempts += 1
        try:
            # A single hung request must not outlive the probe.
            status = await asyncio.wait_for(client.health(), timeout=remaining)
            if status.healthy:
                logger.info(
                    "Server healthy after %d attempt(s) version=%s",
                    attempts, status.version,
                )
                return status
            last_error = UNHEALTHY_REASON
        except asyncio.CancelledError:
            raise
        except asyncio.TimeoutError:
            last_error = ATTEMPT_TIMEOUT_REASON
        except Exception as exc:
            last_error = str(exc) or type(exc).__name__
        logger.debug("Health attempt %d failed: %s", attempts, last_error)
        await asyncio.sleep(min(interval, max(0.0, deadline - loop.time())))

    reason = last_error or "Timed out waiting for server health"
    logger.warning("Health probe gave up after %.1fs: %s", timeout, reason)
    raise HealthCheckError(reason, timeout)


class HealthProbe:
    """Reusable probe bound to one client with fixed timing."""

    def __init__(
        self,
        client: SupportsHealth,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        interval: float = DEFAULT_INTERVAL_SECONDS,
    ) -> None:
        self.client = client
        self.timeout = timeout
        self.interval = interval

    async def wait(self) -> HealthStatus:
        return await wait_for_healthy(self.client, self.timeout, self.interval)
