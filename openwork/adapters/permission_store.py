"""First-seen bookkeeping for pending permission requests.

The server's permission list carries no client arrival time. Prompts are
ordered and aged by when this client first saw each id, so that time is
kept here across re-fetches instead of being rediscovered by diffing lists.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Iterable

from openwork.shared.models.permission import PermissionRequest
from openwork.shared.services.state_store import stamp_permissions

logger = logging.getLogger(__name__)


def now_ms() -> int:
    return int(time.time() * 1000)


class PermissionTracker:
    """Persistent mapping of permission id → first-seen time (epoch ms)."""

    def __init__(self, clock: Callable[[], int] = now_ms) -> None:
        self._clock = clock
        self._first_seen: dict[str, int] = {}

    def first_seen(self, permission_id: str) -> int | None:
        return self._first_seen.get(permission_id)

    def merge(
        self, server_list: Iterable[PermissionRequest]
    ) -> tuple[PermissionRequest, ...]:
        """Stamp the authoritative list with first-seen times.

        Ids no longer pending are forgotten, so a later request that reuses
        an id counts as new.
        """
        merged = stamp_permissions(server_list, self._first_seen, self._clock())
        added = [p.id for p in merged if p.id not in self._first_seen]
        if added:
            logger.debug("New permission requests: %s", ", ".join(added))
        self._first_seen = {p.id: p.received_at for p in merged}
        return merged

    def clear(self) -> None:
        self._first_seen.clear()
