"""Event records delivered over the server's SSE stream.

The server emits JSON frames in two shapes: ``{"type", "properties"}`` or
the same pair wrapped in a ``payload`` object. Both are normalized into a
``ServerEvent`` before any consumer sees them.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any

# Event type strings handled by the reconciler.
SERVER_CONNECTED = "server.connected"
SESSION_CREATED = "session.created"
SESSION_UPDATED = "session.updated"
SESSION_DELETED = "session.deleted"
SESSION_STATUS = "session.status"
SESSION_IDLE = "session.idle"
MESSAGE_CREATED = "message.created"
MESSAGE_UPDATED = "message.updated"
MESSAGE_REMOVED = "message.removed"
PART_CREATED = "message.part.created"
PART_UPDATED = "message.part.updated"
PART_DELETED = "message.part.deleted"
PART_REMOVED = "message.part.removed"
PERMISSION_CREATED = "permission.created"
PERMISSION_UPDATED = "permission.updated"
PERMISSION_DELETED = "permission.deleted"
PERMISSION_ASKED = "permission.asked"
PERMISSION_REPLIED = "permission.replied"
TODO_PREFIX = "todo."


@dataclass(frozen=True)
class ServerEvent:
    """A normalized event: a type string plus an opaque properties payload."""
    type: str
    properties: Any = None

    @property
    def props(self) -> dict[str, Any]:
        """``properties`` when it is an object, else an empty dict."""
        return self.properties if isinstance(self.properties, dict) else {}


def normalize_event(raw: Any) -> ServerEvent | None:
    """Convert a decoded JSON frame into a ServerEvent, or None if unrecognized."""
    if not isinstance(raw, dict):
        return None

    if isinstance(raw.get("type"), str):
        return ServerEvent(type=raw["type"], properties=raw.get("properties"))

    payload = raw.get("payload")
    if isinstance(payload, dict) and isinstance(payload.get("type"), str):
        return ServerEvent(type=payload["type"], properties=payload.get("properties"))

    return None
