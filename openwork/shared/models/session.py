"""Session records mirrored from the execution server."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class SessionStatus(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    RETRY = "retry"


# Server status ``type`` → local status. Anything else reads as idle.
_STATUS_MAP = {
    "busy": SessionStatus.RUNNING,
    "retry": SessionStatus.RETRY,
    "idle": SessionStatus.IDLE,
}


def normalize_session_status(status: Any) -> SessionStatus:
    """Map a server ``{"type": ...}`` status object to a SessionStatus."""
    if not isinstance(status, dict):
        return SessionStatus.IDLE
    return _STATUS_MAP.get(status.get("type"), SessionStatus.IDLE)


@dataclass(frozen=True)
class Session:
    """A unit of conversational/task work tracked by the server."""

    id: str
    title: str = ""
    slug: str = ""
    status: SessionStatus = SessionStatus.IDLE
    updated_at: float | None = None
    raw: dict[str, Any] = field(default_factory=dict, hash=False, repr=False)

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> Session:
        times = payload.get("time")
        updated = times.get("updated") if isinstance(times, dict) else None
        return cls(
            id=str(payload["id"]),
            title=str(payload.get("title") or ""),
            slug=str(payload.get("slug") or ""),
            status=normalize_session_status(payload.get("status")),
            updated_at=float(updated) if isinstance(updated, (int, float)) else None,
            raw=dict(payload),
        )

    def to_dict(self) -> dict[str, Any]:
        return dict(self.raw) if self.raw else {"id": self.id, "title": self.title}
