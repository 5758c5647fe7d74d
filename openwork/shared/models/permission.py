"""Pending permission requests raised by the server."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any

PERMISSION_REPLIES = ("once", "always", "reject")


@dataclass(frozen=True)
class PermissionRequest:
    """A pause point where the server asks the user to authorize an action.

    ``received_at`` is client-only (epoch milliseconds) and records when this
    id was first seen, so prompts keep a stable age across re-fetches.
    """

    id: str
    session_id: str
    permission: str
    patterns: tuple[str, ...] = ()
    metadata: dict[str, Any] = field(default_factory=dict, hash=False)
    received_at: int = 0

    @classmethod
    def from_dict(cls, payload: dict[str, Any], received_at: int = 0) -> PermissionRequest:
        patterns = payload.get("patterns") or ()
        metadata = payload.get("metadata")
        return cls(
            id=str(payload["id"]),
            session_id=str(payload.get("sessionID") or ""),
            permission=str(payload.get("permission") or ""),
            patterns=tuple(str(p) for p in patterns),
            metadata=dict(metadata) if isinstance(metadata, dict) else {},
            received_at=received_at,
        )

    def with_received_at(self, received_at: int) -> PermissionRequest:
        return replace(self, received_at=received_at)
