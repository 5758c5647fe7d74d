"""In-memory view of the server, rebuilt from events and snapshots.

The module-level functions are the only way collections change. Each one
takes a tuple and returns a new tuple, leaving its input untouched, so the
single reconciliation loop can swap results into ``SyncState`` without
locking. ``SyncState`` itself is just the holder of the current tuples.
"""

from __future__ import annotations

import logging
from collections import deque
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field, replace
from typing import Any

from openwork.shared.models.message import Message, MessageRole, MessageWithParts, Part
from openwork.shared.models.model_ref import ModelRef
from openwork.shared.models.permission import PermissionRequest
from openwork.shared.models.session import Session, SessionStatus
from openwork.shared.models.todo import TodoItem

logger = logging.getLogger(__name__)

Sessions = tuple[Session, ...]
Messages = tuple[MessageWithParts, ...]


# ── Sessions ──


def upsert_session(sessions: Sessions, nxt: Session) -> Sessions:
    """Replace the entry with ``nxt.id`` in place, or append it."""
    for idx, existing in enumerate(sessions):
        if existing.id == nxt.id:
            return sessions[:idx] + (nxt,) + sessions[idx + 1:]
    return sessions + (nxt,)


def remove_session(sessions: Sessions, session_id: str) -> Sessions:
    return tuple(s for s in sessions if s.id != session_id)


def set_session_status(sessions: Sessions, session_id: str, status: SessionStatus) -> Sessions:
    """Update the status of a stored session; unknown ids are left alone."""
    for idx, existing in enumerate(sessions):
        if existing.id == session_id:
            if existing.status is status:
                return sessions
            return sessions[:idx] + (replace(existing, status=status),) + sessions[idx + 1:]
    return sessions


# ── Messages and parts ──


def _find_message(messages: Messages, message_id: str) -> int:
    for idx, msg in enumerate(messages):
        if msg.info.id == message_id:
            return idx
    return -1


def upsert_message(messages: Messages, info: Message) -> Messages:
    """Replace a message's info (keeping its parts), or append it with no parts."""
    idx = _find_message(messages, info.id)
    if idx == -1:
        return messages + (MessageWithParts(info=info),)
    updated = replace(messages[idx], info=info)
    return messages[:idx] + (updated,) + messages[idx + 1:]


def remove_message(messages: Messages, message_id: str) -> Messages:
    if _find_message(messages, message_id) == -1:
        return messages
    return tuple(m for m in messages if m.info.id != message_id)


def upsert_part(messages: Messages, part: Part) -> Messages:
    """Attach *part* to its message, replacing a part with the same id.

    A part can arrive before its message. In that case the collection is
    returned unchanged; the part will be present in the next full history
    fetch or re-delivered by a later ``message.part.updated``.
    """
    idx = _find_message(messages, part.message_id)
    if idx == -1:
        logger.debug("Dropping part %s for unknown message %s", part.id, part.message_id)
        return messages

    msg = messages[idx]
    parts = list(msg.parts)
    for p_idx, existing in enumerate(parts):
        if existing.id == part.id:
            parts[p_idx] = part
            break
    else:
        parts.append(part)

    updated = replace(msg, parts=tuple(parts))
    return messages[:idx] + (updated,) + messages[idx + 1:]


def remove_part(messages: Messages, message_id: str, part_id: str) -> Messages:
    """Remove a part. Missing message or part is a no-op."""
    idx = _find_message(messages, message_id)
    if idx == -1:
        return messages
    msg = messages[idx]
    if msg.part(part_id) is None:
        return messages
    updated = replace(msg, parts=tuple(p for p in msg.parts if p.id != part_id))
    return messages[:idx] + (updated,) + messages[idx + 1:]


def last_user_model(messages: Iterable[MessageWithParts]) -> ModelRef | None:
    """Most recent user-authored message carrying a model reference."""
    for msg in reversed(tuple(messages)):
        if msg.info.role is MessageRole.USER and msg.info.model is not None:
            return msg.info.model
    return None


# ── Permissions ──


def stamp_permissions(
    server_list: Iterable[PermissionRequest],
    first_seen: Mapping[str, int],
    now: int,
) -> tuple[PermissionRequest, ...]:
    """Set ``received_at`` from *first_seen*, or *now* for ids not in it."""
    return tuple(
        p.with_received_at(first_seen.get(p.id, now)) for p in server_list
    )


def reconcile_permissions(
    server_list: Iterable[PermissionRequest],
    previous: Iterable[PermissionRequest],
    now: int,
) -> tuple[PermissionRequest, ...]:
    """Adopt the server's list, keeping ``received_at`` for ids seen before."""
    return stamp_permissions(server_list, {p.id: p.received_at for p in previous}, now)


# ── Container ──


@dataclass
class SyncState:
    """Everything the client knows about one connected server."""

    sessions: Sessions = ()
    session_status: dict[str, SessionStatus] = field(default_factory=dict)
    selected_session_id: str | None = None
    # Transcript of the selected session only.
    messages: Messages = ()
    todos: tuple[TodoItem, ...] = ()
    permissions: tuple[PermissionRequest, ...] = ()
    live: bool = False
    connected_version: str | None = None
    error: str | None = None
    event_log_size: int = 150
    recent_events: deque[dict[str, Any]] = field(init=False, repr=False)

    def __post_init__(self) -> None:
        self.recent_events = deque(maxlen=self.event_log_size)

    @property
    def selected_session(self) -> Session | None:
        if not self.selected_session_id:
            return None
        return next((s for s in self.sessions if s.id == self.selected_session_id), None)

    def status_of(self, session_id: str | None) -> SessionStatus:
        if not session_id:
            return SessionStatus.IDLE
        return self.session_status.get(session_id, SessionStatus.IDLE)

    def record_event(self, event_type: str, properties: Any) -> None:
        # Newest first, bounded.
        self.recent_events.appendleft({"type": event_type, "properties": properties})

    def clear_selection(self) -> None:
        self.selected_session_id = None
        self.messages = ()
        self.todos = ()

    def reset(self) -> None:
        """Forget everything about the server (disconnect)."""
        self.sessions = ()
        self.session_status = {}
        self.clear_selection()
        self.permissions = ()
        self.live = False
        self.connected_version = None
        self.recent_events.clear()
