"""Applies server events to the local SyncState.

One Reconciler consumes one EventStreamReader. Most events patch state in
place through the pure state_store primitives. Permissions and todos are
re-fetched whole instead: those refreshes run as background tasks so the
consumption loop never waits on them, and each one replaces its slice with
the latest snapshot, which keeps overlapping refreshes safe.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Coroutine
from typing import Any, Protocol

from openwork.adapters import events as ev
from openwork.adapters.event_stream import EventStreamReader
from openwork.adapters.events import ServerEvent
from openwork.adapters.permission_store import PermissionTracker
from openwork.shared.models.message import Message, Part
from openwork.shared.models.permission import PermissionRequest
from openwork.shared.models.session import (
    Session,
    SessionStatus,
    normalize_session_status,
)
from openwork.shared.models.todo import TodoItem
from openwork.shared.services.model_resolver import ModelResolver
from openwork.shared.services.state_store import (
    SyncState,
    remove_message,
    remove_part,
    remove_session,
    set_session_status,
    upsert_message,
    upsert_part,
    upsert_session,
)

logger = logging.getLogger(__name__)

EventListener = Callable[[ServerEvent], None]


class RefreshClient(Protocol):
    def list_permissions(self) -> Awaitable[list[PermissionRequest]]: ...
    def session_todo(self, session_id: str) -> Awaitable[list[TodoItem]]: ...


class Reconciler:
    """Dispatch table from event type to state mutation."""

    def __init__(
        self,
        state: SyncState,
        client: RefreshClient,
        permissions: PermissionTracker,
        models: ModelResolver,
    ) -> None:
        self.state = state
        self.client = client
        self.permissions = permissions
        self.models = models
        self._tasks: set[asyncio.Task] = set()
        self._listeners: list[EventListener] = []
        self._handlers: dict[str, Callable[[ServerEvent], None]] = {
            ev.SERVER_CONNECTED: self._on_server_connected,
            ev.SESSION_CREATED: self._on_session_upsert,
            ev.SESSION_UPDATED: self._on_session_upsert,
            ev.SESSION_DELETED: self._on_session_deleted,
            ev.SESSION_STATUS: self._on_session_status,
            ev.SESSION_IDLE: self._on_session_idle,
            ev.MESSAGE_CREATED: self._on_message,
            ev.MESSAGE_UPDATED: self._on_message,
            ev.MESSAGE_REMOVED: self._on_message_removed,
            ev.PART_CREATED: self._on_part,
            ev.PART_UPDATED: self._on_part,
            ev.PART_DELETED: self._on_part_removed,
            ev.PART_REMOVED: self._on_part_removed,
            ev.PERMISSION_CREATED: self._on_permission,
            ev.PERMISSION_UPDATED: self._on_permission,
            ev.PERMISSION_DELETED: self._on_permission,
            ev.PERMISSION_ASKED: self._on_permission,
            ev.PERMISSION_REPLIED: self._on_permission,
        }

    # ── listeners ──

    def add_listener(self, listener: EventListener) -> None:
        """Call *listener* with every event after it has been applied."""
        self._listeners.append(listener)

    # ── main loop ──

    async def run(self, reader: EventStreamReader) -> None:
        """Consume *reader* until it ends, then mirror its final liveness."""
        async for event in reader:
            self.state.live = True
            self.apply(event)

        self.state.live = False
        if reader.error is not None and not reader.cancelled:
            self.state.error = f"Event stream disconnected: {reader.error}"

    def apply(self, event: ServerEvent) -> None:
        self.state.record_event(event.type, event.properties)
        handler = self._handlers.get(event.type)
        if handler is None and event.type.startswith(ev.TODO_PREFIX):
            handler = self._on_todo
        if handler is not None:
            try:
                handler(event)
            except (KeyError, TypeError, ValueError):
                logger.debug("Ignoring malformed %s event", event.type, exc_info=True)
        for listener in self._listeners:
            try:
                listener(event)
            except Exception:
                logger.exception("Event listener failed for %s", event.type)

    # ── session handlers ──

    def _on_server_connected(self, event: ServerEvent) -> None:
        self.state.live = True

    def _on_session_upsert(self, event: ServerEvent) -> None:
        info = event.props.get("info")
        if not isinstance(info, dict) or "id" not in info:
            return
        session = Session.from_dict(info)
        # The record is authoritative: no status in it reads as idle, even
        # if an earlier session.status said running.
        self.state.sessions = upsert_session(self.state.sessions, session)
        self.state.session_status[session.id] = session.status

    def _on_session_deleted(self, event: ServerEvent) -> None:
        info = event.props.get("info")
        session_id = info.get("id") if isinstance(info, dict) else event.props.get("sessionID")
        if not isinstance(session_id, str):
            return
        self.state.sessions = remove_session(self.state.sessions, session_id)
        self.state.session_status.pop(session_id, None)
        self.models.forget(session_id)
        if self.state.selected_session_id == session_id:
            self.state.clear_selection()

    def _set_status(self, session_id: str, status: SessionStatus) -> None:
        self.state.session_status[session_id] = status
        self.state.sessions = set_session_status(self.state.sessions, session_id, status)

    def _on_session_status(self, event: ServerEvent) -> None:
        session_id = event.props.get("sessionID")
        if isinstance(session_id, str):
            self._set_status(session_id, normalize_session_status(event.props.get("status")))

    def _on_session_idle(self, event: ServerEvent) -> None:
        session_id = event.props.get("sessionID")
        if isinstance(session_id, str):
            self._set_status(session_id, SessionStatus.IDLE)

    # ── message handlers ──

    def _on_message(self, event: ServerEvent) -> None:
        info = event.props.get("info")
        if not isinstance(info, dict) or "id" not in info:
            return
        message = Message.from_dict(info)
        if message.model is not None and message.session_id:
            self.models.remember(message.session_id, message.model)
        # Transcripts of other sessions are fetched fresh when selected.
        selected = self.state.selected_session_id
        if selected and message.session_id == selected:
            self.state.messages = upsert_message(self.state.messages, message)

    def _on_message_removed(self, event: ServerEvent) -> None:
        session_id = event.props.get("sessionID")
        message_id = event.props.get("messageID")
        if not isinstance(message_id, str):
            return
        if session_id is not None and session_id != self.state.selected_session_id:
            return
        self.state.messages = remove_message(self.state.messages, message_id)

    def _on_part(self, event: ServerEvent) -> None:
        payload = event.props.get("part") or event.props.get("info")
        if not isinstance(payload, dict):
            return
        part = Part.from_dict(payload)
        if part.session_id is not None and part.session_id != self.state.selected_session_id:
            return
        self.state.messages = upsert_part(self.state.messages, part)

    def _on_part_removed(self, event: ServerEvent) -> None:
        props = event.props
        message_id = props.get("messageID")
        part_id = props.get("partID")
        if not isinstance(message_id, str) or not isinstance(part_id, str):
            return
        session_id = props.get("sessionID")
        if session_id is not None and session_id != self.state.selected_session_id:
            return
        self.state.messages = remove_part(self.state.messages, message_id, part_id)

    # ── snapshot refreshes ──

    def _on_permission(self, event: ServerEvent) -> None:
        self.schedule(self.refresh_permissions(), "permission refresh")

    def _on_todo(self, event: ServerEvent) -> None:
        session_id = self.state.selected_session_id
        if session_id:
            self.schedule(self.refresh_todos(session_id), f"todo refresh for {session_id}")

    async def refresh_permissions(self) -> None:
        server_list = await self.client.list_permissions()
        self.state.permissions = self.permissions.merge(server_list)

    async def refresh_todos(self, session_id: str) -> None:
        todos = await self.client.session_todo(session_id)
        if self.state.selected_session_id != session_id:
            logger.debug("Discarding todos for %s: selection moved on", session_id)
            return
        self.state.todos = tuple(todos)

    def schedule(self, coro: Coroutine[Any, Any, None], label: str) -> asyncio.Task:
        """Run *coro* in the background; failures are logged, never raised."""
        task = asyncio.create_task(self._guarded(coro, label))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    @staticmethod
    async def _guarded(coro: Coroutine[Any, Any, None], label: str) -> None:
        try:
            await coro
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.warning("%s failed: %s", label, exc)

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def drain(self) -> None:
        """Wait for every scheduled refresh to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def cancel_pending(self) -> None:
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()
