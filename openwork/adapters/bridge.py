"""Bridge between an execution server and the OpenWork client.

Owns one connection cycle at a time: health probe, initial snapshot, the
event-consumption task, and the user actions that go back to the server.
Reconnecting is always explicit: when ``live`` drops, the caller decides
whether to call ``reconnect()``.
"""
from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import replace

from openwork.adapters.events import ServerEvent
from openwork.adapters.event_stream import EventStreamReader
from openwork.adapters.health import wait_for_healthy
from openwork.adapters.permission_store import PermissionTracker
from openwork.adapters.reconciler import EventListener, Reconciler
from openwork.adapters.server_client import ServerClient
from openwork.engine.config import SyncConfig
from openwork.engine.errors import NotConnectedError, OpenWorkError, ServerClientError
from openwork.shared.models.model_ref import ModelRef
from openwork.shared.models.permission import PermissionRequest
from openwork.shared.models.session import Session
from openwork.shared.models.template import Template
from openwork.shared.services.model_resolver import ModelResolver
from openwork.shared.services.preferences import UserPreferences
from openwork.shared.services.state_store import SyncState

logger = logging.getLogger(__name__)

DEFAULT_SESSION_TITLE = "New task"

ClientFactory = Callable[..., ServerClient]


class ServerBridge:
    """Connects to a server and keeps ``state`` in sync with it."""

    def __init__(
        self,
        config: SyncConfig | None = None,
        preferences: UserPreferences | None = None,
        client_factory: ClientFactory = ServerClient,
    ) -> None:
        self.config = config or SyncConfig()
        self.preferences = preferences or UserPreferences()
        self._client_factory = client_factory
        self.state = SyncState(event_log_size=self.config.event_log_size)
        self.models = ModelResolver(self.preferences)
        self.permissions = PermissionTracker()
        self._client: ServerClient | None = None
        self._reconciler: Reconciler | None = None
        self._reader: EventStreamReader | None = None
        self._event_task: asyncio.Task | None = None
        self._listeners: list[EventListener] = []
        self._base_url: str | None = None
        self._directory: str | None = None

    # ── properties ──

    @property
    def client(self) -> ServerClient | None:
        return self._client

    @property
    def connected(self) -> bool:
        return self._client is not None

    @property
    def live(self) -> bool:
        return self.state.live

    @property
    def status_line(self) -> str:
        if self._client is None or not self.state.connected_version:
            return "Disconnected"
        bits = [f"Connected · {self.state.connected_version}"]
        if self.state.live:
            bits.append("Live")
        return " · ".join(bits)

    @property
    def selected_model(self) -> ModelRef:
        return self.models.resolve(self.state.selected_session_id, self.state.messages)

    @property
    def active_permission(self) -> PermissionRequest | None:
        """Pending permission to show: the selected session's first, else any."""
        pending = self.state.permissions
        session_id = self.state.selected_session_id
        if session_id:
            return next((p for p in pending if p.session_id == session_id), None)
        return pending[0] if pending else None

    def add_listener(self, listener: EventListener) -> None:
        self._listeners.append(listener)
        if self._reconciler is not None:
            self._reconciler.add_listener(listener)

    def _require_client(self, action: str) -> ServerClient:
        if self._client is None:
            raise NotConnectedError(action)
        return self._client

    # ── connection lifecycle ──

    async def connect(self, base_url: str | None = None, directory: str | None = None) -> bool:
        """Probe, load the initial snapshot, and start consuming events.

        Returns False (with ``state.error`` set) when the server cannot be
        reached or never becomes healthy.
        """
        if self._client is not None:
            await self.disconnect()

        url = base_url or self.config.base_url
        directory = directory if directory is not None else self.config.directory
        self.state.error = None
        self.state.live = False
        client = self._client_factory(
            url, directory, request_timeout=self.config.request_timeout_seconds
        )
        logger.info("Connecting to %s directory=%s", url, directory)

        try:
            health = await wait_for_healthy(
                client,
                timeout=self.config.health_timeout_seconds,
                interval=self.config.health_interval_seconds,
            )
            self._client = client
            self._reconciler = Reconciler(self.state, client, self.permissions, self.models)
            for listener in self._listeners:
                self._reconciler.add_listener(listener)
            self.state.connected_version = health.version
            await self.load_sessions()
            await self.refresh_permissions()
        except OpenWorkError as exc:
            logger.warning("Connect to %s failed: %s", url, exc)
            self.state.error = str(exc)
            self._client = None
            self._reconciler = None
            self.state.connected_version = None
            await client.close()
            return False

        self._base_url = url
        self._directory = directory
        self.state.clear_selection()
        self.preferences.remember_connection(url, directory)
        self._event_task = asyncio.create_task(self._consume_events(client, self._reconciler))
        logger.info("Connected to %s version=%s", url, health.version)
        return True

    async def reconnect(self) -> bool:
        """Start a fresh cycle against the last server."""
        if not self._base_url:
            raise NotConnectedError("reconnect")
        return await self.connect(self._base_url, self._directory)

    async def disconnect(self) -> None:
        reader, task, reconciler, client = (
            self._reader, self._event_task, self._reconciler, self._client,
        )
        self._reader = None
        self._event_task = None
        self._reconciler = None
        self._client = None

        if reader is not None:
            reader.cancel()
        if task is not None and not task.done():
            task.cancel()
        if task is not None:
            await asyncio.gather(task, return_exceptions=True)
        if reconciler is not None:
            await reconciler.cancel_pending()
        if client is not None:
            await client.close()

        self.state.reset()
        self.permissions.clear()
        self.models.clear()
        logger.info("Disconnected")

    async def wait_closed(self) -> None:
        """Wait until the current event stream ends."""
        if self._event_task is not None:
            await asyncio.gather(self._event_task, return_exceptions=True)

    async def _consume_events(self, client: ServerClient, reconciler: Reconciler) -> None:
        try:
            reader = await client.subscribe()
        except ServerClientError as exc:
            logger.warning("Event subscription failed: %s", exc)
            self.state.live = False
            self.state.error = str(exc)
            return
        self._reader = reader
        await reconciler.run(reader)
        logger.info("Event loop finished (live=%s)", self.state.live)

    # ── snapshot loads ──

    async def load_sessions(self) -> None:
        client = self._require_client("load sessions")
        sessions = await client.list_sessions()
        # Listings usually omit status; keep what session.status events reported.
        previous = self.state.session_status
        merged = tuple(
            s if "status" in s.raw or s.id not in previous
            else replace(s, status=previous[s.id])
            for s in sessions
        )
        self.state.sessions = merged
        self.state.session_status = {s.id: s.status for s in merged}

    async def refresh_permissions(self) -> None:
        client = self._require_client("refresh permissions")
        self.state.permissions = self.permissions.merge(await client.list_permissions())

    # ── user actions ──

    async def select_session(self, session_id: str) -> None:
        """Switch the active session and fetch its transcript, todos and permissions.

        Each result is dropped if another session was selected before it
        arrived.
        """
        client = self._require_client("select a session")
        self.state.selected_session_id = session_id
        self.state.messages = ()
        self.state.todos = ()
        self.state.error = None

        history = await client.session_messages(session_id)
        if self.state.selected_session_id != session_id:
            logger.debug("Discarding history for %s: selection moved on", session_id)
            return
        self.state.messages = tuple(history)
        self.models.infer_from_history(session_id, history)

        try:
            await self._reconciler.refresh_todos(session_id)
        except ServerClientError as exc:
            logger.warning("Todo fetch for %s failed: %s", session_id, exc)

        try:
            await self.refresh_permissions()
        except ServerClientError as exc:
            logger.warning("Permission refresh failed: %s", exc)

    async def create_session(self, title: str = DEFAULT_SESSION_TITLE) -> Session:
        client = self._require_client("create a session")
        session = await client.create_session(title)
        await self.load_sessions()
        await self.select_session(session.id)
        return session

    async def send_prompt(self, text: str) -> ModelRef:
        """Send *text* to the selected session with its resolved model."""
        client = self._require_client("send a prompt")
        session_id = self.state.selected_session_id
        if not session_id:
            raise OpenWorkError("Select a session before sending a prompt")
        content = text.strip()
        if not content:
            raise ValueError("Prompt is empty")

        model = self.selected_model
        await client.prompt(session_id, content, model)
        self.models.record_sent(session_id, model)
        logger.info("Prompt sent to %s with %s", session_id, model)
        await self._refresh_after_prompt(session_id)
        return model

    async def _refresh_after_prompt(self, session_id: str) -> None:
        client = self._require_client("refresh a session")
        try:
            history = await client.session_messages(session_id)
            if self.state.selected_session_id == session_id:
                self.state.messages = tuple(history)
            await self._reconciler.refresh_todos(session_id)
            await self.load_sessions()
        except ServerClientError as exc:
            logger.warning("Refresh after prompt failed: %s", exc)
            self.state.error = str(exc)

    async def reply_permission(self, request_id: str, reply: str) -> None:
        client = self._require_client("reply to a permission")
        await client.reply_permission(request_id, reply)
        logger.info("Replied %s to permission %s", reply, request_id)
        await self.refresh_permissions()

    # ── models ──

    def set_session_model(self, model: ModelRef) -> None:
        """Override the model for the selected session's next prompt."""
        session_id = self.state.selected_session_id
        if not session_id:
            raise OpenWorkError("Select a session before choosing its model")
        self.models.set_override(session_id, model)

    def set_default_model(self, model: ModelRef) -> None:
        self.preferences.set_default_model(model)

    # ── templates ──

    def save_template(self, title: str, prompt: str, description: str = "") -> Template:
        title, prompt = title.strip(), prompt.strip()
        if not title or not prompt:
            raise ValueError("Template title and prompt are required.")
        template = Template(title=title, prompt=prompt, description=description.strip())
        self.preferences.add_template(template)
        return template

    def delete_template(self, template_id: str) -> None:
        self.preferences.remove_template(template_id)

    async def run_template(self, template: Template) -> Session:
        """Start a new session from *template* using the default model."""
        client = self._require_client("run a template")
        session = await client.create_session(template.title)
        await self.load_sessions()
        await self.select_session(session.id)

        model = self.models.default_model
        await client.prompt(session.id, template.prompt, model)
        self.models.record_sent(session.id, model)
        return session

    # ── developer log ──

    def recent_events(self) -> list[ServerEvent]:
        return [
            ServerEvent(type=e["type"], properties=e["properties"])
            for e in self.state.recent_events
        ]
