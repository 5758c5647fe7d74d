"""ServerBridge lifecycle and user actions against a scripted server."""
from __future__ import annotations

import asyncio
import json

import pytest

from openwork.adapters.bridge import ServerBridge
from openwork.adapters.event_stream import EventStreamReader
from openwork.adapters.health import HealthStatus
from openwork.engine.config import SyncConfig
from openwork.engine.errors import NotConnectedError, OpenWorkError, ServerClientError
from openwork.shared.models.message import MessageWithParts
from openwork.shared.models.model_ref import DEFAULT_MODEL, ModelRef
from openwork.shared.models.permission import PermissionRequest
from openwork.shared.models.session import Session, SessionStatus
from openwork.shared.models.todo import TodoItem
from openwork.shared.services.preferences import UserPreferences


class FakeServerClient:
    """In-memory stand-in for ServerClient with a push-driven event stream."""

    def __init__(self) -> None:
        self.base_url: str | None = None
        self.directory: str | None = None
        self.healthy = True
        self.version = "1.2.3"
        self.sessions: list[Session] = [
            Session.from_dict({"id": "s1", "title": "First"}),
            Session.from_dict({"id": "s2", "title": "Second", "status": {"type": "busy"}}),
        ]
        self.messages: dict[str, list[MessageWithParts]] = {}
        self.todos: dict[str, list[TodoItem]] = {}
        self.permission_list: list[PermissionRequest] = []
        self.message_gates: dict[str, asyncio.Event] = {}
        self.prompts: list[tuple[str, str, ModelRef | None]] = []
        self.replies: list[tuple[str, str]] = []
        self.fail_prompt = False
        self.fail_subscribe = False
        self.closed = False
        self._queue: asyncio.Queue = asyncio.Queue()

    def factory(self, base_url, directory=None, request_timeout=30.0):
        self.base_url = base_url
        self.directory = directory
        self.closed = False
        self._queue = asyncio.Queue()
        return self

    # ── scripted server behaviour ──

    def push(self, event_type: str, properties: dict) -> None:
        frame = f"data: {json.dumps({'type': event_type, 'properties': properties})}\n\n"
        self._queue.put_nowait(frame.encode())

    def drop(self, error: Exception) -> None:
        self._queue.put_nowait(error)

    def end(self) -> None:
        self._queue.put_nowait(None)

    async def _frames(self):
        while True:
            item = await self._queue.get()
            if item is None:
                return
            if isinstance(item, Exception):
                raise item
            yield item

    # ── ServerClient surface ──

    async def health(self):
        return HealthStatus(healthy=self.healthy, version=self.version)

    async def list_sessions(self):
        return list(self.sessions)

    async def create_session(self, title=None):
        session = Session(id=f"s{len(self.sessions) + 1}", title=title or "")
        self.sessions.append(session)
        return session

    async def session_messages(self, session_id):
        gate = self.message_gates.get(session_id)
        if gate is not None:
            await gate.wait()
        return list(self.messages.get(session_id, []))

    async def session_todo(self, session_id):
        return list(self.todos.get(session_id, []))

    async def prompt(self, session_id, text, model=None):
        if self.fail_prompt:
            raise ServerClientError("Provider rejected the request", status=400)
        self.prompts.append((session_id, text, model))
        return {}

    async def list_permissions(self):
        return list(self.permission_list)

    async def reply_permission(self, request_id, reply):
        self.replies.append((request_id, reply))
        self.permission_list = [p for p in self.permission_list if p.id != request_id]

    async def subscribe(self):
        if self.fail_subscribe:
            raise ServerClientError("event stream refused", status=503)
        return EventStreamReader(self._frames(), on_cancel=self.end)

    async def close(self):
        self.closed = True


def _history(session_id: str, msg_id: str, provider: str, model: str) -> MessageWithParts:
    return MessageWithParts.from_dict({
        "info": {"id": msg_id, "sessionID": session_id, "role": "user",
                 "model": {"providerID": provider, "modelID": model}},
        "parts": [{"id": f"{msg_id}-p", "messageID": msg_id, "type": "text", "text": "hello"}],
    })


async def _wait_until(predicate, timeout: float = 2.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached")
        await asyncio.sleep(0.005)


def _bridge(tmp_path, server: FakeServerClient) -> ServerBridge:
    config = SyncConfig(health_timeout_seconds=0.3, health_interval_seconds=0.01)
    prefs = UserPreferences(path=tmp_path / "preferences.json")
    return ServerBridge(config=config, preferences=prefs, client_factory=server.factory)


# ── connect / disconnect ──


@pytest.mark.asyncio
async def test_connect_loads_snapshot_and_goes_live(tmp_path) -> None:
    server = FakeServerClient()
    server.permission_list = [PermissionRequest(id="perm1", session_id="s1", permission="edit")]
    bridge = _bridge(tmp_path, server)

    assert await bridge.connect("http://127.0.0.1:4096", "/work") is True
    server.push("server.connected", {})
    await _wait_until(lambda: bridge.live)

    assert bridge.status_line == "Connected · 1.2.3 · Live"
    assert [s.id for s in bridge.state.sessions] == ["s1", "s2"]
    assert bridge.state.status_of("s2") is SessionStatus.RUNNING
    assert bridge.state.permissions[0].received_at > 0
    assert bridge.state.selected_session_id is None
    assert server.directory == "/work"
    assert bridge.preferences.last_base_url == "http://127.0.0.1:4096"
    assert bridge.preferences.client_directory == "/work"

    await bridge.disconnect()
    assert bridge.status_line == "Disconnected"
    assert server.closed is True
    assert bridge.state.sessions == ()


@pytest.mark.asyncio
async def test_connect_fails_when_server_never_healthy(tmp_path) -> None:
    server = FakeServerClient()
    server.healthy = False
    bridge = _bridge(tmp_path, server)

    assert await bridge.connect("http://127.0.0.1:4096") is False
    assert bridge.state.error == "Server reported unhealthy"
    assert bridge.connected is False
    assert server.closed is True
    assert bridge.status_line == "Disconnected"


@pytest.mark.asyncio
async def test_actions_require_connection(tmp_path) -> None:
    bridge = _bridge(tmp_path, FakeServerClient())
    with pytest.raises(NotConnectedError):
        await bridge.select_session("s1")
    with pytest.raises(NotConnectedError):
        await bridge.reconnect()


@pytest.mark.asyncio
async def test_stream_drop_clears_live_and_reconnect_restores(tmp_path) -> None:
    server = FakeServerClient()
    bridge = _bridge(tmp_path, server)
    await bridge.connect("http://127.0.0.1:4096")
    server.push("server.connected", {})
    await _wait_until(lambda: bridge.live)

    server.drop(ConnectionResetError("network changed"))
    await bridge.wait_closed()

    assert bridge.live is False
    assert bridge.state.error == "Event stream disconnected: network changed"
    assert bridge.status_line == "Connected · 1.2.3"

    assert await bridge.reconnect() is True
    server.push("server.connected", {})
    await _wait_until(lambda: bridge.live)
    assert bridge.state.error is None
    await bridge.disconnect()


@pytest.mark.asyncio
async def test_subscribe_failure_leaves_connection_not_live(tmp_path) -> None:
    server = FakeServerClient()
    server.fail_subscribe = True
    bridge = _bridge(tmp_path, server)

    assert await bridge.connect("http://127.0.0.1:4096") is True
    await bridge.wait_closed()

    assert bridge.live is False
    assert bridge.state.error == "event stream refused"
    await bridge.disconnect()


# ── sessions and transcript ──


@pytest.mark.asyncio
async def test_select_session_loads_history_todos_and_model(tmp_path) -> None:
    server = FakeServerClient()
    server.messages["s1"] = [_history("s1", "m1", "openai", "gpt-5")]
    server.todos["s1"] = [TodoItem(id="t1", content="Ship it")]
    bridge = _bridge(tmp_path, server)
    await bridge.connect("http://127.0.0.1:4096")

    await bridge.select_session("s1")

    assert bridge.state.selected_session.title == "First"
    assert [m.info.id for m in bridge.state.messages] == ["m1"]
    assert [t.content for t in bridge.state.todos] == ["Ship it"]
    assert bridge.selected_model == ModelRef("openai", "gpt-5")
    await bridge.disconnect()


@pytest.mark.asyncio
async def test_slow_history_for_previous_selection_is_discarded(tmp_path) -> None:
    server = FakeServerClient()
    server.messages["s1"] = [_history("s1", "m1", "openai", "gpt-5")]
    server.messages["s2"] = [_history("s2", "m2", "anthropic", "claude")]
    server.message_gates["s1"] = asyncio.Event()
    bridge = _bridge(tmp_path, server)
    await bridge.connect("http://127.0.0.1:4096")

    slow = asyncio.create_task(bridge.select_session("s1"))
    await asyncio.sleep(0)
    await bridge.select_session("s2")
    server.message_gates["s1"].set()
    await slow

    assert bridge.state.selected_session_id == "s2"
    assert [m.info.id for m in bridge.state.messages] == ["m2"]
    await bridge.disconnect()


@pytest.mark.asyncio
async def test_live_events_patch_selected_transcript(tmp_path) -> None:
    server = FakeServerClient()
    bridge = _bridge(tmp_path, server)
    await bridge.connect("http://127.0.0.1:4096")
    await bridge.select_session("s1")

    server.push("message.updated", {"info": {"id": "m1", "sessionID": "s1", "role": "assistant"}})
    server.push("message.part.updated", {"part": {
        "id": "p1", "messageID": "m1", "sessionID": "s1", "type": "text", "text": "Working",
    }})
    server.push("session.status", {"sessionID": "s1", "status": {"type": "busy"}})
    await _wait_until(lambda: bridge.state.messages and bridge.state.messages[0].parts)

    assert bridge.state.messages[0].parts[0].text == "Working"
    await _wait_until(lambda: bridge.state.status_of("s1") is SessionStatus.RUNNING)
    assert bridge.recent_events()[0].type == "session.status"
    await bridge.disconnect()


@pytest.mark.asyncio
async def test_create_session_selects_it(tmp_path) -> None:
    server = FakeServerClient()
    bridge = _bridge(tmp_path, server)
    await bridge.connect("http://127.0.0.1:4096")

    session = await bridge.create_session()

    assert session.title == "New task"
    assert bridge.state.selected_session_id == session.id
    assert session.id in [s.id for s in bridge.state.sessions]
    await bridge.disconnect()


@pytest.mark.asyncio
async def test_session_reload_keeps_live_status(tmp_path) -> None:
    server = FakeServerClient()
    bridge = _bridge(tmp_path, server)
    await bridge.connect("http://127.0.0.1:4096")

    server.push("session.status", {"sessionID": "s1", "status": {"type": "retry"}})
    await _wait_until(lambda: bridge.state.status_of("s1") is SessionStatus.RETRY)

    created = await bridge.create_session()

    assert bridge.state.status_of("s1") is SessionStatus.RETRY
    assert bridge.state.sessions[0].status is SessionStatus.RETRY
    assert bridge.state.status_of(created.id) is SessionStatus.IDLE
    await bridge.disconnect()


@pytest.mark.asyncio
async def test_session_reload_adopts_status_the_listing_carries(tmp_path) -> None:
    server = FakeServerClient()
    bridge = _bridge(tmp_path, server)
    await bridge.connect("http://127.0.0.1:4096")

    server.push("session.idle", {"sessionID": "s2"})
    await _wait_until(lambda: bridge.state.status_of("s2") is SessionStatus.IDLE)

    await bridge.load_sessions()

    assert bridge.state.status_of("s2") is SessionStatus.RUNNING
    await bridge.disconnect()


# ── prompts and models ──


@pytest.mark.asyncio
async def test_send_prompt_uses_override_once(tmp_path) -> None:
    server = FakeServerClient()
    server.messages["s1"] = [_history("s1", "m1", "openai", "gpt-5")]
    bridge = _bridge(tmp_path, server)
    await bridge.connect("http://127.0.0.1:4096")
    await bridge.select_session("s1")

    claude = ModelRef("anthropic", "claude")
    bridge.set_session_model(claude)
    used = await bridge.send_prompt("  Refactor the parser  ")

    assert used == claude
    assert server.prompts == [("s1", "Refactor the parser", claude)]
    assert bridge.models.override_for("s1") is None
    assert bridge.selected_model == claude
    await bridge.disconnect()


@pytest.mark.asyncio
async def test_send_prompt_validation(tmp_path) -> None:
    server = FakeServerClient()
    bridge = _bridge(tmp_path, server)
    await bridge.connect("http://127.0.0.1:4096")

    with pytest.raises(OpenWorkError):
        await bridge.send_prompt("hello")
    with pytest.raises(OpenWorkError):
        bridge.set_session_model(ModelRef("openai", "gpt-5"))

    await bridge.select_session("s1")
    with pytest.raises(ValueError):
        await bridge.send_prompt("   ")
    assert server.prompts == []
    await bridge.disconnect()


@pytest.mark.asyncio
async def test_send_prompt_failure_surfaces_and_keeps_override(tmp_path) -> None:
    server = FakeServerClient()
    server.fail_prompt = True
    bridge = _bridge(tmp_path, server)
    await bridge.connect("http://127.0.0.1:4096")
    await bridge.select_session("s1")
    bridge.set_session_model(ModelRef("openai", "gpt-5"))

    with pytest.raises(ServerClientError, match="Provider rejected"):
        await bridge.send_prompt("hello")

    assert bridge.models.override_for("s1") == ModelRef("openai", "gpt-5")
    await bridge.disconnect()


@pytest.mark.asyncio
async def test_default_model_is_used_without_history(tmp_path) -> None:
    server = FakeServerClient()
    bridge = _bridge(tmp_path, server)
    await bridge.connect("http://127.0.0.1:4096")
    await bridge.select_session("s1")

    assert bridge.selected_model == DEFAULT_MODEL
    bridge.set_default_model(ModelRef("anthropic", "claude"))
    assert bridge.selected_model == ModelRef("anthropic", "claude")
    assert UserPreferences.load(tmp_path / "preferences.json").default_model == "anthropic/claude"
    await bridge.disconnect()


# ── permissions ──


@pytest.mark.asyncio
async def test_permission_event_and_reply(tmp_path) -> None:
    server = FakeServerClient()
    bridge = _bridge(tmp_path, server)
    await bridge.connect("http://127.0.0.1:4096")
    await bridge.select_session("s1")

    server.permission_list = [
        PermissionRequest(id="perm0", session_id="s2", permission="bash"),
        PermissionRequest(id="perm1", session_id="s1", permission="edit"),
    ]
    server.push("permission.asked", {"id": "perm1", "sessionID": "s1"})
    await _wait_until(lambda: len(bridge.state.permissions) == 2)

    assert bridge.active_permission.id == "perm1"

    await bridge.reply_permission("perm1", "once")

    assert server.replies == [("perm1", "once")]
    assert [p.id for p in bridge.state.permissions] == ["perm0"]
    assert bridge.active_permission is None
    await bridge.disconnect()


@pytest.mark.asyncio
async def test_active_permission_without_selection_is_first_pending(tmp_path) -> None:
    server = FakeServerClient()
    server.permission_list = [PermissionRequest(id="perm9", session_id="s2", permission="bash")]
    bridge = _bridge(tmp_path, server)
    await bridge.connect("http://127.0.0.1:4096")

    assert bridge.active_permission.id == "perm9"
    await bridge.disconnect()


# ── templates ──


@pytest.mark.asyncio
async def test_template_save_run_delete(tmp_path) -> None:
    server = FakeServerClient()
    bridge = _bridge(tmp_path, server)
    await bridge.connect("http://127.0.0.1:4096")

    template = bridge.save_template(" Weekly report ", "Summarize this week's commits")
    assert [t.title for t in bridge.preferences.list_templates()] == ["Weekly report"]

    session = await bridge.run_template(template)

    assert session.title == "Weekly report"
    assert bridge.state.selected_session_id == session.id
    assert server.prompts == [(session.id, "Summarize this week's commits", DEFAULT_MODEL)]

    bridge.delete_template(template.id)
    assert bridge.preferences.list_templates() == []

    with pytest.raises(ValueError):
        bridge.save_template("", "prompt")
    await bridge.disconnect()
