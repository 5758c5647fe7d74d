"""aiohttp REST facade for an OpenCode-compatible execution server.

Thin by design: every method is one HTTP call that returns typed models
or raises ServerClientError with a message fit for display.
"""
from __future__ import annotations

import asyncio
import json
import logging
from typing import Any

import aiohttp

from openwork.adapters.event_stream import EventStreamReader
from openwork.adapters.health import HealthStatus
from openwork.engine.errors import ServerClientError
from openwork.shared.models.message import MessageWithParts
from openwork.shared.models.model_ref import ModelRef
from openwork.shared.models.permission import PERMISSION_REPLIES, PermissionRequest
from openwork.shared.models.session import Session
from openwork.shared.models.todo import TodoItem

logger = logging.getLogger(__name__)


def error_message(payload: Any, fallback: str) -> str:
    """Pull a human-readable message out of an error body."""
    if isinstance(payload, str):
        return payload.strip() or fallback
    if isinstance(payload, dict):
        for key in ("message", "error"):
            value = payload.get(key)
            if isinstance(value, str) and value:
                return value
            if isinstance(value, dict):
                nested = error_message(value, "")
                if nested:
                    return nested
        data = payload.get("data")
        if isinstance(data, dict) and isinstance(data.get("message"), str):
            return data["message"]
    if payload is None:
        return fallback
    try:
        return json.dumps(payload)
    except (TypeError, ValueError):
        return fallback


class ServerClient:
    """REST + SSE client for one server and project directory."""

    def __init__(
        self,
        base_url: str,
        directory: str | None = None,
        request_timeout: float = 30.0,
        session: aiohttp.ClientSession | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.directory = directory or None
        self._timeout = aiohttp.ClientTimeout(total=request_timeout)
        self._session = session
        self._owns_session = session is None

    async def __aenter__(self) -> ServerClient:
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    def _http(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        if self._session is not None and self._owns_session and not self._session.closed:
            await self._session.close()
        self._session = None

    def _params(self) -> dict[str, str]:
        return {"directory": self.directory} if self.directory else {}

    async def _request(
        self,
        method: str,
        path: str,
        payload: Any = None,
        timeout: aiohttp.ClientTimeout | None = None,
    ) -> Any:
        url = f"{self.base_url}{path}"
        try:
            async with self._http().request(
                method,
                url,
                params=self._params(),
                json=payload,
                timeout=timeout or self._timeout,
            ) as resp:
                text = await resp.text()
                body: Any = None
                if text:
                    try:
                        body = json.loads(text)
                    except ValueError:
                        body = text
                if resp.status >= 400:
                    message = error_message(body, f"{method} {path} failed ({resp.status})")
                    logger.debug("%s %s -> %d: %s", method, path, resp.status, message)
                    raise ServerClientError(message, status=resp.status)
                return body
        except aiohttp.ClientError as exc:
            raise ServerClientError(str(exc) or type(exc).__name__) from exc
        except asyncio.TimeoutError as exc:
            raise ServerClientError(f"{method} {path} timed out") from exc

    # ── health ──

    async def health(self) -> HealthStatus:
        return HealthStatus.from_dict(await self._request("GET", "/global/health"))

    # ── sessions ──

    async def list_sessions(self) -> list[Session]:
        data = await self._request("GET", "/session")
        return [Session.from_dict(s) for s in data or [] if isinstance(s, dict)]

    async def create_session(self, title: str | None = None) -> Session:
        body = {"title": title} if title else {}
        return Session.from_dict(await self._request("POST", "/session", body))

    async def session_messages(self, session_id: str) -> list[MessageWithParts]:
        data = await self._request("GET", f"/session/{session_id}/message")
        return [MessageWithParts.from_dict(m) for m in data or [] if isinstance(m, dict)]

    async def session_todo(self, session_id: str) -> list[TodoItem]:
        data = await self._request("GET", f"/session/{session_id}/todo")
        return [TodoItem.from_dict(t) for t in data or [] if isinstance(t, dict)]

    async def prompt(
        self,
        session_id: str,
        text: str,
        model: ModelRef | None = None,
    ) -> Any:
        """Send a text prompt. Waits until the server accepts the turn."""
        body: dict[str, Any] = {"parts": [{"type": "text", "text": text}]}
        if model is not None:
            body["model"] = model.to_dict()
        # A turn can run for a long time; only the connect phase is bounded.
        timeout = aiohttp.ClientTimeout(total=None, connect=self._timeout.total)
        return await self._request("POST", f"/session/{session_id}/message", body, timeout)

    # ── permissions ──

    async def list_permissions(self) -> list[PermissionRequest]:
        data = await self._request("GET", "/permission")
        return [PermissionRequest.from_dict(p) for p in data or [] if isinstance(p, dict)]

    async def reply_permission(self, request_id: str, reply: str) -> Any:
        if reply not in PERMISSION_REPLIES:
            raise ValueError(f"reply must be one of {PERMISSION_REPLIES}, got {reply!r}")
        return await self._request(
            "POST", f"/permission/{request_id}/reply", {"reply": reply}
        )

    # ── events ──

    async def subscribe(self) -> EventStreamReader:
        """Open the SSE endpoint and wrap its body in an EventStreamReader.

        Cancelling the reader closes the response.
        """
        url = f"{self.base_url}/event"
        try:
            resp = await self._http().get(
                url,
                params=self._params(),
                headers={"Accept": "text/event-stream"},
                timeout=aiohttp.ClientTimeout(total=None, connect=self._timeout.total),
            )
        except aiohttp.ClientError as exc:
            raise ServerClientError(str(exc) or type(exc).__name__) from exc

        if resp.status >= 400:
            text = await resp.text()
            resp.release()
            raise ServerClientError(
                error_message(text, f"GET /event failed ({resp.status})"),
                status=resp.status,
            )
        logger.info("Subscribed to event stream %s", url)
        return EventStreamReader(resp.content.iter_any(), on_cancel=resp.close)
