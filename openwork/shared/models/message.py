"""Message and part models."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from openwork.shared.models.model_ref import ModelRef


class MessageRole(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"


@dataclass(frozen=True)
class Message:
    id: str
    session_id: str
    role: MessageRole
    # Only user messages carry the model they were sent with.
    model: ModelRef | None = None
    raw: dict[str, Any] = field(default_factory=dict, hash=False, repr=False)

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> Message:
        role = MessageRole.USER if payload.get("role") == "user" else MessageRole.ASSISTANT
        model = ModelRef.from_dict(payload.get("model")) if role is MessageRole.USER else None
        return cls(
            id=str(payload["id"]),
            session_id=str(payload.get("sessionID") or ""),
            role=role,
            model=model,
            raw=dict(payload),
        )

    def to_dict(self) -> dict[str, Any]:
        return dict(self.raw)


@dataclass(frozen=True)
class Part:
    """A renderable fragment of a message: text, reasoning, tool call, step marker."""

    id: str
    message_id: str
    type: str
    session_id: str | None = None
    text: str = ""
    # Type-specific payload such as a tool call state.
    state: dict[str, Any] = field(default_factory=dict, hash=False)
    raw: dict[str, Any] = field(default_factory=dict, hash=False, repr=False)

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> Part:
        state = payload.get("state")
        return cls(
            id=str(payload["id"]),
            message_id=str(payload["messageID"]),
            type=str(payload.get("type") or ""),
            session_id=payload.get("sessionID") if isinstance(payload.get("sessionID"), str) else None,
            text=str(payload.get("text") or ""),
            state=dict(state) if isinstance(state, dict) else {},
            raw=dict(payload),
        )

    def to_dict(self) -> dict[str, Any]:
        return dict(self.raw)


@dataclass(frozen=True)
class MessageWithParts:
    info: Message
    parts: tuple[Part, ...] = ()

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> MessageWithParts:
        parts = payload.get("parts") or []
        return cls(
            info=Message.from_dict(payload["info"]),
            parts=tuple(Part.from_dict(p) for p in parts if isinstance(p, dict)),
        )

    def part(self, part_id: str) -> Part | None:
        return next((p for p in self.parts if p.id == part_id), None)
