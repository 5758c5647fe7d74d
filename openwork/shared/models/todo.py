"""Todo/plan items. Always handled as a full per-session snapshot."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

TODO_STATUSES = ("pending", "in_progress", "completed", "cancelled")


@dataclass(frozen=True)
class TodoItem:
    id: str
    content: str
    status: str = "pending"  # one of TODO_STATUSES
    priority: str = ""

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> TodoItem:
        status = str(payload.get("status") or "pending")
        if status not in TODO_STATUSES:
            status = "pending"
        return cls(
            id=str(payload.get("id") or ""),
            content=str(payload.get("content") or ""),
            status=status,
            priority=str(payload.get("priority") or ""),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "content": self.content,
            "status": self.status,
            "priority": self.priority,
        }


def todo_progress(todos: tuple[TodoItem, ...]) -> tuple[int, int]:
    """Return (completed, total) for a progress counter."""
    done = sum(1 for t in todos if t.status == "completed")
    return done, len(todos)
