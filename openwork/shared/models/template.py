"""Saved prompt templates that can be replayed as a fresh session."""

from __future__ import annotations

import time
import uuid
from dataclasses import asdict, dataclass, field
from typing import Any


def _now_ms() -> int:
    return int(time.time() * 1000)


@dataclass
class Template:
    title: str
    prompt: str
    description: str = ""
    created_at: int = field(default_factory=_now_ms)
    id: str = ""

    def __post_init__(self) -> None:
        if not self.id:
            self.id = f"tmpl_{self.created_at}_{uuid.uuid4().hex[:8]}"

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> Template:
        return cls(
            id=str(payload.get("id") or ""),
            title=str(payload.get("title") or ""),
            prompt=str(payload.get("prompt") or ""),
            description=str(payload.get("description") or ""),
            created_at=int(payload.get("createdAt") or _now_ms()),
        )

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["createdAt"] = data.pop("created_at")
        return data
