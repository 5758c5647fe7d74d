"""Model references: the (provider, model) pair that executes a turn."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

ZEN_PROVIDER_ID = "opencode"
ZEN_PROVIDER_LABEL = "Zen"

# Known Zen model ids and their display labels.
ZEN_MODEL_LABELS: dict[str, str] = {
    "gpt-5-nano": "Zen · GPT-5 Nano",
    "big-pickle": "Zen · Big Pickle",
    "grok-code": "Zen · Grok Code Fast",
    "glm-4.7-free": "Zen · GLM-4.7",
}


@dataclass(frozen=True)
class ModelRef:
    provider_id: str
    model_id: str

    @classmethod
    def from_dict(cls, payload: Any) -> ModelRef | None:
        """Build from ``{"providerID", "modelID"}``; None when either is missing."""
        if not isinstance(payload, dict):
            return None
        provider_id = payload.get("providerID")
        model_id = payload.get("modelID")
        if not isinstance(provider_id, str) or not isinstance(model_id, str):
            return None
        return cls(provider_id=provider_id, model_id=model_id)

    def to_dict(self) -> dict[str, str]:
        return {"providerID": self.provider_id, "modelID": self.model_id}

    def __str__(self) -> str:
        return format_model_ref(self)


DEFAULT_MODEL = ModelRef(provider_id=ZEN_PROVIDER_ID, model_id="gpt-5-nano")


def format_model_ref(model: ModelRef) -> str:
    return f"{model.provider_id}/{model.model_id}"


def parse_model_ref(raw: str | None) -> ModelRef | None:
    """Parse ``provider/model``. Model ids may contain further slashes."""
    if not raw:
        return None
    trimmed = raw.strip()
    if not trimmed:
        return None
    provider_id, sep, model_id = trimmed.partition("/")
    if not provider_id or not sep or not model_id:
        return None
    return ModelRef(provider_id=provider_id, model_id=model_id)


def format_model_label(model: ModelRef) -> str:
    """Human-friendly label used by pickers and status lines."""
    if model.provider_id == ZEN_PROVIDER_ID:
        label = ZEN_MODEL_LABELS.get(model.model_id)
        return label or f"{ZEN_PROVIDER_LABEL} · {model.model_id}"
    return f"{model.provider_id} · {model.model_id}"
