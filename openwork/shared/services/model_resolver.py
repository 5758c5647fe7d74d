"""Per-session model selection.

Resolution order for a session's next prompt:
1. An explicit override picked for that session (cleared once a prompt is sent).
2. The model last known to be used for that session.
3. The most recent user message in the session's transcript that names a model.
4. The user's default model (falls back to the built-in default).
"""
from __future__ import annotations

import logging
from collections.abc import Iterable

from openwork.shared.models.message import MessageWithParts
from openwork.shared.models.model_ref import DEFAULT_MODEL, ModelRef
from openwork.shared.services.preferences import UserPreferences
from openwork.shared.services.state_store import last_user_model

logger = logging.getLogger(__name__)


class ModelResolver:
    """Tracks overrides and last-known models per session id."""

    def __init__(self, preferences: UserPreferences | None = None) -> None:
        self._preferences = preferences
        self._overrides: dict[str, ModelRef] = {}
        self._last_known: dict[str, ModelRef] = {}

    @property
    def default_model(self) -> ModelRef:
        if self._preferences is not None:
            model = self._preferences.default_model_ref
            if model is not None:
                return model
        return DEFAULT_MODEL

    def resolve(
        self,
        session_id: str | None,
        messages: Iterable[MessageWithParts] = (),
    ) -> ModelRef:
        if not session_id:
            return self.default_model
        override = self._overrides.get(session_id)
        if override is not None:
            return override
        known = self._last_known.get(session_id)
        if known is not None:
            return known
        from_history = last_user_model(messages)
        if from_history is not None:
            return from_history
        return self.default_model

    def set_override(self, session_id: str, model: ModelRef) -> None:
        logger.debug("Model override for %s: %s", session_id, model)
        self._overrides[session_id] = model

    def override_for(self, session_id: str) -> ModelRef | None:
        return self._overrides.get(session_id)

    def last_known(self, session_id: str) -> ModelRef | None:
        return self._last_known.get(session_id)

    def remember(self, session_id: str, model: ModelRef) -> None:
        """Record *model* as used by the session without touching an override."""
        self._last_known[session_id] = model

    def infer_from_history(
        self, session_id: str, messages: Iterable[MessageWithParts]
    ) -> ModelRef | None:
        model = last_user_model(messages)
        if model is not None:
            self._last_known[session_id] = model
        return model

    def record_sent(self, session_id: str, model: ModelRef) -> None:
        """A prompt went out with *model*: it becomes last-known, override is spent."""
        self._last_known[session_id] = model
        self._overrides.pop(session_id, None)

    def forget(self, session_id: str) -> None:
        self._overrides.pop(session_id, None)
        self._last_known.pop(session_id, None)

    def clear(self) -> None:
        self._overrides.clear()
        self._last_known.clear()
