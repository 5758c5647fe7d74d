"""User preferences: persistent settings stored in ~/.openwork/preferences.json.

Holds process-wide choices that outlive a connection: the default model for
new prompts, the last server the user connected to, and saved templates.
Loaded once at startup and written back on every change.
"""
from __future__ import annotations

import json
import logging
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any

from openwork.shared.models.model_ref import (
    DEFAULT_MODEL,
    ModelRef,
    format_model_ref,
    parse_model_ref,
)
from openwork.shared.models.template import Template

logger = logging.getLogger(__name__)

PREFS_PATH = Path.home() / ".openwork" / "preferences.json"


@dataclass
class UserPreferences:
    """User preference settings.

    Attributes:
        default_model: ``provider/model`` used when a session has no model
            of its own. Empty means "not chosen yet".
        last_base_url: Server URL of the last successful connection.
        client_directory: Project directory sent with every request.
        templates: Saved prompt templates, newest first, as plain dicts.
    """

    default_model: str = ""
    last_base_url: str = ""
    client_directory: str = ""
    templates: list[dict[str, Any]] = field(default_factory=list)
    path: Path | None = field(default=None, repr=False, compare=False)

    def validate(self) -> None:
        """Ensure all values have the expected shapes."""
        if not isinstance(self.default_model, str) or parse_model_ref(self.default_model) is None:
            self.default_model = ""
        if not isinstance(self.last_base_url, str):
            self.last_base_url = ""
        if not isinstance(self.client_directory, str):
            self.client_directory = ""
        if isinstance(self.templates, list):
            self.templates = [t for t in self.templates if isinstance(t, dict)]
        else:
            self.templates = []

    @property
    def default_model_ref(self) -> ModelRef | None:
        return parse_model_ref(self.default_model)

    def set_default_model(self, model: ModelRef) -> None:
        self.default_model = format_model_ref(model)
        self.save()

    def remember_connection(self, base_url: str, directory: str | None) -> None:
        self.last_base_url = base_url
        self.client_directory = directory or ""
        self.save()

    def list_templates(self) -> list[Template]:
        return [Template.from_dict(t) for t in self.templates]

    def add_template(self, template: Template) -> None:
        self.templates.insert(0, template.to_dict())
        self.save()

    def remove_template(self, template_id: str) -> None:
        self.templates = [t for t in self.templates if t.get("id") != template_id]
        self.save()

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data.pop("path", None)
        return data

    def save(self, path: Path | None = None) -> None:
        """Persist preferences to disk."""
        target = path or self.path or PREFS_PATH
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_text(json.dumps(self.to_dict(), indent=2))
        except OSError:
            logger.warning("Failed to save preferences to %s", target)

    @classmethod
    def load(cls, path: Path | None = None) -> UserPreferences:
        """Load preferences from disk, returning defaults if missing/corrupt.

        When no valid default model is stored, the built-in default is
        written back so the file always names one.
        """
        target = path or PREFS_PATH
        prefs: UserPreferences | None = None
        try:
            if target.exists():
                data = json.loads(target.read_text())
                if not isinstance(data, dict):
                    raise ValueError("preferences must be a JSON object")
                prefs = cls(**{
                    k: v for k, v in data.items()
                    if k in cls.__dataclass_fields__ and k != "path"
                })
                prefs.validate()
                logger.debug("Loaded preferences from %s", target)
            else:
                logger.debug("Preferences file not found at %s; using defaults", target)
        except (OSError, ValueError, TypeError):
            logger.warning("Failed to load preferences from %s; using defaults", target)

        if prefs is None:
            prefs = cls()
        prefs.path = target
        if not prefs.default_model:
            prefs.default_model = format_model_ref(DEFAULT_MODEL)
            prefs.save()
        return prefs
