from __future__ import annotations

import json

from openwork.shared.models.model_ref import ModelRef
from openwork.shared.models.template import Template
from openwork.shared.services.preferences import UserPreferences


def test_missing_file_gets_builtin_default_written(tmp_path) -> None:
    path = tmp_path / "prefs" / "preferences.json"
    prefs = UserPreferences.load(path)

    assert prefs.default_model == "opencode/gpt-5-nano"
    assert json.loads(path.read_text())["default_model"] == "opencode/gpt-5-nano"


def test_corrupt_file_falls_back_to_defaults(tmp_path) -> None:
    path = tmp_path / "preferences.json"
    path.write_text("{not json")
    assert UserPreferences.load(path).default_model == "opencode/gpt-5-nano"

    path.write_text("[1, 2, 3]")
    assert UserPreferences.load(path).templates == []


def test_invalid_values_are_reset(tmp_path) -> None:
    path = tmp_path / "preferences.json"
    path.write_text(json.dumps({
        "default_model": "no-slash",
        "last_base_url": 42,
        "templates": [{"id": "t1", "title": "A", "prompt": "p"}, "junk"],
        "unknown_key": True,
    }))

    prefs = UserPreferences.load(path)

    assert prefs.default_model == "opencode/gpt-5-nano"
    assert prefs.last_base_url == ""
    assert [t.id for t in prefs.list_templates()] == ["t1"]


def test_changes_persist(tmp_path) -> None:
    path = tmp_path / "preferences.json"
    prefs = UserPreferences.load(path)
    prefs.set_default_model(ModelRef("anthropic", "claude"))
    prefs.remember_connection("http://10.0.0.5:4096", "/srv/app")
    prefs.add_template(Template(title="Older", prompt="one", created_at=1))
    prefs.add_template(Template(title="Newer", prompt="two", created_at=2))

    reloaded = UserPreferences.load(path)

    assert reloaded.default_model_ref == ModelRef("anthropic", "claude")
    assert reloaded.last_base_url == "http://10.0.0.5:4096"
    assert reloaded.client_directory == "/srv/app"
    assert [t.title for t in reloaded.list_templates()] == ["Newer", "Older"]
    newer, older = reloaded.list_templates()
    assert newer.id.startswith("tmpl_2_") and older.id.startswith("tmpl_1_")

    reloaded.remove_template(newer.id)
    assert [t.title for t in UserPreferences.load(path).list_templates()] == ["Older"]


def test_templates_saved_in_the_same_millisecond_stay_distinct(tmp_path) -> None:
    prefs = UserPreferences(path=tmp_path / "preferences.json")
    first = Template(title="A", prompt="one", created_at=1700000000000)
    second = Template(title="B", prompt="two", created_at=1700000000000)
    prefs.add_template(first)
    prefs.add_template(second)

    assert first.id != second.id
    prefs.remove_template(first.id)
    assert [t.title for t in prefs.list_templates()] == ["B"]


def test_template_wire_keys() -> None:
    template = Template(title="Report", prompt="Summarize", created_at=1700000000000)
    data = template.to_dict()

    assert data["createdAt"] == 1700000000000
    assert "created_at" not in data
    assert Template.from_dict(data) == template
