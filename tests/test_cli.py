"""Tests for the command line interface."""

import json

import pytest
import yaml
from click.testing import CliRunner

from banana_batch.cli import main, parse_field_value


USER = "ana@example.com"


@pytest.fixture
def workspace(tmp_path, monkeypatch):
    for name in ("GEMINI_API_KEY", "GOOGLE_API_KEY", "BANANA_BATCH_USER", "BANANA_BATCH_CONFIG"):
        monkeypatch.delenv(name, raising=False)
    return tmp_path


@pytest.fixture
def invoke(workspace):
    runner = CliRunner()
    config_file = workspace / "config.yaml"

    def _invoke(*args):
        return runner.invoke(main, ["--config-file", str(config_file), *args])

    return _invoke


@pytest.fixture
def initialized(invoke, workspace):
    result = invoke("init", "--user", USER, "--data-dir", str(workspace / "data"))
    assert result.exit_code == 0, result.output
    return workspace


def user_document(workspace):
    with open(workspace / "data" / "documents" / "users" / f"{USER}.json") as f:
        return json.load(f)


class TestParseFieldValue:
    def test_bool_fields(self):
        assert parse_field_value("enabled", "yes") is True
        assert parse_field_value("skip_surrounding_text", "off") is False

    def test_text_fields_are_verbatim(self):
        assert parse_field_value("text", "Yes") == "Yes"


class TestInit:
    def test_writes_config_and_access_list(self, initialized):
        with open(initialized / "config.yaml") as f:
            config = yaml.safe_load(f)
        assert config["storage"]["user_id"] == USER
        with open(initialized / "data" / "documents" / "access.json") as f:
            assert json.load(f) == {"allowedEmails": [USER]}

    def test_second_init_keeps_config(self, initialized, invoke):
        result = invoke("init", "--user", USER)
        assert result.exit_code == 0
        assert "already exists" in result.output


class TestConfigCommands:
    def test_set_string_value(self, initialized, invoke):
        result = invoke("config", "set", "defaults.aspect_ratio", "16:9")
        assert result.exit_code == 0, result.output
        with open(initialized / "config.yaml") as f:
            assert yaml.safe_load(f)["defaults"]["aspect_ratio"] == "16:9"

    def test_set_number_value(self, initialized, invoke):
        assert invoke("config", "set", "defaults.temperature", "0.5").exit_code == 0
        with open(initialized / "config.yaml") as f:
            assert yaml.safe_load(f)["defaults"]["temperature"] == 0.5

    def test_set_invalid_value_is_rejected(self, initialized, invoke):
        result = invoke("config", "set", "defaults.temperature", "5")
        assert result.exit_code == 1
        with open(initialized / "config.yaml") as f:
            assert yaml.safe_load(f)["defaults"]["temperature"] == 1.0

    def test_set_unknown_key(self, initialized, invoke):
        assert invoke("config", "set", "defaults.colour", "red").exit_code == 1

    def test_validate_without_key(self, initialized, invoke):
        result = invoke("config", "validate")
        assert result.exit_code == 1
        assert "API key" in result.output

    def test_validate_with_key(self, initialized, invoke, monkeypatch):
        monkeypatch.setenv("GEMINI_API_KEY", "secret-key")
        result = invoke("config", "validate")
        assert result.exit_code == 0
        assert "Configuration OK" in result.output

    def test_show_masks_key(self, initialized, invoke, monkeypatch):
        monkeypatch.setenv("GEMINI_API_KEY", "secret-key")
        result = invoke("config", "show")
        assert result.exit_code == 0
        assert "secret-key" not in result.output
        assert "secr..." in result.output


class TestPromptCommands:
    def test_add_is_saved_to_user_document(self, initialized, invoke):
        result = invoke("prompts", "add", "--name", "wide", "--text", "wide shot", "--enable")
        assert result.exit_code == 0, result.output
        prompts = user_document(initialized)["prompts"]
        assert prompts == [{
            "name": "wide",
            "prompt": "wide shot",
            "enabled": True,
            "skip_beforeafter_prompt": False,
        }]

    def test_edit_move_remove(self, initialized, invoke):
        invoke("prompts", "add", "--name", "wide")
        invoke("prompts", "add", "--name", "close")

        assert invoke("prompts", "edit", "2", "enabled", "true").exit_code == 0
        assert invoke("prompts", "move", "2", "1").exit_code == 0
        names = [p["name"] for p in user_document(initialized)["prompts"]]
        assert names == ["close", "wide"]
        assert user_document(initialized)["prompts"][0]["enabled"] is True

        assert invoke("prompts", "remove", "1").exit_code == 0
        assert [p["name"] for p in user_document(initialized)["prompts"]] == ["wide"]

    def test_bad_index(self, initialized, invoke):
        result = invoke("prompts", "remove", "3")
        assert result.exit_code == 1
        assert "out of range" in result.output

    def test_bad_bool_value(self, initialized, invoke):
        assert invoke("prompts", "add", "--name", "wide").exit_code == 0
        assert invoke("prompts", "edit", "1", "enabled", "maybe").exit_code == 2

    def test_wrap(self, initialized, invoke):
        assert invoke("prompts", "wrap", "--before", "Edit:").exit_code == 0
        document = user_document(initialized)
        assert document["prompt_before"] == "Edit:"
        assert document["prompt_after"] == ""

    def test_list_empty(self, initialized, invoke):
        result = invoke("prompts", "list")
        assert result.exit_code == 0
        assert "No prompts yet" in result.output

    def test_requires_user(self, invoke):
        result = invoke("prompts", "list")
        assert result.exit_code == 1
        assert "No user configured" in result.output

    def test_access_denied(self, initialized, invoke, monkeypatch):
        monkeypatch.setenv("BANANA_BATCH_USER", "intruder@example.com")
        result = invoke("prompts", "list")
        assert result.exit_code == 1
        assert "Access denied" in result.output


class TestRunCommand:
    @pytest.fixture
    def image(self, initialized):
        path = initialized / "face.png"
        path.write_bytes(b"\x89PNG\r\n\x1a\n")
        return path

    def test_dry_run_saves_images(self, initialized, invoke, image):
        invoke("prompts", "add", "--name", "wide", "--text", "wide shot", "--enable")
        invoke("prompts", "add", "--name", "close", "--text", "close up", "--enable")
        out_dir = initialized / "out"

        result = invoke("run", str(image), "--dry-run", "--out", str(out_dir))

        assert result.exit_code == 0, result.output
        assert sorted(p.name for p in out_dir.iterdir()) == ["face_close.png", "face_wide.png"]
        assert user_document(initialized)["historic_images"] == 2

    def test_collapsed_output_is_remembered(self, initialized, invoke, image):
        invoke("prompts", "add", "--name", "wide", "--enable")
        out_dir = str(initialized / "out")

        result = invoke("run", str(image), "--dry-run", "--collapsed", "--out", out_dir)
        assert result.exit_code == 0, result.output
        assert "Queued 1 task(s)" in result.output

        with open(initialized / "data" / "local_store.json") as f:
            assert json.load(f)["banana_batch_terminal_collapsed"] == "true"

    def test_no_enabled_prompts(self, initialized, invoke, image):
        invoke("prompts", "add", "--name", "wide")
        result = invoke("run", str(image), "--dry-run")
        assert result.exit_code == 1
        assert "No prompts selected." in result.output

    def test_missing_key(self, initialized, invoke, image):
        invoke("prompts", "add", "--name", "wide", "--enable")
        result = invoke("run", str(image))
        assert result.exit_code == 1
        assert "API Key not configured." in result.output

    def test_usage_after_run(self, initialized, invoke, image):
        invoke("prompts", "add", "--name", "wide", "--enable")
        invoke("run", str(image), "--dry-run", "--out", str(initialized / "out"))

        result = invoke("usage")
        assert result.exit_code == 0
        assert "Lifetime images" in result.output

        cleared = invoke("usage", "--clear")
        assert cleared.exit_code == 0
        assert "Session usage cleared." in cleared.output
