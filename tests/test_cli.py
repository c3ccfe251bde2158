"""CLI tests with a patched runtime factory and a scripted model."""

from __future__ import annotations

import json
from pathlib import Path

import pytest
from typer.testing import CliRunner

from conftest import ScriptedModel, final, tool_calls
from toolloop.cli import app
from toolloop.errors import ConfigError, ModelProviderError
from toolloop.runtime import AgentRuntime

runner = CliRunner()


@pytest.fixture
def use_model(monkeypatch, settings):
    def _use(*responses):
        model = ScriptedModel(responses)
        runtime = AgentRuntime(settings, model_client_factory=lambda config: model)
        monkeypatch.setattr("toolloop.cli.create_runtime", lambda: runtime)
        return model

    return _use


class TestChat:
    def test_prints_answer(self, use_model):
        use_model(final("The answer is 42."))
        result = runner.invoke(app, ["chat", "question?"])
        assert result.exit_code == 0, result.output
        assert "The answer is 42." in result.output
        assert "steps=1" in result.output

    def test_json_output(self, use_model):
        use_model(final("ok"))
        result = runner.invoke(app, ["chat", "--json", "hi"])
        assert result.exit_code == 0, result.output
        payload = json.loads(result.output)
        assert payload["ok"] is True
        assert payload["final_text"] == "ok"
        assert "history" not in payload

    def test_format_option(self, use_model):
        model = use_model(final("plain"), final("- bullet"))
        result = runner.invoke(app, ["chat", "--format", "markdown_bullets", "list"])
        assert result.exit_code == 0, result.output
        assert "- bullet" in result.output
        assert len(model.requests) == 2

    @pytest.mark.parametrize(
        "response, exit_code, category",
        [
            (tool_calls(("nope", {})), 2, "validation"),
            (tool_calls(("fetch_url", {"url": "https://evil.test/"})), 3, "policy"),
            (ModelProviderError("provider down"), 4, "upstream"),
            (RuntimeError("boom"), 1, "internal"),
        ],
    )
    def test_failure_exit_codes(self, use_model, response, exit_code, category):
        use_model(response)
        result = runner.invoke(app, ["chat", "go"])
        assert result.exit_code == exit_code
        assert f"[{category}]" in result.output

    def test_config_error_exits_2(self, monkeypatch):
        def broken():
            raise ConfigError("invalid MODEL_PROVIDER `x`")

        monkeypatch.setattr("toolloop.cli.create_runtime", broken)
        result = runner.invoke(app, ["chat", "hi"])
        assert result.exit_code == 2
        assert "MODEL_PROVIDER" in result.output


def test_repl_keeps_history(use_model):
    model = use_model(final("first answer"), final("second answer"))
    result = runner.invoke(app, ["repl"], input="hello\n\nagain\nexit\n")
    assert result.exit_code == 0, result.output
    assert "first answer" in result.output
    assert "second answer" in result.output
    second_history, _ = model.requests[1]
    assert [m.content for m in second_history if m.role.value == "user"] == ["hello", "again"]


def test_repl_survives_failed_turn(use_model):
    model = use_model(ModelProviderError("blip"), final("recovered"))
    result = runner.invoke(app, ["repl"], input="one\ntwo\n")
    assert result.exit_code == 0, result.output
    assert "[upstream] blip" in result.output
    assert "recovered" in result.output
    second_history, _ = model.requests[1]
    assert [m.content for m in second_history if m.role.value == "user"] == ["two"]


def test_tools_command(use_model):
    use_model()
    result = runner.invoke(app, ["tools"])
    assert result.exit_code == 0, result.output
    for name in ("search_notes", "fetch_url", "save_note"):
        assert name in result.output


class TestEvalCommands:
    def _write_suite(self, tmp_path: Path, body: str) -> Path:
        path = tmp_path / "cases.yaml"
        path.write_text(body)
        return path

    def test_validate_ok(self, use_model, tmp_path):
        use_model()
        path = self._write_suite(tmp_path, "cases:\n  - id: a\n    prompt: hi\n")
        result = runner.invoke(app, ["eval", "validate", "--cases", str(path)])
        assert result.exit_code == 0, result.output
        assert "1 cases" in result.output

    def test_validate_rejects_unknown_tool(self, use_model, tmp_path):
        use_model()
        path = self._write_suite(
            tmp_path, "cases:\n  - id: a\n    prompt: hi\n    required_tools: [rm_rf]\n"
        )
        result = runner.invoke(app, ["eval", "validate", "--cases", str(path)])
        assert result.exit_code == 2
        assert "rm_rf" in result.output

    def test_run_passes(self, use_model, tmp_path):
        use_model(final("hello world"))
        path = self._write_suite(
            tmp_path, "cases:\n  - id: greet\n    prompt: say hello\n    answer_must_contain: [hello]\n"
        )
        result = runner.invoke(app, ["eval", "run", "--cases", str(path)])
        assert result.exit_code == 0, result.output
        assert "100.0%" in result.output

    def test_run_below_target_fails(self, use_model, tmp_path):
        use_model(final("goodbye"))
        path = self._write_suite(
            tmp_path, "cases:\n  - id: greet\n    prompt: say hello\n    answer_must_contain: [hello]\n"
        )
        result = runner.invoke(app, ["eval", "run", "--cases", str(path)])
        assert result.exit_code == 1
        assert "below target" in result.output
