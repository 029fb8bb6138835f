from __future__ import annotations

import json
from pathlib import Path

import pytest
from typer.testing import CliRunner

from agentcore import cli as cli_module

runner = CliRunner()


@pytest.fixture(autouse=True)
def _isolated_cli(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("AGENT_CORE_LOAD_ENTRYPOINT_PLUGINS", "false")
    monkeypatch.setattr(cli_module, "configure_logging", lambda **_kwargs: None)


def test_run_drives_scripted_session(tmp_path: Path) -> None:
    responses = tmp_path / "responses.jsonl"
    responses.write_text(
        "\n".join(
            [
                json.dumps({"kind": "tool-call", "tool": "search", "input": {"q": "tea"}}),
                "",
                json.dumps({"kind": "final-answer", "message": "green tea"}),
            ]
        ),
        encoding="utf-8",
    )

    result = runner.invoke(cli_module.app, ["run", "which tea?", "--tool", "search", "--responses", str(responses)])

    assert result.exit_code == 0, result.output
    assert "tool" in result.output
    assert "raw-model-response" in result.output
    assert "final_answer" in result.output
    assert "session still waiting" not in result.output


def test_run_without_script_leaves_session_waiting() -> None:
    result = runner.invoke(cli_module.app, ["run", '{"question": "hi"}'])

    assert result.exit_code == 0, result.output
    assert "model" in result.output
    assert "session still waiting: trace-" in result.output


def test_hooks_command_lists_builtin_plugins() -> None:
    result = runner.invoke(cli_module.app, ["hooks"])

    assert result.exit_code == 0
    assert "provide_stop_condition: builtin:stop-conditions" in result.output


def test_settings_command_prints_effective_values(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("AGENT_CORE_MAX_ITERATIONS", "8")

    result = runner.invoke(cli_module.app, ["settings"])

    assert result.exit_code == 0
    assert "max_iterations=8" in result.output
