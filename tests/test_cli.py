from __future__ import annotations

import json
from pathlib import Path

import pytest
from typer.testing import CliRunner

from jarvis_voice import cli as cli_module
from jarvis_voice.core.config import get_config
from jarvis_voice.runtime.pomodoro import PomodoroPhase, PomodoroStore


runner = CliRunner()


@pytest.fixture()
def data_dir(tmp_path: Path, monkeypatch):
    monkeypatch.setenv("JARVIS_DATA_DIR", str(tmp_path))
    monkeypatch.setenv("JARVIS_SERVER_URL", "http://127.0.0.1:9")
    get_config.cache_clear()
    yield tmp_path
    get_config.cache_clear()


def test_cli_help():
    result = runner.invoke(cli_module.cli, ["--help"])
    assert result.exit_code == 0
    assert "run" in result.output and "settings" in result.output and "pomodoro" in result.output


def test_settings_set_and_show(data_dir: Path):
    assert runner.invoke(cli_module.cli, ["settings", "set", "tts_mode", "system"]).exit_code == 0
    assert runner.invoke(cli_module.cli, ["settings", "set", "speech_rate", "900"]).exit_code == 0
    assert runner.invoke(cli_module.cli, ["settings", "set", "wake_words", "computer, hey computer"]).exit_code == 0
    assert runner.invoke(cli_module.cli, ["settings", "set", "continuous_listening", "off"]).exit_code == 0

    result = runner.invoke(cli_module.cli, ["settings", "show"])
    assert result.exit_code == 0
    payload = json.loads(result.output)
    assert payload["voice"]["tts_mode"] == "local"
    assert payload["voice"]["speech_rate"] == 300
    assert payload["listening"]["wake_words"] == ["computer", "hey computer"]
    assert payload["listening"]["continuous_listening"] is False
    assert (data_dir / "settings.json").exists()


def test_settings_set_unknown_key(data_dir: Path):
    result = runner.invoke(cli_module.cli, ["settings", "set", "volume", "11"])
    assert result.exit_code == 1
    assert "unknown setting" in result.output


def test_settings_set_bad_boolean(data_dir: Path):
    result = runner.invoke(cli_module.cli, ["settings", "set", "wake_word_enabled", "maybe"])
    assert result.exit_code != 0


def test_pomodoro_status_and_reset(data_dir: Path):
    result = runner.invoke(cli_module.cli, ["pomodoro", "status"])
    assert json.loads(result.output) == {"phase": "idle"}

    PomodoroStore(data_dir / "pomodoro.json").save(PomodoroPhase.WORK, 600, 1500)
    result = runner.invoke(cli_module.cli, ["pomodoro", "status"])
    assert json.loads(result.output)["timeLeft"] == 600

    result = runner.invoke(cli_module.cli, ["pomodoro", "reset"])
    assert result.exit_code == 0
    assert not (data_dir / "pomodoro.json").exists()


def test_ask_reports_unreachable_server(data_dir: Path):
    result = runner.invoke(cli_module.cli, ["ask", "hello"])
    assert result.exit_code == 1
    assert result.output.startswith("error:")


def test_voices_without_server(data_dir: Path):
    result = runner.invoke(cli_module.cli, ["voices"])
    assert result.exit_code == 1
    assert "no voices available" in result.output


def test_config_show(data_dir: Path):
    result = runner.invoke(cli_module.cli, ["config", "show"])
    assert result.exit_code == 0
    assert json.loads(result.output)["server_url"] == "http://127.0.0.1:9"
