from __future__ import annotations

import allure
import pytest

from agent_bridge.config import LanguageModelSettings, Settings, SupervisorSettings

pytestmark = [
    allure.epic("Agent Bridge"),
    allure.feature("Configuration"),
]


def test_from_env_uses_defaults_without_environment() -> None:
    settings = Settings.from_env()

    assert settings.shell.default_shell is None
    assert settings.shell.default_shell_args == ()
    assert settings.shell.shell_probe_timeout_seconds == 15.0
    assert settings.shell.which_probe_timeout_seconds == 10.0
    assert settings.shell.version_probe_timeout_seconds == 5.0
    assert settings.cli.claude_executable == "claude"
    assert settings.cli.codex_package == "@openai/codex"
    assert settings.cli.runner_executable == "npx"
    assert settings.cli.codex_reasoning_effort == "low"
    assert settings.supervisor.default_timeout_seconds == 60.0
    assert settings.supervisor.kill_escalation_seconds == 0.5
    settings.validate()


def test_from_env_reads_overrides(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("AGENT_BRIDGE_DEFAULT_SHELL", "/usr/bin/fish")
    monkeypatch.setenv("AGENT_BRIDGE_DEFAULT_SHELL_ARGS", "--private '--init-command=set x 1'")
    monkeypatch.setenv("AGENT_BRIDGE_CODEX_EXECUTABLE", "/opt/codex/bin/codex")
    monkeypatch.setenv("AGENT_BRIDGE_CODEX_MODEL", "gpt-5-codex")
    monkeypatch.setenv("AGENT_BRIDGE_RUNNER_EXECUTABLE", "bunx")
    monkeypatch.setenv("AGENT_BRIDGE_LM_MODEL", "llama3")
    monkeypatch.setenv("AGENT_BRIDGE_TIMEOUT_SECONDS", "0")

    settings = Settings.from_env()

    assert settings.shell.default_shell == "/usr/bin/fish"
    assert settings.shell.default_shell_args == ("--private", "--init-command=set x 1")
    assert settings.cli.codex_executable == "/opt/codex/bin/codex"
    assert settings.cli.codex_model == "gpt-5-codex"
    assert settings.cli.runner_executable == "bunx"
    assert settings.language_model.default_model == "llama3"
    assert settings.supervisor.default_timeout_seconds == 0.0
    settings.validate()


def test_from_env_rejects_unbalanced_shell_args(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("AGENT_BRIDGE_DEFAULT_SHELL_ARGS", "--init 'unterminated")

    with pytest.raises(ValueError, match="AGENT_BRIDGE_DEFAULT_SHELL_ARGS"):
        Settings.from_env()


def test_validate_rejects_negative_timeout() -> None:
    settings = Settings(supervisor=SupervisorSettings(default_timeout_seconds=-1))

    with pytest.raises(ValueError, match="AGENT_BRIDGE_TIMEOUT_SECONDS"):
        settings.validate()


def test_validate_rejects_non_http_base_url() -> None:
    settings = Settings(language_model=LanguageModelSettings(base_url="ftp://localhost/v1"))

    with pytest.raises(ValueError, match="Invalid AGENT_BRIDGE_LM_BASE_URL"):
        settings.validate()


def test_validate_rejects_empty_executable(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("AGENT_BRIDGE_RUNNER_EXECUTABLE", "  ")

    with pytest.raises(ValueError, match="AGENT_BRIDGE_RUNNER_EXECUTABLE"):
        Settings.from_env().validate()
