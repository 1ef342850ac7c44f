"""Shared test fixtures."""

from __future__ import annotations

import os
import shlex
import stat
import sys
import threading
import time
from collections.abc import Callable, Generator
from pathlib import Path

import pytest

from agent_bridge.config import CliSettings, Settings, ShellSettings, SupervisorSettings
from agent_bridge.orchestrator.backend import echo_agent

MISSING_RUNNER = "agent-bridge-missing-runner"
ECHO_AGENT_SCRIPT = Path(echo_agent.__file__)


def write_fake_agent(
    bin_dir: Path,
    name: str,
    *,
    dialect: str = "codex",
    extra_args: tuple[str, ...] = (),
) -> Path:
    """Write an executable launcher that runs the echo agent with fixed flags."""

    flags = " ".join(shlex.quote(arg) for arg in ("--dialect", dialect, *extra_args))
    if os.name == "nt":
        launcher = bin_dir / f"{name}.cmd"
        launcher.write_text(
            f'@echo off\r\n"{sys.executable}" "{ECHO_AGENT_SCRIPT}" {flags} %*\r\n',
            "utf-8",
        )
        return launcher
    launcher = bin_dir / name
    launcher.write_text(
        f'#!/usr/bin/env sh\nexec "{sys.executable}" "{ECHO_AGENT_SCRIPT}" {flags} "$@"\n',
        "utf-8",
    )
    launcher.chmod(launcher.stat().st_mode | stat.S_IXUSR)
    return launcher


def bridge_settings(
    *,
    claude: str = "fake-claude",
    codex: str = "fake-codex",
    runner: str = MISSING_RUNNER,
    escalation_seconds: float = 0.5,
) -> Settings:
    return Settings(
        shell=ShellSettings(
            shell_probe_timeout_seconds=5.0,
            which_probe_timeout_seconds=5.0,
            version_probe_timeout_seconds=5.0,
        ),
        cli=CliSettings(
            claude_executable=claude,
            codex_executable=codex,
            runner_executable=runner,
        ),
        supervisor=SupervisorSettings(kill_escalation_seconds=escalation_seconds),
    )


def wait_until(predicate: Callable[[], bool], *, timeout_seconds: float = 5.0) -> bool:
    deadline = time.monotonic() + timeout_seconds
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


class NoShellConfig:
    """Shell configuration collaborator with nothing configured."""

    def default_shell(self) -> None:
        return None


class FakeLanguageModelHost:
    """Scripted in-process host: fixed model list and fixed deltas."""

    def __init__(
        self,
        *,
        models: list[str] | None = None,
        deltas: list[str] | None = None,
        wait_for_cancel: bool = False,
    ) -> None:
        self.models = ["fake-model"] if models is None else models
        self.deltas = deltas or []
        self.wait_for_cancel = wait_for_cancel
        self.prompts: list[str] = []

    def list_models(self) -> list[str]:
        return list(self.models)

    def stream_chat(
        self,
        *,
        model: str,
        prompt: str,
        cancel_event: threading.Event,
    ) -> Generator[str, None, None]:
        self.prompts.append(prompt)
        for delta in self.deltas:
            if cancel_event.is_set():
                return
            yield delta
        if self.wait_for_cancel:
            cancel_event.wait(timeout=5.0)


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in list(os.environ):
        if name.startswith("AGENT_BRIDGE_"):
            monkeypatch.delenv(name, raising=False)


@pytest.fixture()
def fake_bin(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Directory prepended to PATH for fake agent launchers."""

    bin_dir = tmp_path / "bin"
    bin_dir.mkdir(parents=True, exist_ok=True)
    monkeypatch.setenv("PATH", f"{bin_dir}{os.pathsep}{os.environ.get('PATH', '')}")
    return bin_dir
