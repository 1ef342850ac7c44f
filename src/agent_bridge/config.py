"""Runtime configuration for executable resolution and provider execution."""

from __future__ import annotations

import os
import shlex
from dataclasses import dataclass, field
from urllib.parse import urlparse


@dataclass(slots=True)
class ShellSettings:
    """Host shell used to inherit the user's PATH customizations."""

    default_shell: str | None = None
    default_shell_args: tuple[str, ...] = ()
    shell_probe_timeout_seconds: float = 15.0
    which_probe_timeout_seconds: float = 10.0
    version_probe_timeout_seconds: float = 5.0


@dataclass(slots=True)
class CliSettings:
    """External CLI agents and their zero-install fallback."""

    claude_executable: str = "claude"
    claude_package: str = "@anthropic-ai/claude-code"
    claude_model: str = "sonnet"
    claude_permission_mode: str = "dontAsk"
    codex_executable: str = "codex"
    codex_package: str = "@openai/codex"
    codex_model: str = ""
    codex_reasoning_effort: str = "low"
    runner_executable: str = "npx"


@dataclass(slots=True)
class LanguageModelSettings:
    """OpenAI-compatible endpoint used by the in-process backend."""

    base_url: str = "http://localhost:11434/v1"
    api_key: str | None = None
    default_model: str | None = None
    request_timeout_seconds: float = 60.0


@dataclass(slots=True)
class SupervisorSettings:
    """Process supervision knobs."""

    default_timeout_seconds: float = 60.0
    kill_escalation_seconds: float = 0.5


@dataclass(slots=True)
class Settings:
    """Application settings grouped by concern."""

    shell: ShellSettings = field(default_factory=ShellSettings)
    cli: CliSettings = field(default_factory=CliSettings)
    language_model: LanguageModelSettings = field(default_factory=LanguageModelSettings)
    supervisor: SupervisorSettings = field(default_factory=SupervisorSettings)

    @classmethod
    def from_env(cls) -> Settings:
        """Load settings from environment with defaults for local use."""

        return cls(
            shell=ShellSettings(
                default_shell=os.getenv("AGENT_BRIDGE_DEFAULT_SHELL", "").strip() or None,
                default_shell_args=_env_args("AGENT_BRIDGE_DEFAULT_SHELL_ARGS"),
                shell_probe_timeout_seconds=float(
                    os.getenv("AGENT_BRIDGE_SHELL_PROBE_TIMEOUT_SECONDS", "15"),
                ),
                which_probe_timeout_seconds=float(
                    os.getenv("AGENT_BRIDGE_WHICH_PROBE_TIMEOUT_SECONDS", "10"),
                ),
                version_probe_timeout_seconds=float(
                    os.getenv("AGENT_BRIDGE_VERSION_PROBE_TIMEOUT_SECONDS", "5"),
                ),
            ),
            cli=CliSettings(
                claude_executable=os.getenv("AGENT_BRIDGE_CLAUDE_EXECUTABLE", "claude"),
                claude_package=os.getenv(
                    "AGENT_BRIDGE_CLAUDE_PACKAGE",
                    "@anthropic-ai/claude-code",
                ),
                claude_model=os.getenv("AGENT_BRIDGE_CLAUDE_MODEL", "sonnet"),
                claude_permission_mode=os.getenv(
                    "AGENT_BRIDGE_CLAUDE_PERMISSION_MODE",
                    "dontAsk",
                ),
                codex_executable=os.getenv("AGENT_BRIDGE_CODEX_EXECUTABLE", "codex"),
                codex_package=os.getenv("AGENT_BRIDGE_CODEX_PACKAGE", "@openai/codex"),
                codex_model=os.getenv("AGENT_BRIDGE_CODEX_MODEL", ""),
                codex_reasoning_effort=os.getenv("AGENT_BRIDGE_CODEX_REASONING_EFFORT", "low"),
                runner_executable=os.getenv("AGENT_BRIDGE_RUNNER_EXECUTABLE", "npx"),
            ),
            language_model=LanguageModelSettings(
                base_url=os.getenv("AGENT_BRIDGE_LM_BASE_URL", "http://localhost:11434/v1"),
                api_key=os.getenv("AGENT_BRIDGE_LM_API_KEY") or None,
                default_model=os.getenv("AGENT_BRIDGE_LM_MODEL") or None,
                request_timeout_seconds=float(os.getenv("AGENT_BRIDGE_LM_TIMEOUT_SECONDS", "60")),
            ),
            supervisor=SupervisorSettings(
                default_timeout_seconds=float(os.getenv("AGENT_BRIDGE_TIMEOUT_SECONDS", "60")),
                kill_escalation_seconds=float(
                    os.getenv("AGENT_BRIDGE_KILL_ESCALATION_SECONDS", "0.5"),
                ),
            ),
        )

    def validate(self) -> None:
        """Raise configuration error for values the runtime cannot work with."""

        if self.supervisor.default_timeout_seconds < 0:
            raise ValueError("AGENT_BRIDGE_TIMEOUT_SECONDS must be >= 0.")
        if self.supervisor.kill_escalation_seconds <= 0:
            raise ValueError("AGENT_BRIDGE_KILL_ESCALATION_SECONDS must be > 0.")
        for name, value in (
            ("AGENT_BRIDGE_SHELL_PROBE_TIMEOUT_SECONDS", self.shell.shell_probe_timeout_seconds),
            ("AGENT_BRIDGE_WHICH_PROBE_TIMEOUT_SECONDS", self.shell.which_probe_timeout_seconds),
            (
                "AGENT_BRIDGE_VERSION_PROBE_TIMEOUT_SECONDS",
                self.shell.version_probe_timeout_seconds,
            ),
        ):
            if value <= 0:
                raise ValueError(f"{name} must be > 0.")
        for name, value in (
            ("AGENT_BRIDGE_CLAUDE_EXECUTABLE", self.cli.claude_executable),
            ("AGENT_BRIDGE_CODEX_EXECUTABLE", self.cli.codex_executable),
            ("AGENT_BRIDGE_RUNNER_EXECUTABLE", self.cli.runner_executable),
        ):
            if not value.strip():
                raise ValueError(f"{name} must not be empty.")
        _validate_base_url(self.language_model.base_url)
        if self.language_model.request_timeout_seconds <= 0:
            raise ValueError("AGENT_BRIDGE_LM_TIMEOUT_SECONDS must be > 0.")


def _env_args(name: str) -> tuple[str, ...]:
    raw = os.getenv(name, "").strip()
    if not raw:
        return ()
    try:
        return tuple(shlex.split(raw))
    except ValueError as error:
        raise ValueError(f"Invalid shell arguments in {name}: {raw!r}") from error


def _validate_base_url(value: str) -> None:
    parsed = urlparse(value)
    if parsed.scheme not in {"http", "https"} or not parsed.netloc:
        raise ValueError(
            "Invalid AGENT_BRIDGE_LM_BASE_URL: "
            f"{value!r}. Expected an absolute URL with http:// or https:// scheme.",
        )
