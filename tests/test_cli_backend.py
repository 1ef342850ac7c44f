from __future__ import annotations

import json
from pathlib import Path

import allure
from conftest import NoShellConfig, write_fake_agent

from agent_bridge.config import CliSettings, ShellSettings
from agent_bridge.orchestrator.backend.cli_backend import CliAgentBackend
from agent_bridge.orchestrator.backend.profiles import (
    build_claude_code_args,
    build_codex_args,
    claude_code_spec,
    codex_spec,
)
from agent_bridge.orchestrator.launch import LaunchPlanner
from agent_bridge.orchestrator.models import ErrorCode, ExecutionRequest, Provider
from agent_bridge.orchestrator.resolver import ExecutableResolver, PathCache
from agent_bridge.orchestrator.supervisor import ProcessRegistry, ProcessSupervisor

pytestmark = [
    allure.epic("Agent Bridge"),
    allure.feature("CLI Agent Backends"),
]


def _backend(settings: CliSettings, *, claude: bool = False) -> CliAgentBackend:
    resolver = ExecutableResolver(
        settings=ShellSettings(),
        cache=PathCache(),
        shell_config=NoShellConfig(),
        fallback_shells=(),
    )
    return CliAgentBackend(
        spec=claude_code_spec(settings) if claude else codex_spec(settings),
        planner=LaunchPlanner(resolver=resolver, runner=settings.runner_executable),
        supervisor=ProcessSupervisor(registry=ProcessRegistry()),
        settings=settings,
    )


def test_codex_args_read_prompt_from_stdin_with_defaults() -> None:
    args = build_codex_args(ExecutionRequest(prompt="hi"), CliSettings(), False)

    assert args == [
        "exec",
        "--json",
        "--skip-git-repo-check",
        "-c",
        'model_reasoning_effort="low"',
        "--full-auto",
        "-",
    ]


def test_codex_args_place_resume_before_flags_and_honor_selectors() -> None:
    request = ExecutionRequest(
        prompt="hi",
        provider=Provider.CODEX,
        codex_model="gpt-5-codex",
        codex_reasoning_effort="high",
        resume_session_id="thread-1",
    )

    args = build_codex_args(request, CliSettings(), True)

    assert args[:3] == ["exec", "resume", "thread-1"]
    assert args[args.index("-m") + 1] == "gpt-5-codex"
    assert 'model_reasoning_effort="high"' in args
    assert args[-2:] == ["--full-auto", "-"]


def test_claude_args_switch_output_format_with_streaming() -> None:
    request = ExecutionRequest(prompt="hi", allowed_tools=("Read", "Grep"), model="opus")

    streaming = build_claude_code_args(request, CliSettings(), True)
    blocking = build_claude_code_args(request, CliSettings(), False)

    assert streaming[:5] == ["-p", "--output-format", "stream-json", "--verbose", "--model"]
    assert blocking[:3] == ["-p", "--output-format", "json"]
    assert "--verbose" not in blocking
    assert blocking[blocking.index("--model") + 1] == "opus"
    assert blocking[blocking.index("--permission-mode") + 1] == "dontAsk"
    assert blocking[blocking.index("--allowedTools") + 1] == "Read,Grep"
    assert "--resume" not in blocking


def test_claude_args_resume_session() -> None:
    request = ExecutionRequest(prompt="hi", resume_session_id="session-3")

    args = build_claude_code_args(request, CliSettings(claude_permission_mode=""), False)

    assert args[-2:] == ["--resume", "session-3"]
    assert "--permission-mode" not in args
    assert args[args.index("--model") + 1] == "sonnet"


def test_codex_backend_returns_extracted_answer(fake_bin: Path) -> None:
    write_fake_agent(fake_bin, "fake-codex")
    backend = _backend(CliSettings(codex_executable="fake-codex", runner_executable="no-runner"))

    result = backend.execute(ExecutionRequest(prompt="List 3 colors", provider=Provider.CODEX))

    assert result.success, result.error
    assert json.loads(result.output or "") == {
        "status": "success",
        "message": "echo: List 3 colors",
    }
    assert result.session_id == "thread-echo-1"
    assert result.error is None


def test_claude_backend_uses_result_record_without_streaming(fake_bin: Path) -> None:
    write_fake_agent(fake_bin, "fake-claude", dialect="claude")
    backend = _backend(
        CliSettings(claude_executable="fake-claude", runner_executable="no-runner"),
        claude=True,
    )

    result = backend.execute(ExecutionRequest(prompt="hello", resume_session_id="session-42"))

    assert result.success, result.error
    assert json.loads(result.output or "")["message"] == "echo: hello"
    assert result.session_id == "session-42"


def test_availability_reports_missing_tool_and_runner(fake_bin: Path) -> None:
    del fake_bin
    backend = _backend(CliSettings(codex_executable="missing-codex", runner_executable="no-runner"))

    availability = backend.check_availability()

    assert availability.available is False
    assert availability.reason == (
        "Codex CLI not found. Please install Codex CLI to use this provider."
    )


def test_missing_tool_and_runner_fail_with_command_not_found(fake_bin: Path) -> None:
    del fake_bin
    backend = _backend(CliSettings(codex_executable="missing-codex", runner_executable="no-runner"))

    result = backend.execute(ExecutionRequest(prompt="hi", provider=Provider.CODEX))

    assert result.success is False
    assert result.output is None
    assert result.error is not None
    assert result.error.code == ErrorCode.COMMAND_NOT_FOUND


def test_failure_keeps_streamed_text_as_partial_output(fake_bin: Path) -> None:
    write_fake_agent(fake_bin, "fake-codex", extra_args=("--exit-code", "4", "--stderr-text", "x"))
    backend = _backend(CliSettings(codex_executable="fake-codex", runner_executable="no-runner"))
    updates = []

    result = backend.execute(ExecutionRequest(prompt="hi", provider=Provider.CODEX), updates.append)

    assert result.success is False
    assert result.error is not None
    assert result.error.code == ErrorCode.UNKNOWN_ERROR
    assert result.error.details == "Exit code: 4, stderr: x"
    assert result.partial_output is not None
    assert "echo: hi" in result.partial_output
    assert updates
