"""Per-backend wire tables and command-line construction for CLI agents."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from types import MappingProxyType

from agent_bridge.config import CliSettings
from agent_bridge.orchestrator.models import ExecutionRequest, Provider
from agent_bridge.orchestrator.stream_parser import RecordKind, WireProfile

CODEX_WIRE = WireProfile(
    name="codex",
    record_kinds=MappingProxyType(
        {
            "item.completed": RecordKind.ITEM_COMPLETED,
            "message": RecordKind.MESSAGE,
            "tool_use": RecordKind.TOOL_INVOCATION,
            "function_call": RecordKind.TOOL_INVOCATION,
            "text": RecordKind.TEXT,
            "assistant": RecordKind.TEXT,
            "result": RecordKind.RESULT,
            "thread.started": RecordKind.STREAM_STARTED,
            "turn.started": RecordKind.TURN_BOUNDARY,
            "turn.completed": RecordKind.TURN_BOUNDARY,
        },
    ),
    session_id_field="thread_id",
    result_field="output",
)

CLAUDE_CODE_WIRE = WireProfile(
    name="claude-code",
    record_kinds=MappingProxyType(
        {
            "system": RecordKind.STREAM_STARTED,
            "assistant": RecordKind.MESSAGE,
            "tool_use": RecordKind.TOOL_INVOCATION,
            "text": RecordKind.TEXT,
            "result": RecordKind.RESULT,
            "user": RecordKind.TURN_BOUNDARY,
        },
    ),
    session_id_field="session_id",
    result_field="result",
    message_field="message",
)

ArgsBuilder = Callable[[ExecutionRequest, CliSettings, bool], list[str]]


@dataclass(slots=True, frozen=True)
class CliAgentSpec:
    """Everything needed to launch and read one CLI agent."""

    provider: Provider
    label: str
    executable: str
    package: str
    wire: WireProfile
    build_args: ArgsBuilder


def build_codex_args(
    request: ExecutionRequest,
    settings: CliSettings,
    streaming: bool,
) -> list[str]:
    """``codex exec [resume <id>] --json ... -``; the prompt is read from stdin."""

    del streaming  # codex always emits NDJSON with --json
    args = ["exec"]
    if request.resume_session_id:
        args.extend(["resume", request.resume_session_id])
    args.extend(["--json", "--skip-git-repo-check"])
    model = request.codex_model if request.codex_model is not None else settings.codex_model
    if model:
        args.extend(["-m", model])
    effort = request.codex_reasoning_effort or settings.codex_reasoning_effort
    if effort:
        args.extend(["-c", f'model_reasoning_effort="{effort}"'])
    args.extend(["--full-auto", "-"])
    return args


def build_claude_code_args(
    request: ExecutionRequest,
    settings: CliSettings,
    streaming: bool,
) -> list[str]:
    """``claude -p`` in print mode; the prompt is read from stdin."""

    args = ["-p", "--output-format"]
    # stream-json in print mode requires --verbose.
    args.extend(["stream-json", "--verbose"] if streaming else ["json"])
    args.extend(["--model", request.model or settings.claude_model])
    if settings.claude_permission_mode:
        args.extend(["--permission-mode", settings.claude_permission_mode])
    if request.allowed_tools:
        args.extend(["--allowedTools", ",".join(request.allowed_tools)])
    if request.resume_session_id:
        args.extend(["--resume", request.resume_session_id])
    return args


def codex_spec(settings: CliSettings) -> CliAgentSpec:
    return CliAgentSpec(
        provider=Provider.CODEX,
        label="Codex CLI",
        executable=settings.codex_executable,
        package=settings.codex_package,
        wire=CODEX_WIRE,
        build_args=build_codex_args,
    )


def claude_code_spec(settings: CliSettings) -> CliAgentSpec:
    return CliAgentSpec(
        provider=Provider.CLAUDE_CODE,
        label="Claude Code CLI",
        executable=settings.claude_executable,
        package=settings.claude_package,
        wire=CLAUDE_CODE_WIRE,
        build_args=build_claude_code_args,
    )
