"""Controllers for agent-bridge CLI commands."""

from __future__ import annotations

import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path

from agent_bridge.config import Settings
from agent_bridge.orchestrator.models import (
    ContentType,
    ExecutionRequest,
    ExecutionResult,
    Provider,
    StreamUpdate,
)
from agent_bridge.orchestrator.resolver import ExecutableResolver, PathCache
from agent_bridge.orchestrator.router import ProviderRouter
from agent_bridge.orchestrator.stream_parser import TOOL_MARKER

TextSink = Callable[[str], None]


@dataclass(slots=True)
class RunCommand:
    """CLI input for one prompt execution."""

    provider: Provider
    prompt: str
    timeout_seconds: float | None = None
    model: str | None = None
    allowed_tools: tuple[str, ...] = ()
    codex_model: str | None = None
    reasoning_effort: str | None = None
    lm_model: str | None = None
    resume_session_id: str | None = None
    working_directory: Path | None = None
    stream: bool = True
    require_json: bool = False


@dataclass(slots=True)
class CheckCommand:
    """CLI input for provider availability checks."""

    providers: tuple[Provider, ...] = ()


@dataclass(slots=True)
class WhichCommand:
    """CLI input for executable resolution."""

    tool: str
    verify: bool = True


@dataclass(slots=True)
class CommandReport:
    """Lines to render in CLI plus the overall outcome."""

    lines: list[str] = field(default_factory=list)
    success: bool = True


class BridgeCliController:
    """Coordinates execution, availability and resolution CLI operations."""

    def __init__(
        self,
        router_factory: Callable[[Settings], ProviderRouter] = ProviderRouter,
    ) -> None:
        self._router_factory = router_factory

    def run(self, command: RunCommand, *, echo: TextSink | None = None) -> CommandReport:
        settings = _load_settings()
        if isinstance(settings, CommandReport):
            return settings
        if not command.prompt.strip():
            return CommandReport(lines=["Prompt is empty."], success=False)

        router = self._router_factory(settings)
        timeout = (
            command.timeout_seconds
            if command.timeout_seconds is not None
            else settings.supervisor.default_timeout_seconds
        )
        request = ExecutionRequest(
            prompt=command.prompt,
            provider=command.provider,
            timeout_seconds=timeout,
            request_id=f"cli-{uuid.uuid4().hex[:12]}",
            working_directory=str(command.working_directory) if command.working_directory else None,
            model=command.model,
            allowed_tools=command.allowed_tools,
            codex_model=command.codex_model,
            codex_reasoning_effort=command.reasoning_effort,
            lm_model=command.lm_model,
            resume_session_id=command.resume_session_id,
            require_json=command.require_json,
        )
        if command.stream and echo is not None:
            result = router.execute_streaming(request, _progress_printer(echo))
            echo("\n")
        else:
            result = router.execute(request)
        return _render_result(result)

    def check(self, command: CheckCommand) -> CommandReport:
        settings = _load_settings()
        if isinstance(settings, CommandReport):
            return settings

        router = self._router_factory(settings)
        report = CommandReport(lines=["Provider availability:"])
        for provider in command.providers or tuple(Provider):
            availability = router.check_availability(provider)
            line = (
                f"  provider={provider.value} "
                f"available={'yes' if availability.available else 'no'}"
            )
            if availability.reason:
                line += f" reason={availability.reason}"
            report.lines.append(line)
            if not availability.available:
                report.success = False
        return report

    def which(self, command: WhichCommand) -> CommandReport:
        settings = _load_settings()
        if isinstance(settings, CommandReport):
            return settings

        resolver = ExecutableResolver(settings=settings.shell, cache=PathCache())
        path = resolver.resolve(command.tool)
        if path is None:
            return CommandReport(lines=[f"{command.tool}: not found"], success=False)
        lines = [f"{command.tool}: path={path}"]
        if command.verify:
            version = resolver.verify(path)
            lines.append(f"  version={version if version else 'unknown'}")
        return CommandReport(lines=lines)


def _load_settings() -> Settings | CommandReport:
    settings = Settings.from_env()
    try:
        settings.validate()
    except ValueError as error:
        return CommandReport(lines=[f"Configuration error: {error}"], success=False)
    return settings


def _progress_printer(echo: TextSink) -> Callable[[StreamUpdate], None]:
    def on_progress(update: StreamUpdate) -> None:
        if update.content_type is ContentType.TOOL_ACTIVITY:
            echo(f"\n{TOOL_MARKER} {update.chunk}\n")
        else:
            echo(update.chunk)

    return on_progress


def _render_result(result: ExecutionResult) -> CommandReport:
    if result.success:
        lines = [result.output or ""]
        if result.session_id:
            lines.append(f"session_id={result.session_id}")
        lines.append(f"execution_time_ms={result.execution_time_ms}")
        return CommandReport(lines=lines)

    assert result.error is not None
    lines = [f"Execution failed: code={result.error.code.value} message={result.error.message}"]
    if result.error.details:
        lines.append(f"  details={result.error.details}")
    if result.partial_output:
        lines.append("Partial output:")
        lines.append(result.partial_output)
    if result.session_id:
        lines.append(f"session_id={result.session_id}")
    return CommandReport(lines=lines, success=False)
