"""CLI entrypoint for agent-bridge."""

import logging
import sys
from pathlib import Path

import rich_click as click

from agent_bridge import __version__
from agent_bridge.orchestrator.controllers import (
    BridgeCliController,
    CheckCommand,
    RunCommand,
    WhichCommand,
)
from agent_bridge.orchestrator.models import Provider

click.rich_click.USE_MARKDOWN = True
CONTROLLER = BridgeCliController()
PROVIDER_CHOICES = [provider.value for provider in Provider]
LOG_LEVELS = ["DEBUG", "INFO", "WARNING", "ERROR"]


@click.group()
@click.version_option(version=__version__, prog_name="agent-bridge")
@click.option(
    "--log-level",
    type=click.Choice(LOG_LEVELS, case_sensitive=False),
    default="WARNING",
    show_default=True,
    help="Logging level for diagnostics written to stderr.",
)
def agent_bridge(log_level: str) -> None:
    """Run prompts through **Claude Code**, **Codex** or an in-process language model."""

    logging.basicConfig(
        level=log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )


@agent_bridge.command("run")
@click.option(
    "--provider",
    type=click.Choice(PROVIDER_CHOICES),
    default=Provider.CLAUDE_CODE.value,
    show_default=True,
    help="Backend that executes the prompt.",
)
@click.option("--prompt", default=None, help="Prompt text. Read from stdin when omitted.")
@click.option(
    "--prompt-file",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    default=None,
    help="Read the prompt from a file.",
)
@click.option(
    "--timeout",
    "timeout_seconds",
    type=click.FloatRange(min=0),
    default=None,
    help="Wall-clock budget in seconds; 0 disables the timeout. "
    "Defaults to AGENT_BRIDGE_TIMEOUT_SECONDS.",
)
@click.option("--model", default=None, help="Claude Code model name.")
@click.option(
    "--allowed-tool",
    "allowed_tools",
    multiple=True,
    help="Tool Claude Code may use without asking. Can be repeated.",
)
@click.option("--codex-model", default=None, help="Codex model name.")
@click.option("--reasoning-effort", default=None, help="Codex reasoning effort level.")
@click.option("--lm-model", default=None, help="Language model id for the in-process backend.")
@click.option("--resume", "resume_session_id", default=None, help="Session id to continue.")
@click.option(
    "--cwd",
    "working_directory",
    type=click.Path(exists=True, file_okay=False, path_type=Path),
    default=None,
    help="Working directory for CLI agents.",
)
@click.option(
    "--stream/--no-stream",
    default=True,
    show_default=True,
    help="Print progress while the agent is running.",
)
@click.option(
    "--require-json",
    is_flag=True,
    default=False,
    help="Fail when no JSON answer can be isolated from the output.",
)
def run(  # noqa: PLR0913
    provider: str,
    prompt: str | None,
    prompt_file: Path | None,
    timeout_seconds: float | None,
    model: str | None,
    allowed_tools: tuple[str, ...],
    codex_model: str | None,
    reasoning_effort: str | None,
    lm_model: str | None,
    resume_session_id: str | None,
    working_directory: Path | None,
    stream: bool,
    require_json: bool,
) -> None:
    """Execute one prompt and print the extracted answer."""

    if prompt is not None and prompt_file is not None:
        raise click.UsageError("Use either --prompt or --prompt-file, not both.")
    if prompt_file is not None:
        prompt = prompt_file.read_text(encoding="utf-8")
    elif prompt is None:
        prompt = click.get_text_stream("stdin").read()

    report = CONTROLLER.run(
        RunCommand(
            provider=Provider(provider),
            prompt=prompt,
            timeout_seconds=timeout_seconds,
            model=model,
            allowed_tools=allowed_tools,
            codex_model=codex_model,
            reasoning_effort=reasoning_effort,
            lm_model=lm_model,
            resume_session_id=resume_session_id,
            working_directory=working_directory,
            stream=stream,
            require_json=require_json,
        ),
        echo=_echo_progress,
    )
    _emit_lines(report.lines)
    if not report.success:
        raise click.ClickException("Execution failed.")


@agent_bridge.command("check")
@click.option(
    "--provider",
    "providers",
    type=click.Choice(PROVIDER_CHOICES),
    multiple=True,
    help="Provider to check. Can be repeated; all providers when omitted.",
)
def check(providers: tuple[str, ...]) -> None:
    """Report whether each provider can run on this machine."""

    report = CONTROLLER.check(
        CheckCommand(providers=tuple(Provider(provider) for provider in providers)),
    )
    _emit_lines(report.lines)
    if not report.success:
        raise click.ClickException("Some providers are unavailable.")


@agent_bridge.command("which")
@click.argument("tool")
@click.option(
    "--verify/--no-verify",
    default=True,
    show_default=True,
    help="Run the resolved executable with --version.",
)
def which(tool: str, verify: bool) -> None:
    """Resolve TOOL the way providers do: login shells first, then PATH."""

    report = CONTROLLER.which(WhichCommand(tool=tool, verify=verify))
    _emit_lines(report.lines)
    if not report.success:
        raise click.ClickException(f"{tool} not found.")


def _echo_progress(text: str) -> None:
    click.echo(text, nl=False, err=True)


def _emit_lines(lines: list[str]) -> None:
    for line in lines:
        click.echo(line)


if __name__ == "__main__":  # pragma: no cover
    agent_bridge()
