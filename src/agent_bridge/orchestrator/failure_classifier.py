"""Deterministic classification of finished CLI agent processes."""

from __future__ import annotations

import errno
import signal

from agent_bridge.orchestrator.models import ErrorCode, ExecutionError
from agent_bridge.orchestrator.supervisor import ProcessOutcome

SIGTERM_EXIT_CODES: tuple[int, ...] = (-signal.SIGTERM, 128 + signal.SIGTERM)
_RUNNER_NOT_FOUND_PATTERNS: tuple[str, ...] = ("could not determine executable to run",)
_STDERR_EXCERPT_CHARS = 500

GENERIC_FAILURE_MESSAGE = "Generation failed - please try again or rephrase your description"


def classify_process_failure(
    outcome: ProcessOutcome,
    *,
    tool_label: str,
    timeout_seconds: float,
) -> ExecutionError | None:
    """Map a finished process to an error, or None when it succeeded."""

    if outcome.spawn_error is not None:
        return _classify_spawn_error(outcome.spawn_error, tool_label=tool_label)

    if outcome.cancelled:
        return ExecutionError(
            code=ErrorCode.CANCELLED,
            message="Request was cancelled.",
            details=f"Cancelled after {outcome.duration_ms}ms",
        )

    if outcome.timed_out or outcome.exit_code in SIGTERM_EXIT_CODES:
        return timeout_error(timeout_seconds)

    pattern = _first_match(outcome.stderr.lower(), _RUNNER_NOT_FOUND_PATTERNS)
    if pattern is not None:
        return not_found_error(tool_label, details=outcome.stderr.strip())

    if outcome.exit_code == 0:
        return None

    exit_code = "unknown" if outcome.exit_code is None else str(outcome.exit_code)
    stderr = outcome.stderr.strip()[:_STDERR_EXCERPT_CHARS] or "none"
    return ExecutionError(
        code=ErrorCode.UNKNOWN_ERROR,
        message=GENERIC_FAILURE_MESSAGE,
        details=f"Exit code: {exit_code}, stderr: {stderr}",
    )


def timeout_error(timeout_seconds: float) -> ExecutionError:
    return ExecutionError(
        code=ErrorCode.TIMEOUT,
        message=f"AI generation timed out after {int(timeout_seconds)} seconds.",
        details=f"Timeout after {int(timeout_seconds * 1000)}ms",
    )


def not_found_error(tool_label: str, *, details: str | None = None) -> ExecutionError:
    return ExecutionError(
        code=ErrorCode.COMMAND_NOT_FOUND,
        message=f"{tool_label} not found. Please install {tool_label} to use this provider.",
        details=details,
    )


def _classify_spawn_error(error: OSError, *, tool_label: str) -> ExecutionError:
    if isinstance(error, FileNotFoundError) or error.errno == errno.ENOENT:
        return not_found_error(tool_label, details=str(error))
    return ExecutionError(
        code=ErrorCode.UNKNOWN_ERROR,
        message=f"{tool_label} failed to start.",
        details=str(error),
    )


def _first_match(haystack: str, patterns: tuple[str, ...]) -> str | None:
    for pattern in patterns:
        if pattern in haystack:
            return pattern
    return None
