"""Backend interface shared by CLI and in-process providers."""

from __future__ import annotations

import time
from typing import Protocol

from agent_bridge.orchestrator.extractor import extract_json_response, parse_structured_output
from agent_bridge.orchestrator.failure_classifier import GENERIC_FAILURE_MESSAGE
from agent_bridge.orchestrator.models import (
    CancelResult,
    ErrorCode,
    ExecutionError,
    ExecutionRequest,
    ExecutionResult,
    ProgressCallback,
    ProviderAvailability,
    StreamUpdate,
)


class ProviderBackend(Protocol):
    """Protocol implemented by every provider pipeline."""

    def execute(
        self,
        request: ExecutionRequest,
        on_progress: ProgressCallback | None = None,
    ) -> ExecutionResult:
        """Run one request; stream progress when ``on_progress`` is given."""

    def cancel(self, request_id: str) -> CancelResult:
        """Stop the live execution bound to ``request_id``."""

    def check_availability(self) -> ProviderAvailability:
        """Report whether this provider can run on this machine."""


def finalize_output(
    text: str,
    *,
    request: ExecutionRequest,
    started_at: float,
    session_id: str | None,
    empty_details: str | None = None,
) -> ExecutionResult:
    """Build the terminal result from the full text an agent produced."""

    execution_time_ms = elapsed_ms(started_at)
    if not text.strip():
        return ExecutionResult.failed(
            ExecutionError(
                code=ErrorCode.PARSE_ERROR,
                message="The AI returned no usable output.",
                details=empty_details,
            ),
            execution_time_ms=execution_time_ms,
            session_id=session_id,
        )

    output = extract_json_response(text).strip()
    if request.require_json and parse_structured_output(output) is None:
        return ExecutionResult.failed(
            ExecutionError(
                code=ErrorCode.PARSE_ERROR,
                message=GENERIC_FAILURE_MESSAGE,
                details="Failed to parse JSON from AI output",
            ),
            execution_time_ms=execution_time_ms,
            session_id=session_id,
            partial_output=output,
        )
    return ExecutionResult.ok(output, execution_time_ms=execution_time_ms, session_id=session_id)


def elapsed_ms(started_at: float) -> int:
    return int((time.monotonic() - started_at) * 1000)


class ProgressCallbackError(RuntimeError):
    """A caller's progress callback raised; the original is ``__cause__``."""


def guard_progress(on_progress: ProgressCallback | None) -> ProgressCallback:
    """Wrap ``on_progress`` so its failures surface as ``ProgressCallbackError``."""

    def report(update: StreamUpdate) -> None:
        if on_progress is None:
            return
        try:
            on_progress(update)
        except Exception as error:
            raise ProgressCallbackError(str(error)) from error

    return report


def progress_callback_failed(
    error: ProgressCallbackError,
    *,
    started_at: float,
    session_id: str | None = None,
    partial_output: str,
) -> ExecutionResult:
    cause = error.__cause__ or error
    return ExecutionResult.failed(
        ExecutionError(
            code=ErrorCode.UNKNOWN_ERROR,
            message=str(cause) or type(cause).__name__,
            details=type(cause).__name__,
        ),
        execution_time_ms=elapsed_ms(started_at),
        session_id=session_id,
        partial_output=partial_output or None,
    )
