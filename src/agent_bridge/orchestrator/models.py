"""Domain models for provider execution requests, results and stream updates."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum

DEFAULT_TIMEOUT_SECONDS = 60.0


class Provider(str, Enum):
    """Interchangeable AI execution backends."""

    CLAUDE_CODE = "claude-code"
    CODEX = "codex"
    LANGUAGE_MODEL = "language-model"


class ErrorCode(str, Enum):
    """Normalized failure kinds returned to callers."""

    COMMAND_NOT_FOUND = "COMMAND_NOT_FOUND"
    TIMEOUT = "TIMEOUT"
    PARSE_ERROR = "PARSE_ERROR"
    MODEL_NOT_SUPPORTED = "MODEL_NOT_SUPPORTED"
    UNKNOWN_ERROR = "UNKNOWN_ERROR"
    CANCELLED = "CANCELLED"


class ContentType(str, Enum):
    """Kind of content carried by a stream update."""

    TEXT = "text"
    TOOL_ACTIVITY = "tool_use"


@dataclass(slots=True)
class ExecutionRequest:
    """One prompt to run against a provider.

    Backend-specific selectors are passed through untouched; backends that do not
    support a selector ignore it.
    """

    prompt: str
    provider: Provider = Provider.CLAUDE_CODE
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS
    request_id: str | None = None
    working_directory: str | None = None
    model: str | None = None
    allowed_tools: tuple[str, ...] = ()
    codex_model: str | None = None
    codex_reasoning_effort: str | None = None
    lm_model: str | None = None
    resume_session_id: str | None = None
    require_json: bool = False


@dataclass(slots=True)
class ExecutionError:
    """Structured failure description."""

    code: ErrorCode
    message: str
    details: str | None = None


@dataclass(slots=True)
class ExecutionResult:
    """Terminal outcome of one execution.

    ``output`` is set only on success and ``error`` only on failure. Text streamed
    before a failure is kept in ``partial_output``.
    """

    success: bool
    execution_time_ms: int
    output: str | None = None
    error: ExecutionError | None = None
    session_id: str | None = None
    partial_output: str | None = None

    @classmethod
    def ok(
        cls,
        output: str,
        *,
        execution_time_ms: int,
        session_id: str | None = None,
    ) -> ExecutionResult:
        return cls(
            success=True,
            output=output,
            execution_time_ms=execution_time_ms,
            session_id=session_id,
        )

    @classmethod
    def failed(
        cls,
        error: ExecutionError,
        *,
        execution_time_ms: int,
        session_id: str | None = None,
        partial_output: str | None = None,
    ) -> ExecutionResult:
        return cls(
            success=False,
            error=error,
            execution_time_ms=execution_time_ms,
            session_id=session_id,
            partial_output=partial_output or None,
        )


@dataclass(slots=True)
class StreamUpdate:
    """Incremental progress emitted while a provider is still running."""

    chunk: str
    display_text: str
    explanatory_text: str
    content_type: ContentType = ContentType.TEXT


ProgressCallback = Callable[[StreamUpdate], None]


@dataclass(slots=True)
class ProviderAvailability:
    """Result of a provider availability check."""

    available: bool
    reason: str | None = None


@dataclass(slots=True)
class CancelResult:
    """Outcome of a cancellation request."""

    cancelled: bool
    execution_time_ms: int | None = None
