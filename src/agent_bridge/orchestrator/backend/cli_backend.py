"""Subprocess-based backend runner for CLI agents."""

from __future__ import annotations

import logging
import time

from agent_bridge.config import CliSettings
from agent_bridge.orchestrator.backend.base import (
    ProgressCallbackError,
    elapsed_ms,
    finalize_output,
    guard_progress,
    progress_callback_failed,
)
from agent_bridge.orchestrator.backend.profiles import CliAgentSpec
from agent_bridge.orchestrator.failure_classifier import classify_process_failure
from agent_bridge.orchestrator.launch import LaunchPlanner
from agent_bridge.orchestrator.models import (
    CancelResult,
    ErrorCode,
    ExecutionError,
    ExecutionRequest,
    ExecutionResult,
    ProgressCallback,
    ProviderAvailability,
)
from agent_bridge.orchestrator.stream_parser import StreamParser
from agent_bridge.orchestrator.supervisor import DuplicateRequestError, ProcessSupervisor

logger = logging.getLogger(__name__)

_STDERR_DETAILS_CHARS = 500


class CliAgentBackend:
    """Run one CLI agent per request and normalize its output."""

    def __init__(
        self,
        *,
        spec: CliAgentSpec,
        planner: LaunchPlanner,
        supervisor: ProcessSupervisor,
        settings: CliSettings,
    ) -> None:
        self.spec = spec
        self._planner = planner
        self._supervisor = supervisor
        self._settings = settings

    def check_availability(self) -> ProviderAvailability:
        if self._planner.is_launchable(self.spec.executable):
            return ProviderAvailability(available=True)
        label = self.spec.label
        return ProviderAvailability(
            available=False,
            reason=f"{label} not found. Please install {label} to use this provider.",
        )

    def cancel(self, request_id: str) -> CancelResult:
        return self._supervisor.cancel(request_id, provider=self.spec.provider)

    def execute(
        self,
        request: ExecutionRequest,
        on_progress: ProgressCallback | None = None,
    ) -> ExecutionResult:
        started_at = time.monotonic()
        if request.request_id is not None and request.request_id in self._supervisor.registry:
            return _duplicate_request(request.request_id, started_at)

        streaming = on_progress is not None
        args = self.spec.build_args(request, self._settings, streaming)
        plan = self._planner.plan(self.spec.executable, args, package=self.spec.package)
        logger.info(
            "Starting %s: request_id=%s streaming=%s via_runner=%s resume=%s",
            self.spec.label,
            request.request_id,
            streaming,
            plan.via_runner,
            bool(request.resume_session_id),
        )

        parser = StreamParser(self.spec.wire, guard_progress(on_progress) if streaming else None)
        try:
            outcome = self._supervisor.run(
                plan,
                stdin_text=request.prompt,
                cwd=request.working_directory,
                timeout_seconds=request.timeout_seconds,
                request_id=request.request_id,
                provider=self.spec.provider,
                on_stdout=parser.feed,
            )
        except DuplicateRequestError as error:
            return _duplicate_request(error.request_id, started_at)
        except ProgressCallbackError as error:
            logger.warning("Progress callback failed: request_id=%s", request.request_id)
            return progress_callback_failed(
                error,
                started_at=started_at,
                session_id=parser.session_id,
                partial_output=parser.accumulated,
            )
        parser.finish()

        error = classify_process_failure(
            outcome,
            tool_label=self.spec.label,
            timeout_seconds=request.timeout_seconds,
        )
        if error is not None:
            logger.warning(
                "%s failed: code=%s details=%s",
                self.spec.label,
                error.code.value,
                error.details,
            )
            return ExecutionResult.failed(
                error,
                execution_time_ms=elapsed_ms(started_at),
                session_id=parser.session_id,
                partial_output=parser.accumulated or None,
            )

        logger.info(
            "%s finished: records=%d output_chars=%d duration_ms=%d",
            self.spec.label,
            parser.records_seen,
            len(parser.accumulated),
            outcome.duration_ms,
        )
        stderr = outcome.stderr.strip()[:_STDERR_DETAILS_CHARS]
        return finalize_output(
            parser.accumulated or parser.result_text or outcome.stdout,
            request=request,
            started_at=started_at,
            session_id=parser.session_id,
            empty_details=f"stderr: {stderr}" if stderr else None,
        )


def _duplicate_request(request_id: str, started_at: float) -> ExecutionResult:
    logger.error("Rejected duplicate request id: %s", request_id)
    return ExecutionResult.failed(
        ExecutionError(
            code=ErrorCode.UNKNOWN_ERROR,
            message=f"Request {request_id} is already running.",
            details="Duplicate request id",
        ),
        execution_time_ms=elapsed_ms(started_at),
    )
