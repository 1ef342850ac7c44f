"""Single entry point that dispatches requests to the provider backends."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field

from agent_bridge.config import Settings
from agent_bridge.orchestrator.backend.base import ProviderBackend, elapsed_ms
from agent_bridge.orchestrator.backend.cli_backend import CliAgentBackend
from agent_bridge.orchestrator.backend.language_model import (
    LanguageModelBackend,
    LanguageModelHost,
    OpenAICompatibleHost,
)
from agent_bridge.orchestrator.backend.profiles import claude_code_spec, codex_spec
from agent_bridge.orchestrator.launch import LaunchPlanner
from agent_bridge.orchestrator.models import (
    CancelResult,
    ErrorCode,
    ExecutionError,
    ExecutionRequest,
    ExecutionResult,
    ProgressCallback,
    Provider,
    ProviderAvailability,
)
from agent_bridge.orchestrator.resolver import ExecutableResolver, PathCache, ShellConfigProvider
from agent_bridge.orchestrator.supervisor import ProcessRegistry, ProcessSupervisor

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class RuntimeState:
    """Mutable state shared by every backend of one router."""

    path_cache: PathCache = field(default_factory=PathCache)
    registry: ProcessRegistry = field(default_factory=ProcessRegistry)


class ProviderRouter:
    """Route execution, cancellation and availability calls by provider."""

    def __init__(
        self,
        settings: Settings,
        *,
        shell_config: ShellConfigProvider | None = None,
        lm_host: LanguageModelHost | None = None,
        fallback_shells: tuple[str, ...] | None = None,
    ) -> None:
        self.settings = settings
        self.state = RuntimeState()
        self.resolver = ExecutableResolver(
            settings=settings.shell,
            cache=self.state.path_cache,
            shell_config=shell_config,
            fallback_shells=fallback_shells,
        )
        planner = LaunchPlanner(resolver=self.resolver, runner=settings.cli.runner_executable)
        supervisor = ProcessSupervisor(
            registry=self.state.registry,
            escalation_seconds=settings.supervisor.kill_escalation_seconds,
        )
        host = lm_host or OpenAICompatibleHost(
            base_url=settings.language_model.base_url,
            api_key=settings.language_model.api_key,
            timeout_seconds=settings.language_model.request_timeout_seconds,
        )
        self._backends: dict[Provider, ProviderBackend] = {
            Provider.CLAUDE_CODE: CliAgentBackend(
                spec=claude_code_spec(settings.cli),
                planner=planner,
                supervisor=supervisor,
                settings=settings.cli,
            ),
            Provider.CODEX: CliAgentBackend(
                spec=codex_spec(settings.cli),
                planner=planner,
                supervisor=supervisor,
                settings=settings.cli,
            ),
            Provider.LANGUAGE_MODEL: LanguageModelBackend(
                host=host,
                registry=self.state.registry,
                settings=settings.language_model,
            ),
        }

    @property
    def registry(self) -> ProcessRegistry:
        return self.state.registry

    def backend(self, provider: Provider) -> ProviderBackend:
        return self._backends[provider]

    def execute(self, request: ExecutionRequest) -> ExecutionResult:
        """Run ``request`` to completion and return its normalized result."""

        return self._dispatch(request, None)

    def execute_streaming(
        self,
        request: ExecutionRequest,
        on_progress: ProgressCallback,
    ) -> ExecutionResult:
        """Run ``request``, reporting progress before the terminal result."""

        return self._dispatch(request, on_progress)

    def cancel(self, provider: Provider, request_id: str) -> CancelResult:
        return self.backend(provider).cancel(request_id)

    def check_availability(self, provider: Provider) -> ProviderAvailability:
        try:
            return self.backend(provider).check_availability()
        except Exception as error:
            logger.exception("Availability check failed: provider=%s", provider.value)
            return ProviderAvailability(available=False, reason=str(error))

    def reset(self) -> None:
        """Forget resolved executable paths and active request bindings."""

        self.state.path_cache.clear()
        self.state.registry.reset()

    def _dispatch(
        self,
        request: ExecutionRequest,
        on_progress: ProgressCallback | None,
    ) -> ExecutionResult:
        started_at = time.monotonic()
        backend = self.backend(request.provider)
        logger.info(
            "Executing request: provider=%s request_id=%s streaming=%s",
            request.provider.value,
            request.request_id,
            on_progress is not None,
        )
        try:
            return backend.execute(request, on_progress)
        except Exception as error:
            logger.exception(
                "Unexpected failure: provider=%s request_id=%s",
                request.provider.value,
                request.request_id,
            )
            return ExecutionResult.failed(
                ExecutionError(
                    code=ErrorCode.UNKNOWN_ERROR,
                    message=str(error) or type(error).__name__,
                    details=type(error).__name__,
                ),
                execution_time_ms=elapsed_ms(started_at),
            )
