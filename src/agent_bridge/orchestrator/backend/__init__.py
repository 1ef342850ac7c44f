"""Orchestrator backend implementations."""

from agent_bridge.orchestrator.backend.base import ProviderBackend
from agent_bridge.orchestrator.backend.cli_backend import CliAgentBackend
from agent_bridge.orchestrator.backend.language_model import (
    LanguageModelBackend,
    LanguageModelHost,
    LanguageModelHostError,
    OpenAICompatibleHost,
)
from agent_bridge.orchestrator.backend.profiles import (
    CliAgentSpec,
    claude_code_spec,
    codex_spec,
)

__all__ = [
    "CliAgentBackend",
    "CliAgentSpec",
    "LanguageModelBackend",
    "LanguageModelHost",
    "LanguageModelHostError",
    "OpenAICompatibleHost",
    "ProviderBackend",
    "claude_code_spec",
    "codex_spec",
]
