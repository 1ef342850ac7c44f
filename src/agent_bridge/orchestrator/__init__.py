"""Provider orchestration for external CLI agents and in-process language models.

The hard part is not calling a model; it is the boundary with agent CLIs that
live wherever the user's shell profile put them, speak their own NDJSON event
dialects, and must be stoppable at any moment. This package covers:

- Executable discovery through login shells with a zero-install runner fallback.
- Process supervision with per-request timeouts and cancellation by request id.
- Incremental parsing of event streams split at arbitrary byte boundaries.
- Isolation of the final JSON answer from reasoning prose.

Every provider returns the same :class:`~agent_bridge.orchestrator.models.ExecutionResult`
shape, so callers never branch on which backend ran.
"""
