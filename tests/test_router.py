from __future__ import annotations

import json
import threading
import time
from pathlib import Path

import allure
import pytest
from conftest import (
    FakeLanguageModelHost,
    NoShellConfig,
    bridge_settings,
    wait_until,
    write_fake_agent,
)

from agent_bridge.orchestrator.models import (
    ContentType,
    ErrorCode,
    ExecutionRequest,
    ExecutionResult,
    Provider,
    StreamUpdate,
)
from agent_bridge.orchestrator.router import ProviderRouter

pytestmark = [
    allure.epic("Agent Bridge"),
    allure.feature("Provider Routing"),
]

_COLORS = json.dumps({"status": "success", "message": "red, blue, green"})


def _router(**settings_overrides: object) -> ProviderRouter:
    return ProviderRouter(
        bridge_settings(**settings_overrides),  # type: ignore[arg-type]
        shell_config=NoShellConfig(),
        lm_host=FakeLanguageModelHost(deltas=['{"status": "success", ', '"message": "lm"}']),
        fallback_shells=(),
    )


def test_list_three_colors_split_mid_object(fake_bin: Path) -> None:
    write_fake_agent(fake_bin, "fake-codex", extra_args=("--split", "--answer", _COLORS))
    router = _router()

    result = router.execute(
        ExecutionRequest(prompt="List 3 colors", provider=Provider.CODEX, request_id="colors"),
    )

    assert result.success is True
    assert result.output == _COLORS
    assert result.session_id == "thread-echo-1"
    assert "colors" not in router.registry


def test_streaming_reports_text_and_tool_activity_in_order(fake_bin: Path) -> None:
    write_fake_agent(fake_bin, "fake-claude", dialect="claude", extra_args=("--tool", "Read"))
    router = _router()
    updates: list[StreamUpdate] = []

    result = router.execute_streaming(
        ExecutionRequest(prompt="List 3 colors", provider=Provider.CLAUDE_CODE),
        updates.append,
    )

    assert result.success, result.error
    assert [update.content_type for update in updates] == [
        ContentType.TEXT,
        ContentType.TOOL_ACTIVITY,
        ContentType.TEXT,
    ]
    assert updates[1].chunk == "Read"
    assert json.loads(result.output or "")["message"] == "echo: List 3 colors"
    assert result.session_id == "session-echo-1"


def test_claude_session_can_be_resumed(fake_bin: Path) -> None:
    write_fake_agent(fake_bin, "fake-claude", dialect="claude")
    router = _router()

    first = router.execute(ExecutionRequest(prompt="start", provider=Provider.CLAUDE_CODE))
    second = router.execute(
        ExecutionRequest(
            prompt="continue",
            provider=Provider.CLAUDE_CODE,
            resume_session_id=first.session_id,
        ),
    )

    assert first.session_id == "session-echo-1"
    assert second.success
    assert second.session_id == first.session_id


def test_codex_resume_thread_is_reported_back(fake_bin: Path) -> None:
    write_fake_agent(fake_bin, "fake-codex")

    result = _router().execute(
        ExecutionRequest(prompt="again", provider=Provider.CODEX, resume_session_id="thread-99"),
    )

    assert result.session_id == "thread-99"


def test_timeout_against_sleeping_agent(fake_bin: Path) -> None:
    write_fake_agent(fake_bin, "fake-codex", extra_args=("--sleep-seconds", "5"))
    started = time.monotonic()

    result = _router().execute(
        ExecutionRequest(prompt="slow", provider=Provider.CODEX, timeout_seconds=0.05),
    )

    assert result.success is False
    assert result.error is not None
    assert result.error.code == ErrorCode.TIMEOUT
    assert time.monotonic() - started < 4


def test_cancel_live_request_and_absent_request(fake_bin: Path) -> None:
    write_fake_agent(fake_bin, "fake-codex", extra_args=("--sleep-seconds", "5"))
    router = _router()
    results: list[ExecutionResult] = []
    worker = threading.Thread(
        target=lambda: results.append(
            router.execute(
                ExecutionRequest(prompt="slow", provider=Provider.CODEX, request_id="req-1"),
            ),
        ),
        daemon=True,
    )
    worker.start()
    assert wait_until(lambda: "req-1" in router.registry)

    assert router.cancel(Provider.LANGUAGE_MODEL, "req-1").cancelled is False
    assert router.cancel(Provider.CLAUDE_CODE, "req-1").cancelled is False
    assert "req-1" in router.registry

    cancelled = router.cancel(Provider.CODEX, "req-1")

    assert cancelled.cancelled is True
    assert "req-1" not in router.registry
    worker.join(timeout=3)
    assert not worker.is_alive()
    assert results[0].error is not None
    assert results[0].error.code == ErrorCode.CANCELLED
    assert router.cancel(Provider.CODEX, "req-1").cancelled is False


def test_missing_tool_is_unavailable_and_not_found(fake_bin: Path) -> None:
    del fake_bin
    router = _router(codex="agent-bridge-missing-codex")

    availability = router.check_availability(Provider.CODEX)
    result = router.execute(ExecutionRequest(prompt="hi", provider=Provider.CODEX))

    assert availability.available is False
    assert availability.reason is not None
    assert "Codex CLI not found" in availability.reason
    assert result.error is not None
    assert result.error.code == ErrorCode.COMMAND_NOT_FOUND


def test_runner_fallback_runs_package_when_tool_is_missing(fake_bin: Path) -> None:
    write_fake_agent(fake_bin, "fake-npx")
    router = _router(codex="agent-bridge-missing-codex", runner="fake-npx")

    assert router.check_availability(Provider.CODEX).available is True
    result = router.execute(ExecutionRequest(prompt="via runner", provider=Provider.CODEX))

    assert result.success, result.error
    assert json.loads(result.output or "")["message"] == "echo: via runner"


def test_runner_that_cannot_find_package_is_command_not_found(fake_bin: Path) -> None:
    write_fake_agent(
        fake_bin,
        "fake-npx",
        extra_args=(
            "--exit-code",
            "1",
            "--stderr-text",
            "npm error could not determine executable to run",
        ),
    )
    router = _router(codex="agent-bridge-missing-codex", runner="fake-npx")

    result = router.execute(ExecutionRequest(prompt="hi", provider=Provider.CODEX))

    assert result.error is not None
    assert result.error.code == ErrorCode.COMMAND_NOT_FOUND


def test_require_json_fails_on_prose_answer(fake_bin: Path) -> None:
    write_fake_agent(fake_bin, "fake-codex", extra_args=("--answer", "just prose"))
    router = _router()

    strict = router.execute(
        ExecutionRequest(prompt="hi", provider=Provider.CODEX, require_json=True),
    )
    lenient = router.execute(ExecutionRequest(prompt="hi", provider=Provider.CODEX))

    assert strict.error is not None
    assert strict.error.code == ErrorCode.PARSE_ERROR
    assert strict.partial_output == "Reading the prompt. just prose"
    assert lenient.success
    assert lenient.output == "Reading the prompt. just prose"


def test_callback_exception_becomes_unknown_error(fake_bin: Path) -> None:
    write_fake_agent(fake_bin, "fake-codex")
    router = _router()

    def explode(update: StreamUpdate) -> None:
        raise RuntimeError("display closed")

    result = router.execute_streaming(
        ExecutionRequest(prompt="hi", provider=Provider.CODEX, request_id="boom"),
        explode,
    )

    assert result.success is False
    assert result.error is not None
    assert result.error.code == ErrorCode.UNKNOWN_ERROR
    assert result.error.message == "display closed"
    assert result.partial_output == "Reading the prompt. "
    assert "boom" not in router.registry


def test_duplicate_request_id_is_rejected(fake_bin: Path) -> None:
    write_fake_agent(fake_bin, "fake-codex", extra_args=("--sleep-seconds", "5"))
    router = _router()
    worker = threading.Thread(
        target=lambda: router.execute(
            ExecutionRequest(prompt="slow", provider=Provider.CODEX, request_id="same"),
        ),
        daemon=True,
    )
    worker.start()
    assert wait_until(lambda: "same" in router.registry)

    duplicate = router.execute(
        ExecutionRequest(prompt="again", provider=Provider.CODEX, request_id="same"),
    )

    assert duplicate.error is not None
    assert duplicate.error.code == ErrorCode.UNKNOWN_ERROR
    assert "already running" in duplicate.error.message
    assert router.cancel(Provider.CODEX, "same").cancelled
    worker.join(timeout=3)


def test_language_model_provider_ignores_resume_with_warning(
    caplog: pytest.LogCaptureFixture,
) -> None:
    router = _router()

    with caplog.at_level("WARNING"):
        result = router.execute(
            ExecutionRequest(
                prompt="hi",
                provider=Provider.LANGUAGE_MODEL,
                resume_session_id="session-1",
            ),
        )

    assert result.success, result.error
    assert result.output == '{"status": "success", "message": "lm"}'
    assert result.session_id is None
    assert "Session resume is not supported" in caplog.text


def test_reset_clears_path_cache_and_registry(fake_bin: Path) -> None:
    write_fake_agent(fake_bin, "fake-codex")
    router = _router()
    router.check_availability(Provider.CODEX)
    router.registry.register("stale", _NoopHandle())
    assert "fake-codex" in router.state.path_cache

    router.reset()

    assert "fake-codex" not in router.state.path_cache
    assert len(router.registry) == 0


class _NoopHandle:
    def cancel(self) -> None:
        return None
