"""In-process backend streaming from an OpenAI-compatible chat completions API."""

from __future__ import annotations

import json
import logging
import queue
import threading
import time
from collections.abc import Generator, Iterator
from typing import Protocol

import httpx

from agent_bridge.config import LanguageModelSettings
from agent_bridge.orchestrator.backend.base import (
    ProgressCallbackError,
    elapsed_ms,
    finalize_output,
    guard_progress,
    progress_callback_failed,
)
from agent_bridge.orchestrator.failure_classifier import timeout_error
from agent_bridge.orchestrator.models import (
    CancelResult,
    ContentType,
    ErrorCode,
    ExecutionError,
    ExecutionRequest,
    ExecutionResult,
    ProgressCallback,
    Provider,
    ProviderAvailability,
    StreamUpdate,
)
from agent_bridge.orchestrator.supervisor import DuplicateRequestError, ProcessRegistry

logger = logging.getLogger(__name__)

HOST_UNAVAILABLE = "HOST_UNAVAILABLE"
NO_MODELS_FOUND = "NO_MODELS_FOUND"
AVAILABILITY_REASONS = {
    HOST_UNAVAILABLE: "Language model host is not reachable. Check AGENT_BRIDGE_LM_BASE_URL.",
    NO_MODELS_FOUND: "No language models are available on the configured host.",
}

_SSE_DATA_PREFIX = "data:"
_SSE_DONE = "[DONE]"
_ERROR_BODY_CHARS = 300
_POLL_SECONDS = 0.05
STREAM_END = object()


class LanguageModelHostError(RuntimeError):
    """Host request failed; ``model_not_supported`` marks an unknown model."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        model_not_supported: bool = False,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.model_not_supported = model_not_supported


class LanguageModelTimeoutError(LanguageModelHostError):
    """Host did not answer within the configured timeout."""


class LanguageModelHost(Protocol):
    """Model enumeration and streamed chat exposed by an in-process host."""

    def list_models(self) -> list[str]:
        """Return the identifiers of every model the host serves."""

    def stream_chat(
        self,
        *,
        model: str,
        prompt: str,
        cancel_event: threading.Event,
    ) -> Generator[str, None, None]:
        """Yield text deltas until the answer ends or ``cancel_event`` is set."""


class OpenAICompatibleHost:
    """``/models`` and ``/chat/completions`` of an OpenAI-compatible server."""

    def __init__(
        self,
        *,
        base_url: str,
        api_key: str | None = None,
        timeout_seconds: float = 60.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        headers = {"Accept": "application/json"}
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"
        self._client = httpx.Client(
            base_url=base_url.rstrip("/") + "/",
            timeout=httpx.Timeout(timeout_seconds, connect=10.0),
            headers=headers,
            transport=transport,
        )

    def list_models(self) -> list[str]:
        try:
            response = self._client.get("models")
        except httpx.TimeoutException as error:
            raise LanguageModelTimeoutError(f"Timed out listing models: {error}") from error
        except httpx.HTTPError as error:
            raise LanguageModelHostError(f"Model listing failed: {error}") from error
        if not response.is_success:
            raise LanguageModelHostError(
                f"Model listing failed: HTTP {response.status_code}",
                status_code=response.status_code,
            )
        try:
            payload = response.json()
        except json.JSONDecodeError as error:
            raise LanguageModelHostError("Model listing returned invalid JSON") from error
        entries = payload.get("data") if isinstance(payload, dict) else None
        if not isinstance(entries, list):
            return []
        return [
            entry["id"]
            for entry in entries
            if isinstance(entry, dict) and isinstance(entry.get("id"), str)
        ]

    def stream_chat(
        self,
        *,
        model: str,
        prompt: str,
        cancel_event: threading.Event,
    ) -> Generator[str, None, None]:
        payload = {
            "model": model,
            "messages": [{"role": "user", "content": prompt}],
            "stream": True,
        }
        try:
            with self._client.stream("POST", "chat/completions", json=payload) as response:
                if not response.is_success:
                    body = response.read().decode("utf-8", errors="replace")
                    raise LanguageModelHostError(
                        f"Chat request failed: HTTP {response.status_code}: "
                        f"{body[:_ERROR_BODY_CHARS]}",
                        status_code=response.status_code,
                        model_not_supported=_mentions_unknown_model(
                            response.status_code,
                            body,
                            model,
                        ),
                    )
                for line in response.iter_lines():
                    if cancel_event.is_set():
                        logger.info("Chat stream cancelled: model=%s", model)
                        return
                    data = _sse_data(line)
                    if data is None:
                        continue
                    if data == _SSE_DONE:
                        return
                    delta = _delta_text(data)
                    if delta:
                        yield delta
        except httpx.TimeoutException as error:
            raise LanguageModelTimeoutError(f"Chat request timed out: {error}") from error
        except httpx.HTTPError as error:
            raise LanguageModelHostError(f"Chat request failed: {error}") from error

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> OpenAICompatibleHost:
        return self

    def __exit__(self, *_: object) -> None:
        self.close()


class StreamCancelHandle:
    """Registry entry for one in-process chat stream.

    ``event`` tells the host to stop reading; ``cancelled`` records that the stop
    came from an explicit cancel rather than a deadline or a failure.
    """

    def __init__(self) -> None:
        self.event = threading.Event()
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True
        self.event.set()

    def stop(self) -> None:
        self.event.set()


class DeltaPump:
    """Drain a host delta stream on a worker thread into a queue.

    The consuming thread waits on the queue with short timeouts, so a host that
    stalls between SSE lines cannot hold it past a deadline or a cancel.
    """

    def __init__(self, stream: Iterator[str], stop_event: threading.Event) -> None:
        self._stream = stream
        self._stop_event = stop_event
        self._queue: queue.Queue[object] = queue.Queue()
        self._thread = threading.Thread(target=self._run, name="lm-stream", daemon=True)

    def start(self) -> None:
        self._thread.start()

    def next(self, timeout: float) -> object:
        """Return a delta, a host exception, or ``STREAM_END``; raise ``queue.Empty``."""

        return self._queue.get(timeout=timeout)

    def _run(self) -> None:
        try:
            for delta in self._stream:
                if self._stop_event.is_set():
                    break
                self._queue.put(delta)
        except Exception as error:  # re-raised by the consuming thread
            self._queue.put(error)
        finally:
            close = getattr(self._stream, "close", None)
            if close is not None:
                close()
            self._queue.put(STREAM_END)


class LanguageModelBackend:
    """Run prompts against an in-process language model host."""

    def __init__(
        self,
        *,
        host: LanguageModelHost,
        registry: ProcessRegistry,
        settings: LanguageModelSettings,
    ) -> None:
        self._host = host
        self._registry = registry
        self._settings = settings

    def check_availability(self) -> ProviderAvailability:
        try:
            models = self._host.list_models()
        except LanguageModelHostError as error:
            logger.warning("Language model host unavailable: %s", error)
            return ProviderAvailability(
                available=False,
                reason=AVAILABILITY_REASONS[HOST_UNAVAILABLE],
            )
        if not models:
            return ProviderAvailability(
                available=False,
                reason=AVAILABILITY_REASONS[NO_MODELS_FOUND],
            )
        return ProviderAvailability(available=True)

    def cancel(self, request_id: str) -> CancelResult:
        return self._registry.cancel(request_id, provider=Provider.LANGUAGE_MODEL)

    def execute(  # noqa: PLR0911, PLR0912, PLR0915
        self,
        request: ExecutionRequest,
        on_progress: ProgressCallback | None = None,
    ) -> ExecutionResult:
        started_at = time.monotonic()
        if request.resume_session_id:
            logger.warning(
                "Session resume is not supported by the language model backend; "
                "ignoring session id %s",
                request.resume_session_id,
            )

        try:
            model = self._select_model(request)
        except LanguageModelHostError as error:
            logger.warning("Language model lookup failed: %s", error)
            return _failed(
                ErrorCode.UNKNOWN_ERROR,
                AVAILABILITY_REASONS[HOST_UNAVAILABLE],
                str(error),
                started_at=started_at,
            )
        if model is None:
            return _failed(
                ErrorCode.MODEL_NOT_SUPPORTED,
                "The requested language model is not available.",
                f"Requested model: {request.lm_model or self._settings.default_model or 'any'}",
                started_at=started_at,
            )

        handle = StreamCancelHandle()
        if request.request_id is not None:
            try:
                self._registry.register(
                    request.request_id,
                    handle,
                    started_at=started_at,
                    provider=Provider.LANGUAGE_MODEL,
                )
            except DuplicateRequestError as error:
                return _failed(
                    ErrorCode.UNKNOWN_ERROR,
                    f"Request {error.request_id} is already running.",
                    "Duplicate request id",
                    started_at=started_at,
                )

        logger.info(
            "Starting language model chat: model=%s request_id=%s",
            model,
            request.request_id,
        )
        accumulated = ""
        timed_out = False
        deadline = started_at + request.timeout_seconds if request.timeout_seconds > 0 else None
        report = guard_progress(on_progress)
        pump = DeltaPump(
            self._host.stream_chat(model=model, prompt=request.prompt, cancel_event=handle.event),
            handle.event,
        )
        pump.start()
        try:
            while not handle.cancelled:
                if deadline is not None and time.monotonic() >= deadline:
                    logger.warning(
                        "Language model request exceeded %ss; stopping stream",
                        request.timeout_seconds,
                    )
                    timed_out = True
                    break
                try:
                    item = pump.next(timeout=_POLL_SECONDS)
                except queue.Empty:
                    continue
                if item is STREAM_END:
                    break
                if isinstance(item, Exception):
                    raise item
                delta = str(item)
                accumulated += delta
                report(
                    StreamUpdate(
                        chunk=delta,
                        display_text=accumulated,
                        explanatory_text=accumulated,
                        content_type=ContentType.TEXT,
                    ),
                )
        except ProgressCallbackError as error:
            logger.warning("Progress callback failed: request_id=%s", request.request_id)
            return progress_callback_failed(
                error,
                started_at=started_at,
                partial_output=accumulated,
            )
        except LanguageModelTimeoutError as error:
            logger.warning("Language model request timed out: %s", error)
            timed_out = True
        except LanguageModelHostError as error:
            logger.warning("Language model request failed: %s", error)
            return _failed(
                (
                    ErrorCode.MODEL_NOT_SUPPORTED
                    if error.model_not_supported
                    else ErrorCode.UNKNOWN_ERROR
                ),
                "Language model request failed.",
                str(error),
                started_at=started_at,
                partial_output=accumulated,
            )
        finally:
            handle.stop()
            if request.request_id is not None:
                self._registry.discard(request.request_id, handle)

        if handle.cancelled:
            return _failed(
                ErrorCode.CANCELLED,
                "Request was cancelled.",
                f"Cancelled after {elapsed_ms(started_at)}ms",
                started_at=started_at,
                partial_output=accumulated,
            )
        if timed_out:
            return ExecutionResult.failed(
                timeout_error(request.timeout_seconds),
                execution_time_ms=elapsed_ms(started_at),
                partial_output=accumulated,
            )
        logger.info(
            "Language model chat finished: model=%s output_chars=%d",
            model,
            len(accumulated),
        )
        return finalize_output(accumulated, request=request, started_at=started_at, session_id=None)

    def _select_model(self, request: ExecutionRequest) -> str | None:
        models = self._host.list_models()
        wanted = request.lm_model or self._settings.default_model
        if wanted is None:
            return models[0] if models else None
        return wanted if wanted in models else None


def _failed(
    code: ErrorCode,
    message: str,
    details: str | None,
    *,
    started_at: float,
    partial_output: str | None = None,
) -> ExecutionResult:
    return ExecutionResult.failed(
        ExecutionError(code=code, message=message, details=details),
        execution_time_ms=elapsed_ms(started_at),
        partial_output=partial_output,
    )


def _sse_data(line: str) -> str | None:
    stripped = line.strip()
    if not stripped.startswith(_SSE_DATA_PREFIX):
        return None
    return stripped[len(_SSE_DATA_PREFIX) :].strip()


def _delta_text(data: str) -> str:
    try:
        event = json.loads(data)
    except json.JSONDecodeError:
        logger.debug("Skipping non-JSON stream event: %r", data[:100])
        return ""
    if not isinstance(event, dict):
        return ""
    choices = event.get("choices")
    if not isinstance(choices, list) or not choices or not isinstance(choices[0], dict):
        return ""
    delta = choices[0].get("delta")
    if not isinstance(delta, dict):
        return ""
    content = delta.get("content")
    return content if isinstance(content, str) else ""


def _mentions_unknown_model(status_code: int, body: str, model: str) -> bool:
    if status_code != httpx.codes.NOT_FOUND:
        return False
    lowered = body.lower()
    return "model" in lowered or model.lower() in lowered
