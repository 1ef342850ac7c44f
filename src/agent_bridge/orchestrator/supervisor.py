"""Spawn, stream, time out and cancel CLI agent processes."""

from __future__ import annotations

import codecs
import logging
import subprocess
import threading
import time
from collections.abc import Callable, Iterator
from dataclasses import dataclass
from typing import IO, Protocol

from agent_bridge.orchestrator.launch import LaunchPlan
from agent_bridge.orchestrator.models import CancelResult, Provider

logger = logging.getLogger(__name__)

_READ_CHUNK_BYTES = 64 * 1024
_PIPE_JOIN_SECONDS = 2.0


class DuplicateRequestError(RuntimeError):
    """Raised when a request id is already bound to a live execution."""

    def __init__(self, request_id: str) -> None:
        super().__init__(f"Request {request_id!r} is already in flight.")
        self.request_id = request_id


class CancellableHandle(Protocol):
    """Anything the registry can stop: a child process or an in-process stream."""

    def cancel(self) -> None:
        """Request termination without waiting for it."""


@dataclass(slots=True)
class ActiveEntry:
    """Live execution bound to a request id."""

    handle: CancellableHandle
    started_at: float
    provider: Provider | None = None

    def elapsed_ms(self) -> int:
        return int((time.monotonic() - self.started_at) * 1000)


class ProcessRegistry:
    """Request id to live execution map shared by every backend."""

    def __init__(self) -> None:
        self._entries: dict[str, ActiveEntry] = {}
        self._lock = threading.Lock()

    def register(
        self,
        request_id: str,
        handle: CancellableHandle,
        *,
        started_at: float | None = None,
        provider: Provider | None = None,
    ) -> ActiveEntry:
        entry = ActiveEntry(
            handle=handle,
            started_at=time.monotonic() if started_at is None else started_at,
            provider=provider,
        )
        with self._lock:
            if request_id in self._entries:
                raise DuplicateRequestError(request_id)
            self._entries[request_id] = entry
        logger.info("Registered active execution: request_id=%s", request_id)
        return entry

    def discard(self, request_id: str, handle: CancellableHandle) -> bool:
        """Remove the entry only if it still belongs to ``handle``."""

        with self._lock:
            entry = self._entries.get(request_id)
            if entry is None or entry.handle is not handle:
                return False
            del self._entries[request_id]
        logger.info("Removed active execution: request_id=%s", request_id)
        return True

    def pop(self, request_id: str, *, provider: Provider | None = None) -> ActiveEntry | None:
        """Remove and return the entry; with ``provider``, only an entry it owns."""

        with self._lock:
            entry = self._entries.get(request_id)
            if entry is None:
                return None
            if provider is not None and entry.provider not in (None, provider):
                return None
            del self._entries[request_id]
            return entry

    def cancel(self, request_id: str, *, provider: Provider | None = None) -> CancelResult:
        entry = self.pop(request_id, provider=provider)
        if entry is None:
            logger.warning(
                "No active execution found for request_id=%s provider=%s",
                request_id,
                provider.value if provider is not None else "any",
            )
            return CancelResult(cancelled=False)
        elapsed_ms = entry.elapsed_ms()
        logger.info("Cancelling request_id=%s after %dms", request_id, elapsed_ms)
        entry.handle.cancel()
        return CancelResult(cancelled=True, execution_time_ms=elapsed_ms)

    def reset(self) -> None:
        with self._lock:
            self._entries.clear()

    def __contains__(self, request_id: object) -> bool:
        with self._lock:
            return request_id in self._entries

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


class ProcessHandle:
    """Child process plus the flags recording why it was stopped."""

    def __init__(self, process: subprocess.Popen[bytes], *, escalation_seconds: float) -> None:
        self.process = process
        self.cancelled = False
        self.timed_out = False
        self._escalation_seconds = escalation_seconds

    @property
    def pid(self) -> int:
        return self.process.pid

    def cancel(self) -> None:
        if self.process.poll() is not None:
            logger.info("Process %s already exited; nothing to cancel", self.pid)
            return
        self.cancelled = True
        threading.Thread(
            target=_terminate_process,
            args=(self.process,),
            kwargs={"escalation_seconds": self._escalation_seconds},
            name=f"cancel-{self.pid}",
            daemon=True,
        ).start()

    def expire(self) -> None:
        if self.process.poll() is not None:
            return
        self.timed_out = True
        logger.warning("Process %s exceeded its timeout; terminating", self.pid)
        _terminate_process(self.process, escalation_seconds=self._escalation_seconds)

    def stop(self) -> None:
        _terminate_process(self.process, escalation_seconds=self._escalation_seconds)


@dataclass(slots=True)
class ProcessOutcome:
    """Everything observed about one finished child process."""

    exit_code: int | None
    stdout: str
    stderr: str
    duration_ms: int
    timed_out: bool = False
    cancelled: bool = False
    spawn_error: OSError | None = None


class ProcessSupervisor:
    """Run one child process per call and track it for cancellation."""

    def __init__(self, *, registry: ProcessRegistry, escalation_seconds: float = 0.5) -> None:
        self._registry = registry
        self._escalation_seconds = escalation_seconds

    @property
    def registry(self) -> ProcessRegistry:
        return self._registry

    def run(  # noqa: PLR0913
        self,
        plan: LaunchPlan,
        *,
        stdin_text: str,
        cwd: str | None = None,
        timeout_seconds: float = 0,
        request_id: str | None = None,
        provider: Provider | None = None,
        on_stdout: Callable[[str], None] | None = None,
    ) -> ProcessOutcome:
        """Spawn ``plan``, feed ``stdin_text`` and stream stdout chunks in read order.

        Blocks until the process exits. A ``timeout_seconds`` of zero or less means
        no timeout.
        """

        started_at = time.monotonic()
        logger.debug("Spawning process: argv=%s cwd=%s", plan.argv, cwd)
        try:
            process = subprocess.Popen(  # noqa: S603
                plan.argv,
                cwd=cwd,
                stdin=subprocess.PIPE,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
            )
        except OSError as error:
            logger.error("Failed to start %s: %s", plan.command, error)
            return ProcessOutcome(
                exit_code=None,
                stdout="",
                stderr="",
                duration_ms=_elapsed_ms(started_at),
                spawn_error=error,
            )

        handle = ProcessHandle(process, escalation_seconds=self._escalation_seconds)
        if request_id is not None:
            try:
                self._registry.register(
                    request_id,
                    handle,
                    started_at=started_at,
                    provider=provider,
                )
            except DuplicateRequestError:
                handle.stop()
                if process.stdin is not None:
                    process.stdin.close()
                _close_pipes(process)
                raise

        timer: threading.Timer | None = None
        if timeout_seconds > 0:
            timer = threading.Timer(timeout_seconds, handle.expire)
            timer.daemon = True
            timer.start()

        stderr_parts: list[str] = []
        writer = threading.Thread(
            target=_feed_stdin,
            args=(process.stdin, stdin_text),
            name=f"stdin-{process.pid}",
            daemon=True,
        )
        reader = threading.Thread(
            target=_drain_stream,
            args=(process.stderr, stderr_parts),
            name=f"stderr-{process.pid}",
            daemon=True,
        )
        writer.start()
        reader.start()

        stdout_parts: list[str] = []
        try:
            assert process.stdout is not None
            for chunk in iter_decoded_chunks(process.stdout):
                stdout_parts.append(chunk)
                if on_stdout is not None:
                    on_stdout(chunk)
            exit_code = process.wait()
        finally:
            if timer is not None:
                timer.cancel()
            if process.poll() is None:
                handle.stop()
            writer.join(timeout=_PIPE_JOIN_SECONDS)
            reader.join(timeout=_PIPE_JOIN_SECONDS)
            _close_pipes(process)
            if request_id is not None:
                self._registry.discard(request_id, handle)

        outcome = ProcessOutcome(
            exit_code=exit_code,
            stdout="".join(stdout_parts),
            stderr="".join(stderr_parts),
            duration_ms=_elapsed_ms(started_at),
            timed_out=handle.timed_out,
            cancelled=handle.cancelled,
        )
        logger.debug(
            "Process %s finished: exit_code=%s timed_out=%s cancelled=%s duration_ms=%d",
            process.pid,
            outcome.exit_code,
            outcome.timed_out,
            outcome.cancelled,
            outcome.duration_ms,
        )
        return outcome

    def cancel(self, request_id: str, *, provider: Provider | None = None) -> CancelResult:
        return self._registry.cancel(request_id, provider=provider)


def iter_decoded_chunks(stream: IO[bytes], *, size: int = _READ_CHUNK_BYTES) -> Iterator[str]:
    """Yield UTF-8 text as soon as bytes arrive, never splitting a code point."""

    decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
    while True:
        data = stream.read1(size)  # type: ignore[attr-defined]
        if not data:
            tail = decoder.decode(b"", final=True)
            if tail:
                yield tail
            return
        text = decoder.decode(data)
        if text:
            yield text


def _feed_stdin(stdin: IO[bytes] | None, text: str) -> None:
    if stdin is None:
        return
    try:
        stdin.write(text.encode("utf-8"))
        stdin.flush()
    except (BrokenPipeError, ValueError, OSError) as error:
        logger.debug("Child closed stdin before the prompt was written: %s", error)
    finally:
        try:
            stdin.close()
        except OSError as error:
            logger.debug("Closing child stdin failed: %s", error)


def _drain_stream(stream: IO[bytes] | None, sink: list[str]) -> None:
    if stream is None:
        return
    for chunk in iter_decoded_chunks(stream):
        sink.append(chunk)


def _terminate_process(
    process: subprocess.Popen[bytes],
    *,
    escalation_seconds: float,
) -> None:
    if process.poll() is not None:
        return
    try:
        process.terminate()
    except OSError:
        return
    try:
        process.wait(timeout=escalation_seconds)
    except subprocess.TimeoutExpired:
        logger.warning("Process %s ignored termination; killing", process.pid)
        try:
            process.kill()
        except OSError:
            return


def _close_pipes(process: subprocess.Popen[bytes]) -> None:
    for stream in (process.stdout, process.stderr):
        if stream is not None and not stream.closed:
            stream.close()


def _elapsed_ms(started_at: float) -> int:
    return int((time.monotonic() - started_at) * 1000)
