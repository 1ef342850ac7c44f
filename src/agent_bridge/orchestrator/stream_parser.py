"""Incremental NDJSON parsing of CLI agent event streams.

Chunks arrive at arbitrary OS-determined boundaries. :class:`LineAssembler`
rebuilds newline-delimited records from them, and :class:`StreamParser`
dispatches each record through a per-backend :class:`WireProfile` into
normalized :class:`StreamUpdate` callbacks.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from enum import Enum
from typing import Any

from agent_bridge.orchestrator.models import ContentType, ProgressCallback, StreamUpdate

logger = logging.getLogger(__name__)

TOOL_MARKER = "\U0001f527"
TOOL_BLOCK_TYPES = frozenset({"tool_use", "function_call"})


class RecordKind(Enum):
    """Backend-neutral record vocabulary."""

    ITEM_COMPLETED = "item_completed"
    MESSAGE = "message"
    TOOL_INVOCATION = "tool_invocation"
    TEXT = "text"
    RESULT = "result"
    STREAM_STARTED = "stream_started"
    TURN_BOUNDARY = "turn_boundary"
    UNRECOGNIZED = "unrecognized"


@dataclass(slots=True, frozen=True)
class WireProfile:
    """Record-type table and field names for one backend's event stream."""

    name: str
    record_kinds: Mapping[str, RecordKind]
    session_id_field: str
    result_field: str
    message_field: str | None = None

    def kind_of(self, record: Mapping[str, Any]) -> RecordKind:
        record_type = record.get("type")
        if not isinstance(record_type, str):
            return RecordKind.UNRECOGNIZED
        return self.record_kinds.get(record_type, RecordKind.UNRECOGNIZED)


class LineAssembler:
    """Reassemble newline-delimited records from arbitrarily split chunks.

    A chunk with a newline is split normally and its trailing fragment is kept.
    A chunk without any newline is joined with the pending fragment and released
    as one line, since some agent versions write one whole JSON object per write
    without a delimiter. A joined fragment that starts like an object but does not
    parse yet stays buffered until the rest of it arrives.
    """

    def __init__(self) -> None:
        self._buffer = ""

    @property
    def pending(self) -> str:
        return self._buffer

    def feed(self, chunk: str) -> list[str]:
        normalized = chunk.replace("\r\n", "\n")
        if "\n" in normalized:
            self._buffer += normalized
            *lines, self._buffer = self._buffer.split("\n")
            return lines

        candidate = self._buffer + normalized
        if _is_json(candidate) or not candidate.lstrip().startswith("{"):
            self._buffer = ""
            return [candidate]
        self._buffer = candidate
        return []

    def flush(self) -> str | None:
        residual, self._buffer = self._buffer, ""
        return residual if residual.strip() else None


class StreamParser:
    """Turn one backend's NDJSON stream into accumulated text and progress updates."""

    def __init__(
        self,
        profile: WireProfile,
        on_progress: ProgressCallback | None = None,
    ) -> None:
        self.profile = profile
        self.accumulated = ""
        self.explanatory_text = ""
        self.session_id: str | None = None
        self.result_text: str | None = None
        self.records_seen = 0
        self._on_progress = on_progress
        self._assembler = LineAssembler()
        self._handlers: dict[RecordKind, Callable[[dict[str, Any]], None]] = {
            RecordKind.ITEM_COMPLETED: self._on_item_completed,
            RecordKind.MESSAGE: self._on_message,
            RecordKind.TOOL_INVOCATION: self._on_tool_record,
            RecordKind.TEXT: self._on_text_record,
            RecordKind.RESULT: self._on_result,
            RecordKind.STREAM_STARTED: self._on_stream_started,
            RecordKind.TURN_BOUNDARY: self._on_turn_boundary,
            RecordKind.UNRECOGNIZED: self._on_unrecognized,
        }

    def feed(self, chunk: str) -> None:
        for line in self._assembler.feed(chunk):
            self._handle_line(line)

    def finish(self) -> None:
        """Give any unterminated trailing line one last parse attempt."""

        residual = self._assembler.flush()
        if residual is not None:
            logger.debug("Parsing residual buffered line: length=%d", len(residual))
            self._handle_line(residual)

    def _handle_line(self, line: str) -> None:
        if not line.strip():
            return
        try:
            record = json.loads(line)
        except json.JSONDecodeError:
            logger.debug("Skipping non-JSON %s output line: %r", self.profile.name, line[:100])
            return
        if not isinstance(record, dict):
            return
        self.records_seen += 1
        self._handlers[self.profile.kind_of(record)](record)

    def _on_item_completed(self, record: dict[str, Any]) -> None:
        item = record.get("item")
        if not isinstance(item, dict):
            return
        content = item.get("content")
        if isinstance(content, list):
            self._on_content_blocks(content)
        elif isinstance(content, str) and content:
            self._append_text(content)

        output = item.get("output")
        if isinstance(output, str) and output:
            self._append_text(output)

        text = item.get("text")
        if isinstance(text, str) and text:
            self._append_item_text(text)

    def _on_message(self, record: dict[str, Any]) -> None:
        container: Any = record
        if self.profile.message_field is not None:
            container = record.get(self.profile.message_field)
        if not isinstance(container, dict):
            return
        content = container.get("content")
        if isinstance(content, str) and content:
            self._append_text(content)
        elif isinstance(content, list):
            self._on_content_blocks(content)

    def _on_content_blocks(self, blocks: list[Any]) -> None:
        for block in blocks:
            if not isinstance(block, dict):
                continue
            block_type = block.get("type")
            if block_type == "text" and isinstance(block.get("text"), str) and block["text"]:
                self._append_text(block["text"])
            elif block_type in TOOL_BLOCK_TYPES and isinstance(block.get("name"), str):
                self._emit_tool(block["name"])

    def _on_tool_record(self, record: dict[str, Any]) -> None:
        name = record.get("name")
        function = record.get("function")
        if not name and isinstance(function, dict):
            name = function.get("name")
        self._emit_tool(name if isinstance(name, str) and name else "Unknown tool")

    def _on_text_record(self, record: dict[str, Any]) -> None:
        text = record.get("text") or record.get("content") or ""
        if isinstance(text, str) and text:
            self._append_text(text)

    def _on_result(self, record: dict[str, Any]) -> None:
        value = record.get(self.profile.result_field)
        if isinstance(value, str):
            self.result_text = value
        self._capture_session_id(record)

    def _on_stream_started(self, record: dict[str, Any]) -> None:
        self._capture_session_id(record)

    def _on_turn_boundary(self, record: dict[str, Any]) -> None:
        logger.debug("%s lifecycle event: %s", self.profile.name, record.get("type"))

    def _on_unrecognized(self, record: dict[str, Any]) -> None:
        logger.debug(
            "Dropping unrecognized %s record: type=%r",
            self.profile.name,
            record.get("type"),
        )

    def _capture_session_id(self, record: dict[str, Any]) -> None:
        session_id = record.get(self.profile.session_id_field)
        if isinstance(session_id, str) and session_id and self.session_id is None:
            self.session_id = session_id
            logger.info("Captured %s session id: %s", self.profile.name, session_id)

    def _append_text(self, delta: str) -> None:
        self.accumulated += delta
        self.explanatory_text = self.accumulated
        self._emit(delta, self.explanatory_text, self.explanatory_text, ContentType.TEXT)

    def _append_item_text(self, text: str) -> None:
        # Item text may be the final answer envelope; show only its message.
        display = text
        try:
            envelope = json.loads(text)
        except json.JSONDecodeError:
            envelope = None
        if isinstance(envelope, dict):
            message = envelope.get("message")
            if envelope.get("status") and isinstance(message, str) and message:
                display = message
        self.accumulated += text
        self.explanatory_text = display
        self._emit(display, display, display, ContentType.TEXT)

    def _emit_tool(self, name: str) -> None:
        marker = f"{TOOL_MARKER} {name}"
        display = f"{self.explanatory_text}\n\n{marker}" if self.explanatory_text else marker
        self._emit(name, display, self.explanatory_text, ContentType.TOOL_ACTIVITY)

    def _emit(
        self,
        chunk: str,
        display_text: str,
        explanatory_text: str,
        content_type: ContentType,
    ) -> None:
        if self._on_progress is None:
            return
        self._on_progress(
            StreamUpdate(
                chunk=chunk,
                display_text=display_text,
                explanatory_text=explanatory_text,
                content_type=content_type,
            ),
        )


def _is_json(candidate: str) -> bool:
    try:
        json.loads(candidate)
    except json.JSONDecodeError:
        return False
    return True
