"""Isolate the final JSON answer from agent output mixed with reasoning prose."""

from __future__ import annotations

import json
import logging
import re

logger = logging.getLogger(__name__)

STATUS_VALUES: tuple[str, ...] = ("success", "clarification", "error")

_STATUS_MARKER = re.compile(
    r'\{"status"\s*:\s*"(?:' + "|".join(STATUS_VALUES) + r')"',
)
_FENCED_JSON = re.compile(r"```(?:json)?\s*(\{.*?\})\s*```", re.DOTALL | re.IGNORECASE)


def extract_json_response(text: str) -> str:
    """Return the last parseable status-marked JSON object in ``text``.

    Agents may print reasoning before the answer or emit draft objects before the
    final one, so every ``{"status": ...}`` occurrence is tried and the last one
    that parses wins. Braces inside JSON string values are counted like any
    other brace. When nothing parses the input is returned unchanged.
    """

    last_valid = ""
    for match in _STATUS_MARKER.finditer(text):
        candidate = _balanced_object(text, match.start())
        if candidate is None:
            continue
        try:
            json.loads(candidate)
        except json.JSONDecodeError:
            continue
        last_valid = candidate

    if last_valid:
        logger.debug(
            "Extracted JSON response: original_length=%d json_length=%d",
            len(text),
            len(last_valid),
        )
        return last_valid
    return text


def parse_structured_output(text: str) -> dict[str, object] | None:
    """Best-effort parse of an agent answer into a JSON object."""

    stripped = text.strip()
    if not stripped:
        return None

    direct = _try_load_dict(stripped)
    if direct is not None:
        return direct

    fenced = _FENCED_JSON.search(stripped)
    if fenced is not None:
        payload = _try_load_dict(fenced.group(1))
        if payload is not None:
            return payload

    start = stripped.find("{")
    end = stripped.rfind("}")
    if start == -1 or end == -1 or end <= start:
        return None
    return _try_load_dict(stripped[start : end + 1])


def _balanced_object(text: str, start: int) -> str | None:
    depth = 0
    for index in range(start, len(text)):
        char = text[index]
        if char == "{":
            depth += 1
        elif char == "}":
            depth -= 1
        if depth == 0:
            return text[start : index + 1]
    return None


def _try_load_dict(raw: str) -> dict[str, object] | None:
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError:
        return None
    if not isinstance(parsed, dict):
        return None
    return parsed
