"""Deterministic stand-in for the Claude Code and Codex CLIs, used by tests.

Reads the prompt from stdin and answers with the NDJSON dialect of the chosen
agent. Arguments the real CLIs accept are ignored except for the resume id.
"""

from __future__ import annotations

import argparse
import json
import signal
import sys
import time

CLAUDE_SESSION_ID = "session-echo-1"
CODEX_THREAD_ID = "thread-echo-1"


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(allow_abbrev=False)
    parser.add_argument("--dialect", choices=("claude", "codex"), default="codex")
    parser.add_argument("--sleep-seconds", type=float, default=0.0)
    parser.add_argument("--exit-code", type=int, default=0)
    parser.add_argument("--stderr-text", default="")
    parser.add_argument("--tool", default="")
    parser.add_argument("--answer", default="")
    parser.add_argument("--split", action="store_true")
    parser.add_argument("--ignore-sigterm", action="store_true")
    args, passthrough = parser.parse_known_args(argv)

    if "--version" in passthrough:
        print(f"echo-agent 1.0 ({args.dialect})")
        return 0
    if args.ignore_sigterm:
        signal.signal(signal.SIGTERM, signal.SIG_IGN)

    prompt = sys.stdin.read().strip()
    if args.sleep_seconds > 0:
        time.sleep(args.sleep_seconds)

    answer = args.answer or json.dumps({"status": "success", "message": f"echo: {prompt}"})
    if args.dialect == "claude":
        session_id = _value_after(passthrough, "--resume") or CLAUDE_SESSION_ID
        if _value_after(passthrough, "--output-format") == "json":
            records = [_claude_result(answer, session_id)]
        else:
            records = _claude_records(answer, session_id, tool=args.tool)
    else:
        thread_id = _value_after(passthrough, "resume") or CODEX_THREAD_ID
        records = _codex_records(answer, thread_id, tool=args.tool)

    for record in records:
        _write_line(json.dumps(record), split=args.split)

    if args.stderr_text:
        sys.stderr.write(args.stderr_text)
        sys.stderr.flush()
    return args.exit_code


def _codex_records(answer: str, thread_id: str, *, tool: str) -> list[dict[str, object]]:
    records: list[dict[str, object]] = [
        {"type": "thread.started", "thread_id": thread_id},
        {"type": "turn.started"},
        {"type": "item.completed", "item": {"type": "reasoning", "text": "Reading the prompt. "}},
    ]
    if tool:
        records.append({"type": "function_call", "name": tool})
    records.append({"type": "item.completed", "item": {"type": "agent_message", "text": answer}})
    records.append({"type": "turn.completed", "usage": {"input_tokens": 1, "output_tokens": 1}})
    return records


def _claude_records(answer: str, session_id: str, *, tool: str) -> list[dict[str, object]]:
    records: list[dict[str, object]] = [
        {"type": "system", "subtype": "init", "session_id": session_id},
        _claude_assistant([{"type": "text", "text": "Reading the prompt. "}]),
    ]
    if tool:
        records.append(_claude_assistant([{"type": "tool_use", "name": tool, "input": {}}]))
        records.append({"type": "user", "message": {"content": [{"type": "tool_result"}]}})
    records.append(_claude_assistant([{"type": "text", "text": answer}]))
    records.append(_claude_result(answer, session_id))
    return records


def _claude_assistant(content: list[dict[str, object]]) -> dict[str, object]:
    return {"type": "assistant", "message": {"role": "assistant", "content": content}}


def _claude_result(answer: str, session_id: str) -> dict[str, object]:
    return {
        "type": "result",
        "subtype": "success",
        "is_error": False,
        "result": answer,
        "session_id": session_id,
    }


def _write_line(line: str, *, split: bool) -> None:
    if not split:
        sys.stdout.write(line + "\n")
        sys.stdout.flush()
        return
    middle = len(line) // 2
    sys.stdout.write(line[:middle])
    sys.stdout.flush()
    time.sleep(0.02)
    sys.stdout.write(line[middle:] + "\n")
    sys.stdout.flush()


def _value_after(args: list[str], flag: str) -> str | None:
    if flag not in args:
        return None
    index = args.index(flag)
    if index + 1 >= len(args):
        return None
    return args[index + 1]


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
