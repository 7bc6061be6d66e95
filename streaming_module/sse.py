"""Server-Sent-Events frame builders for the streaming endpoint."""

from __future__ import annotations

import json
from typing import Any, Dict

DONE_SENTINEL = "[DONE]"


def _frame(data: str, event: str = "") -> str:
    lines = []
    if event:
        lines.append(f"event: {event}")
    for line in data.split("\n"):
        lines.append(f"data: {line}")
    return "\n".join(lines) + "\n\n"


def json_frame(payload: Dict[str, Any], event: str = "") -> str:
    return _frame(json.dumps(payload, ensure_ascii=False), event)


def content_frame(token: str) -> str:
    return json_frame({"content": token})


def session_frame(session_id: str) -> str:
    return json_frame({"session_id": session_id, "type": "session_info"}, event="session")


def error_frame(payload: Dict[str, Any]) -> str:
    return json_frame({**payload, "type": "generation_error"}, event="error")


def done_frame() -> str:
    return _frame(DONE_SENTINEL)


def keep_alive_frame() -> str:
    return ": keep-alive\n\n"
