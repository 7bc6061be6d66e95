"""Llama 3 instruct chat template used by the in-process engine."""

from __future__ import annotations

from typing import Dict, List

DEFAULT_SYSTEM_PROMPT = "You are a helpful assistant."
END_OF_TURN = "<|eot_id|>"


def _block(role: str, content: str) -> str:
    return f"<|start_header_id|>{role}<|end_header_id|>\n\n{content}{END_OF_TURN}"


def format_llama3_chat(messages: List[Dict[str, str]]) -> str:
    """Render chat messages with the Llama 3 instruct template.

    A default system block is inserted when the conversation has none; unknown
    roles are rendered as user turns.
    """
    parts: List[str] = ["<|begin_of_text|>"]
    if not any(m.get("role") == "system" for m in messages):
        parts.append(_block("system", DEFAULT_SYSTEM_PROMPT))
    for m in messages:
        role = m.get("role", "user")
        if role not in ("system", "user", "assistant"):
            role = "user"
        parts.append(_block(role, m.get("content", "")))
    parts.append("<|start_header_id|>assistant<|end_header_id|>\n\n")
    return "".join(parts)
