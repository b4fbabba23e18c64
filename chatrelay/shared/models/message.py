"""Chat message helpers.

Messages travel as plain dicts (``{"role", "content", "timestamp", ...}``)
exactly as history returns them; these helpers read them without
assuming a single content shape.
"""

from __future__ import annotations

from enum import Enum
from typing import Any

from chatrelay.engine.models import now_ms


class MessageRole(Enum):
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"
    TOOL = "tool"


_TOOL_RESULT_ROLES = frozenset({"toolresult", "tool_result", "tool"})


def text_message(role: str, text: str, timestamp: int | None = None) -> dict[str, Any]:
    return {
        "role": role,
        "content": [{"type": "text", "text": text}],
        "timestamp": timestamp if timestamp is not None else now_ms(),
    }


def _content_blocks(message: Any) -> list[dict[str, Any]]:
    if not isinstance(message, dict):
        return []
    content = message.get("content")
    if isinstance(content, list):
        return [block for block in content if isinstance(block, dict)]
    return []


def extract_text(message: Any) -> str | None:
    """Concatenated text of a message, or None when it carries no text."""
    if not isinstance(message, dict):
        return None
    content = message.get("content")
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts = [
            block["text"]
            for block in _content_blocks(message)
            if block.get("type") == "text" and isinstance(block.get("text"), str)
        ]
        return "\n".join(parts) if parts else None
    text = message.get("text")
    return text if isinstance(text, str) else None


def extract_thinking(message: Any) -> str | None:
    parts = [
        block["thinking"]
        for block in _content_blocks(message)
        if block.get("type") == "thinking" and isinstance(block.get("thinking"), str)
    ]
    return "\n".join(parts) if parts else None


def message_role(message: Any) -> str:
    if isinstance(message, dict) and isinstance(message.get("role"), str):
        return message["role"]
    return "unknown"


def normalize_role_for_grouping(role: str) -> str:
    """Collapse provider-specific role spellings into display roles."""
    lowered = role.lower()
    if lowered in _TOOL_RESULT_ROLES:
        return MessageRole.TOOL.value
    return lowered


def is_tool_result_message(message: Any) -> bool:
    if not isinstance(message, dict):
        return False
    if message_role(message).lower() in _TOOL_RESULT_ROLES:
        return True
    return isinstance(message.get("toolCallId"), str) or isinstance(message.get("tool_call_id"), str)


def message_timestamp(message: Any) -> int | None:
    if not isinstance(message, dict):
        return None
    ts = message.get("timestamp")
    if isinstance(ts, (int, float)) and not isinstance(ts, bool):
        return int(ts)
    return None
