"""Tool card extraction, pairing and display grouping.

A tool invocation shows up in history twice: once as a call block on
the assistant message and once as a result (a block or a whole
tool-result message). The renderer wants one card per invocation, so
cards are collected across a display group and paired:

    calls:   [search#a]  [read#b]  [lint#c]
    results: [#a "5 results"]  [read "ok"]
    paired:  [search "5 results"]  [read "ok"]  [lint pending]

Result cards that match no call are kept as orphans rather than lost.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field, replace
from typing import Any

from chatrelay.shared.models.message import (
    MessageRole,
    extract_text,
    is_tool_result_message,
    message_role,
    message_timestamp,
    normalize_role_for_grouping,
)

_CALL_TYPES = frozenset({"toolcall", "tool_call", "tooluse", "tool_use"})
_RESULT_TYPES = frozenset({"toolresult", "tool_result"})

CARD_CALL = "call"
CARD_RESULT = "result"

STATUS_DONE = "done"
STATUS_PENDING = "pending"
STATUS_ORPHAN = "orphan"


@dataclass(frozen=True)
class ToolCard:
    kind: str
    name: str = ""
    id: str | None = None
    text: str | None = None
    args: Any = None
    status: str = STATUS_PENDING


def _first_str(source: dict[str, Any], *keys: str) -> str | None:
    for key in keys:
        value = source.get(key)
        if isinstance(value, str) and value:
            return value
    return None


def _block_result_text(block: dict[str, Any]) -> str | None:
    text = block.get("text")
    if isinstance(text, str):
        return text
    content = block.get("content")
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        return extract_text({"content": content})
    return None


def _call_args(block: dict[str, Any]) -> Any:
    for key in ("arguments", "args", "input"):
        if key in block:
            value = block[key]
            if isinstance(value, str):
                try:
                    return json.loads(value)
                except (json.JSONDecodeError, TypeError):
                    return value
            return value
    return None


def extract_tool_cards(message: Any) -> list[ToolCard]:
    """Call and result cards carried by one message, in content order."""
    if not isinstance(message, dict):
        return []
    cards: list[ToolCard] = []
    content = message.get("content")
    blocks = content if isinstance(content, list) else []
    for block in blocks:
        if not isinstance(block, dict):
            continue
        kind = str(block.get("type", "")).lower()
        if kind in _CALL_TYPES:
            cards.append(ToolCard(
                kind=CARD_CALL,
                id=_first_str(block, "id", "toolCallId", "tool_call_id"),
                name=_first_str(block, "name", "toolName", "tool_name") or "tool",
                args=_call_args(block),
            ))
        elif kind in _RESULT_TYPES:
            cards.append(ToolCard(
                kind=CARD_RESULT,
                id=_first_str(block, "toolCallId", "tool_call_id", "tool_use_id", "id"),
                name=_first_str(block, "name", "toolName", "tool_name") or "tool",
                text=_block_result_text(block),
                status=STATUS_DONE,
            ))

    if is_tool_result_message(message) and not any(c.kind == CARD_RESULT for c in cards):
        cards.append(ToolCard(
            kind=CARD_RESULT,
            id=_first_str(message, "toolCallId", "tool_call_id"),
            name=_first_str(message, "toolName", "tool_name", "name") or "tool",
            text=extract_text(message),
            status=STATUS_DONE,
        ))
    return cards


def pair_tool_cards(cards: list[ToolCard]) -> list[ToolCard]:
    """Merge each call with its result: by id first, then by name.

    Returns the calls in order (merged ``done`` or ``pending``), followed
    by any unconsumed results as ``orphan`` cards. Pure and idempotent:
    feeding the same cards again yields an equal list.
    """
    calls = [c for c in cards if c.kind == CARD_CALL]
    results = [c for c in cards if c.kind == CARD_RESULT]
    used: set[int] = set()
    paired: list[ToolCard] = []

    for call in calls:
        match = -1
        if call.id:
            match = next(
                (i for i, r in enumerate(results) if i not in used and r.id == call.id), -1,
            )
        if match == -1:
            match = next(
                (i for i, r in enumerate(results) if i not in used and r.name == call.name), -1,
            )
        if match == -1:
            paired.append(replace(call, status=STATUS_PENDING))
            continue
        used.add(match)
        paired.append(replace(call, text=results[match].text, status=STATUS_DONE))

    for i, result in enumerate(results):
        if i not in used:
            paired.append(replace(result, status=STATUS_ORPHAN))
    return paired


def collect_and_pair(messages: list[Any]) -> list[ToolCard]:
    cards: list[ToolCard] = []
    for message in messages:
        cards.extend(extract_tool_cards(message))
    return pair_tool_cards(cards)


# ── Display grouping ──


@dataclass
class MessageGroup:
    """Contiguous run of same-role messages rendered as one block."""

    role: str
    messages: list[Any] = field(default_factory=list)
    timestamp: int | None = None
    tool_cards: list[ToolCard] = field(default_factory=list)


def group_messages(messages: list[Any]) -> list[MessageGroup]:
    """Group history messages for display.

    Tool-result messages join the assistant group they follow, so their
    cards pair with the calls made there.
    """
    groups: list[MessageGroup] = []
    for message in messages:
        if is_tool_result_message(message):
            role = MessageRole.ASSISTANT.value
        else:
            role = normalize_role_for_grouping(message_role(message))
        current = groups[-1] if groups else None
        if current is None or current.role != role:
            current = MessageGroup(role=role, timestamp=message_timestamp(message))
            groups.append(current)
        current.messages.append(message)
    for group in groups:
        group.tool_cards = collect_and_pair(group.messages)
    return groups


# ── Rich Markup Renderer (for TUI) ──


def _esc(text: str) -> str:
    """Escape Rich markup characters."""
    return text.replace("[", "\\[")


def _trunc(text: str, length: int = 60) -> str:
    if len(text) <= length:
        return text
    return text[: length - 3] + "..."


def render_tool_card_rich(card: ToolCard) -> str:
    """One-line Rich markup for a paired card."""
    status_markup = {
        STATUS_PENDING: "[yellow]\\[running][/yellow]",
        STATUS_DONE: "[green]done[/green]",
        STATUS_ORPHAN: "[dim]result[/dim]",
    }.get(card.status, f"[dim]{_esc(card.status)}[/dim]")
    parts = ["[dim]▶[/dim]", f"[cyan]{_esc(card.name)}[/cyan]", status_markup]
    if card.text:
        first_line = card.text.strip().splitlines()[0] if card.text.strip() else ""
        if first_line:
            parts.append(f"[dim]{_esc(_trunc(first_line))}[/dim]")
    return "  ".join(parts)
