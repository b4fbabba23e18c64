"""Render-ready chat items.

``build_chat_items`` flattens ``ChatState`` into the list a view draws
top to bottom: persisted history groups, then the active run's
streaming bubbles in index order, then a reading indicator while the
run is waiting on text or tools.
"""
from __future__ import annotations

from dataclasses import dataclass

from chatrelay.client.state import ChatState
from chatrelay.shared.formatters.tool_cards import MessageGroup, group_messages


@dataclass
class HistoryGroupItem:
    group: MessageGroup


@dataclass
class StreamingItem:
    index: int
    text: str
    started_at: int


@dataclass
class ReadingIndicatorItem:
    # Set only while tools are running.
    tool_name: str | None = None


ChatItem = HistoryGroupItem | StreamingItem | ReadingIndicatorItem


def build_chat_items(state: ChatState) -> list[ChatItem]:
    items: list[ChatItem] = [HistoryGroupItem(group=g) for g in group_messages(state.chat_messages)]

    for message in sorted(state.stream_messages, key=lambda m: m.index):
        items.append(StreamingItem(index=message.index, text=message.text, started_at=message.started_at))

    if state.run_active:
        has_text = any(m.text.strip() for m in state.stream_messages)
        if not has_text or state.tools_running > 0:
            items.append(ReadingIndicatorItem(
                tool_name=state.current_tool if state.tools_running > 0 else None,
            ))
    return items
