"""Conversation view: history groups, streaming bubbles and the reading indicator."""

from __future__ import annotations

from rich.text import Text
from textual.app import ComposeResult
from textual.containers import VerticalScroll
from textual.css.query import NoMatches
from textual.widget import Widget
from textual.widgets import Static

from chatrelay.client.view_model import (
    ChatItem,
    HistoryGroupItem,
    ReadingIndicatorItem,
    StreamingItem,
)
from chatrelay.shared.formatters.tool_cards import MessageGroup, render_tool_card_rich
from chatrelay.shared.models.message import (
    MessageRole,
    extract_text,
    is_tool_result_message,
)


def _esc(text: str) -> str:
    """Escape Rich markup characters in dynamic content."""
    return text.replace("[", "\\[")


_ROLE_LABELS = {
    MessageRole.USER.value: "[bold #4fc3f7]You[/bold #4fc3f7]",
    MessageRole.ASSISTANT.value: "[bold #aed581]Assistant[/bold #aed581]",
}


def format_group(group: MessageGroup) -> str:
    """Rich markup for one history group: header, texts, then paired tool cards."""
    lines = [_ROLE_LABELS.get(group.role, f"[bold dim]{_esc(group.role)}[/bold dim]")]
    for message in group.messages:
        if is_tool_result_message(message):
            continue
        text = extract_text(message)
        if text and text.strip():
            lines.append(_esc(text))
    lines.extend(render_tool_card_rich(card) for card in group.tool_cards)
    return "\n".join(lines)


class MessageGroupWidget(Static):
    DEFAULT_CSS = """
    MessageGroupWidget {
        margin: 1 0 0 0;
        padding: 0 1;
        height: auto;
    }
    MessageGroupWidget.role-user {
        border-left: thick #4fc3f7;
    }
    MessageGroupWidget.role-assistant {
        border-left: thick #aed581;
    }
    """

    def __init__(self, group: MessageGroup, **kwargs) -> None:
        super().__init__(format_group(group), markup=True, classes=f"role-{group.role}", **kwargs)
        self.group = group


class StreamingBubble(Static):
    DEFAULT_CSS = """
    StreamingBubble {
        margin: 1 0 0 0;
        padding: 0 1;
        height: auto;
        border-left: thick #e6a817;
    }
    """

    def __init__(self, item: StreamingItem, **kwargs) -> None:
        super().__init__(Text(item.text), **kwargs)
        self.index = item.index


class ReadingIndicator(Static):
    DEFAULT_CSS = """
    ReadingIndicator {
        margin: 1 0 0 0;
        padding: 0 1;
        height: auto;
        color: $text-muted;
    }
    """

    def __init__(self, item: ReadingIndicatorItem, **kwargs) -> None:
        label = f"⟳ {_esc(item.tool_name)}" if item.tool_name else "· · ·"
        super().__init__(label, markup=True, **kwargs)
        self.tool_name = item.tool_name


class ConversationView(Widget):
    """Scrollable pane that re-renders from the chat view model."""

    DEFAULT_CSS = """
    ConversationView {
        height: 1fr;
    }
    """

    def __init__(self, **kwargs) -> None:
        super().__init__(**kwargs)
        self._items: list[ChatItem] = []

    def compose(self) -> ComposeResult:
        yield VerticalScroll(id="message-container")

    def on_mount(self) -> None:
        if self._items:
            self.render_items(self._items)

    def _message_container(self) -> VerticalScroll | None:
        try:
            return self.query_one("#message-container", VerticalScroll)
        except NoMatches:
            return None

    def is_near_bottom(self) -> bool:
        container = self._message_container()
        if container is None:
            return False
        if container.max_scroll_y == 0:
            return True
        return container.scroll_y >= container.max_scroll_y - 3

    def render_items(self, items: list[ChatItem]) -> None:
        self._items = items
        container = self._message_container()
        if container is None:
            return
        follow = self.is_near_bottom()
        container.remove_children()
        widgets: list[Widget] = []
        for item in items:
            if isinstance(item, HistoryGroupItem):
                widgets.append(MessageGroupWidget(item.group))
            elif isinstance(item, StreamingItem):
                widgets.append(StreamingBubble(item))
            elif isinstance(item, ReadingIndicatorItem):
                widgets.append(ReadingIndicator(item))
        if widgets:
            container.mount_all(widgets)
        if follow:
            container.scroll_end(animate=False)
