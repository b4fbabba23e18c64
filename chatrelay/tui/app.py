"""chatrelay TUI: Textual chat viewer for one gateway session."""

from __future__ import annotations

import logging

from textual.app import App, ComposeResult
from textual.widgets import Input

from chatrelay.client.gateway_client import GatewayClient
from chatrelay.client.reconciler import ChatController
from chatrelay.client.state import ChatState
from chatrelay.client.view_model import build_chat_items
from chatrelay.tui.handlers.event_processor import EventProcessor
from chatrelay.tui.widgets.conversation import ConversationView
from chatrelay.tui.widgets.status_bar import StatusBar

logger = logging.getLogger(__name__)


class ChatRelayApp(App):
    """Terminal chat client rendering streamed agent runs."""

    TITLE = "chatrelay"
    SUB_TITLE = "Agent chat"

    DEFAULT_CSS = """
    #chat-input {
        dock: bottom;
        margin: 0 0 1 0;
    }
    """

    BINDINGS = [
        ("ctrl+q", "quit", "Quit"),
        ("ctrl+c", "abort_run", "Abort"),
    ]

    def __init__(
        self,
        url: str = "http://127.0.0.1:18789",
        session_key: str = "main",
        client=None,
        stream_events: bool = True,
    ) -> None:
        super().__init__()
        self.client = client or GatewayClient(url)
        self.chat_state = ChatState(session_key=session_key)
        self.controller = ChatController(self.chat_state, self.client)
        self.processor = EventProcessor(self)
        self._stream_events = stream_events

    def compose(self) -> ComposeResult:
        yield ConversationView(id="conversation")
        yield Input(placeholder="Message (enter to send, ctrl+c to abort)", id="chat-input")
        yield StatusBar(id="status-bar")

    async def on_mount(self) -> None:
        self.query_one(StatusBar).session_key = self.chat_state.session_key
        self.chat_state.connected = await self.client.connect()
        if self.chat_state.connected:
            await self.controller.load_history()
        self.refresh_view()
        if self._stream_events:
            self.run_worker(self.processor.run(), exclusive=True, group="events")

    def refresh_view(self) -> None:
        state = self.chat_state
        self.query_one(ConversationView).render_items(build_chat_items(state))
        bar = self.query_one(StatusBar)
        bar.connected = state.connected
        bar.phase = state.phase.value
        bar.tools_running = state.tools_running
        bar.current_tool = state.current_tool or ""
        bar.last_error = state.last_error or ""

    async def on_input_submitted(self, event: Input.Submitted) -> None:
        text = event.value
        event.input.value = ""
        await self.controller.send_message(text)
        self.refresh_view()

    async def action_abort_run(self) -> None:
        await self.controller.abort_run()
        self.refresh_view()

    async def action_quit(self) -> None:
        await self.client.close()
        await super().action_quit()
