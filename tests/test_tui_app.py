from __future__ import annotations

from typing import Any

import pytest
from textual.widgets import Input

from chatrelay.engine.lifecycle import RunPhase
from chatrelay.tui.app import ChatRelayApp
from chatrelay.tui.widgets.conversation import (
    MessageGroupWidget,
    ReadingIndicator,
    StreamingBubble,
)
from chatrelay.tui.widgets.status_bar import StatusBar, _format_elapsed


class _FakeClient:
    def __init__(self) -> None:
        self.connected = False
        self.closed = False
        self.calls: list[tuple[str, dict[str, Any]]] = []
        self.history: list[dict[str, Any]] = [
            {"role": "user", "content": "hello", "timestamp": 1},
            {"role": "assistant", "content": "hi there", "timestamp": 2},
        ]

    async def connect(self) -> bool:
        self.connected = True
        return True

    async def close(self) -> None:
        self.closed = True

    async def request(self, method: str, params: dict[str, Any]) -> Any:
        self.calls.append((method, params))
        if method == "chat.history":
            return {"sessionKey": params["sessionKey"], "messages": list(self.history)}
        return {"ok": True}


@pytest.mark.asyncio
async def test_mount_loads_history() -> None:
    client = _FakeClient()
    app = ChatRelayApp(client=client, stream_events=False)

    async with app.run_test(size=(100, 30)) as pilot:
        await pilot.pause()

        assert app.chat_state.connected is True
        assert len(app.query(MessageGroupWidget)) == 2
        bar = app.query_one(StatusBar)
        assert bar.connected is True
        assert bar.phase == "idle"


@pytest.mark.asyncio
async def test_submit_starts_run_and_stream_renders_bubbles() -> None:
    client = _FakeClient()
    app = ChatRelayApp(client=client, stream_events=False)

    async with app.run_test(size=(100, 30)) as pilot:
        await pilot.pause()
        app.query_one("#chat-input", Input).focus()
        await pilot.press("y", "o", "enter")
        await pilot.pause()

        assert [m for m, _ in client.calls if m == "chat.send"] == ["chat.send"]
        assert app.chat_state.phase is RunPhase.STREAMING
        assert len(app.query(ReadingIndicator)) == 1

        run_id = app.chat_state.chat_run_id
        await app.processor.dispatch("chat", {
            "runId": run_id, "sessionKey": "main", "seq": 1, "state": "delta", "messageIndex": 0,
            "message": {"role": "assistant", "content": [{"type": "text", "text": "working"}]},
        })
        await pilot.pause()

        assert len(app.query(StreamingBubble)) == 1
        assert len(app.query(ReadingIndicator)) == 0

        await app.processor.dispatch("chat", {
            "runId": run_id, "sessionKey": "main", "seq": 2, "state": "final",
        })
        await pilot.pause()

        assert app.chat_state.phase is RunPhase.FINALIZED
        assert len(app.query(StreamingBubble)) == 0
        assert app.query_one(StatusBar).phase == "finalized"


def test_format_elapsed() -> None:
    assert _format_elapsed(5) == "5s"
    assert _format_elapsed(125) == "2m 5s"
    assert _format_elapsed(7300) == "2h 1m"
