from __future__ import annotations

from types import SimpleNamespace

import pytest

from chatrelay.client.reconciler import ChatController
from chatrelay.client.state import ChatState
from chatrelay.tui.handlers.event_processor import EventProcessor


def _app(run_id: str | None = "r1"):
    state = ChatState(session_key="main", chat_run_id=run_id)
    app = SimpleNamespace(chat_state=state, controller=ChatController(state), refreshes=0)

    def refresh_view() -> None:
        app.refreshes += 1

    app.refresh_view = refresh_view
    return app


@pytest.mark.asyncio
async def test_chat_notification_updates_state_and_refreshes() -> None:
    app = _app()
    processor = EventProcessor(app)

    await processor.dispatch("chat", {
        "runId": "r1", "sessionKey": "main", "seq": 1, "state": "delta", "messageIndex": 0,
        "message": {"role": "assistant", "content": [{"type": "text", "text": "hi"}]},
    })

    assert [m.text for m in app.chat_state.stream_messages] == ["hi"]
    assert app.refreshes == 1


@pytest.mark.asyncio
async def test_ignored_notification_does_not_refresh() -> None:
    app = _app()
    processor = EventProcessor(app)

    await processor.dispatch("chat", {"runId": "r1", "sessionKey": "other", "seq": 1, "state": "final"})

    assert app.refreshes == 0
    assert app.chat_state.chat_run_id == "r1"


@pytest.mark.asyncio
async def test_seq_gap_diagnostic_is_counted() -> None:
    app = _app()
    processor = EventProcessor(app)

    await processor.dispatch("agent", {
        "runId": "ctx", "stream": "error", "data": {"reason": "seq gap", "expected": 2, "received": 4},
    })
    await processor.dispatch("agent", {"runId": "ctx", "stream": "assistant", "data": {"text": "x"}})

    assert processor.seq_gaps_seen == 1
    assert app.refreshes == 0
