from __future__ import annotations

from chatrelay.adapters.events import (
    ChatAborted,
    ChatDelta,
    ChatError,
    ChatEvent,
    ChatToolStart,
    SeqGapDiagnostic,
    chat_event_to_dict,
    dict_to_chat_event,
)
from chatrelay.engine.sequence import SequenceGap


def test_delta_wire_shape() -> None:
    delta = ChatDelta(
        run_id="r1",
        session_key="s1",
        seq=4,
        message_index=1,
        message={"role": "assistant", "content": [{"type": "text", "text": "Hi"}], "timestamp": 5},
    )

    assert chat_event_to_dict(delta) == {
        "runId": "r1",
        "sessionKey": "s1",
        "seq": 4,
        "state": "delta",
        "messageIndex": 1,
        "message": {"role": "assistant", "content": [{"type": "text", "text": "Hi"}], "timestamp": 5},
    }


def test_tool_and_terminal_wire_shapes() -> None:
    start = chat_event_to_dict(ChatToolStart(run_id="r", session_key="s", seq=2, tool_name="search"))
    aborted = chat_event_to_dict(ChatAborted(run_id="r", session_key="s", seq=3))

    assert start["state"] == "tool-start"
    assert start["tool"] == {"name": "search"}
    assert aborted == {"runId": "r", "sessionKey": "s", "seq": 3, "state": "aborted"}


def test_parse_tolerates_missing_message_index() -> None:
    event = dict_to_chat_event({"runId": "r", "sessionKey": "s", "state": "delta", "message": {"text": "x"}})

    assert isinstance(event, ChatDelta)
    assert event.message_index is None
    assert event.seq == 0


def test_parse_error_and_unknown_state() -> None:
    err = dict_to_chat_event({"runId": "r", "sessionKey": "s", "state": "error", "errorMessage": "bad"})
    unknown = dict_to_chat_event({"runId": "r", "sessionKey": "s", "state": "mystery"})

    assert isinstance(err, ChatError)
    assert err.error_message == "bad"
    assert err.is_terminal
    assert type(unknown) is ChatEvent
    assert unknown.state == "mystery"
    assert dict_to_chat_event("nope") is None


def test_seq_gap_diagnostic_shape() -> None:
    diag = SeqGapDiagnostic.from_gap(SequenceGap("run", 2, 5), "s1")
    diag.ts = 100

    assert diag.to_dict() == {
        "runId": "run",
        "stream": "error",
        "ts": 100,
        "sessionKey": "s1",
        "data": {"reason": "seq gap", "expected": 2, "received": 5},
    }
