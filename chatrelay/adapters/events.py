"""Outbound chat notifications and their wire format.

Every notification the router emits on the ``chat`` channel is one of
the dataclasses below. On the wire they are flat camelCase dicts; the
client parses them back with ``dict_to_chat_event`` and tolerates
missing optional fields.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from chatrelay.engine.models import ChatEventState, now_ms
from chatrelay.engine.sequence import SequenceGap

CHAT_CHANNEL = "chat"
AGENT_CHANNEL = "agent"


@dataclass
class ChatEvent:
    """Base chat notification."""
    state: str = ""
    run_id: str = ""
    session_key: str = ""
    seq: int = 0

    @property
    def is_terminal(self) -> bool:
        return self.state in {
            ChatEventState.FINAL.value,
            ChatEventState.ERROR.value,
            ChatEventState.ABORTED.value,
        }


@dataclass
class ChatDelta(ChatEvent):
    """Cumulative text of one bubble so far."""
    state: str = ChatEventState.DELTA.value
    # None when an older producer omitted the field; consumers read it as 0.
    message_index: int | None = 0
    message: dict[str, Any] | None = None


@dataclass
class ChatToolStart(ChatEvent):
    state: str = ChatEventState.TOOL_START.value
    tool_name: str = ""


@dataclass
class ChatToolEnd(ChatEvent):
    state: str = ChatEventState.TOOL_END.value
    tool_name: str = ""


@dataclass
class ChatFinal(ChatEvent):
    state: str = ChatEventState.FINAL.value


@dataclass
class ChatError(ChatEvent):
    state: str = ChatEventState.ERROR.value
    error_message: str | None = None


@dataclass
class ChatAborted(ChatEvent):
    state: str = ChatEventState.ABORTED.value


_STATE_MAP: dict[str, type[ChatEvent]] = {
    ChatEventState.DELTA.value: ChatDelta,
    ChatEventState.TOOL_START.value: ChatToolStart,
    ChatEventState.TOOL_END.value: ChatToolEnd,
    ChatEventState.FINAL.value: ChatFinal,
    ChatEventState.ERROR.value: ChatError,
    ChatEventState.ABORTED.value: ChatAborted,
}


def assistant_text_message(text: str, timestamp: int | None = None) -> dict[str, Any]:
    return {
        "role": "assistant",
        "content": [{"type": "text", "text": text}],
        "timestamp": timestamp if timestamp is not None else now_ms(),
    }


def chat_event_to_dict(event: ChatEvent) -> dict[str, Any]:
    """Convert a typed notification to its wire dict."""
    d: dict[str, Any] = {
        "runId": event.run_id,
        "sessionKey": event.session_key,
        "seq": event.seq,
        "state": event.state,
    }
    if isinstance(event, ChatDelta):
        if event.message_index is not None:
            d["messageIndex"] = event.message_index
        if event.message is not None:
            d["message"] = event.message
    elif isinstance(event, (ChatToolStart, ChatToolEnd)):
        d["tool"] = {"name": event.tool_name}
    elif isinstance(event, ChatError):
        if event.error_message is not None:
            d["errorMessage"] = event.error_message
    return d


def dict_to_chat_event(data: Any) -> ChatEvent | None:
    """Parse a wire dict into a typed notification.

    Returns None for non-dict payloads. Unknown states come back as a
    bare ``ChatEvent`` so callers can still apply session/run filters.
    """
    if not isinstance(data, dict):
        return None
    state = data.get("state")
    state = state if isinstance(state, str) else ""
    cls = _STATE_MAP.get(state, ChatEvent)
    run_id = data.get("runId")
    session_key = data.get("sessionKey")
    seq = data.get("seq")
    common: dict[str, Any] = {
        "run_id": run_id if isinstance(run_id, str) else "",
        "session_key": session_key if isinstance(session_key, str) else "",
        "seq": seq if isinstance(seq, int) and not isinstance(seq, bool) else 0,
    }
    if cls is ChatEvent:
        return ChatEvent(state=state, **common)
    if cls is ChatDelta:
        index = data.get("messageIndex")
        message = data.get("message")
        return ChatDelta(
            message_index=index if isinstance(index, int) and not isinstance(index, bool) else None,
            message=message if isinstance(message, dict) else None,
            **common,
        )
    if cls in (ChatToolStart, ChatToolEnd):
        tool = data.get("tool")
        name = tool.get("name") if isinstance(tool, dict) else None
        return cls(tool_name=name if isinstance(name, str) else "", **common)
    if cls is ChatError:
        message = data.get("errorMessage")
        return ChatError(
            error_message=message if isinstance(message, str) else None,
            **common,
        )
    return cls(**common)


@dataclass
class SeqGapDiagnostic:
    """General-channel report of a skipped sequence number."""
    run_id: str
    expected: int
    received: int
    session_key: str | None = None
    ts: int = field(default_factory=now_ms)

    @classmethod
    def from_gap(cls, gap: SequenceGap, session_key: str | None) -> SeqGapDiagnostic:
        return cls(
            run_id=gap.run_id,
            expected=gap.expected,
            received=gap.received,
            session_key=session_key,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "runId": self.run_id,
            "stream": "error",
            "ts": self.ts,
            "sessionKey": self.session_key,
            "data": {
                "reason": "seq gap",
                "expected": self.expected,
                "received": self.received,
            },
        }
