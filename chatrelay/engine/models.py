"""Core data models for the relay engine.

Raw agent events arrive as JSON-ish dicts with camelCase keys. They are
parsed into ``AgentEvent`` once at the edge so the router works with
attributes instead of nested ``dict.get`` chains.
"""
from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from .errors import InvalidAgentEventError


def now_ms() -> int:
    return int(time.time() * 1000)


class AgentStream(Enum):
    """Category of a raw agent event."""
    ASSISTANT = "assistant"
    TOOL = "tool"
    LIFECYCLE = "lifecycle"
    ERROR = "error"


class LifecyclePhase(Enum):
    START = "start"
    END = "end"
    ERROR = "error"


class ToolPhase(Enum):
    START = "start"
    UPDATE = "update"
    RESULT = "result"


class ChatEventState(Enum):
    """``state`` field of an outbound chat notification."""
    DELTA = "delta"
    TOOL_START = "tool-start"
    TOOL_END = "tool-end"
    FINAL = "final"
    ERROR = "error"
    ABORTED = "aborted"


TERMINAL_CHAT_STATES = frozenset({
    ChatEventState.FINAL,
    ChatEventState.ERROR,
    ChatEventState.ABORTED,
})

TERMINAL_LIFECYCLE_PHASES = frozenset({
    LifecyclePhase.END.value,
    LifecyclePhase.ERROR.value,
})


@dataclass(frozen=True)
class RunLink:
    """Externally visible identity of one client-issued run."""
    session_key: str
    client_run_id: str


@dataclass
class SessionEntry:
    """Per-session settings consulted while routing."""
    session_key: str
    # Internal execution-context id the executor uses as its runId.
    session_id: str | None = None
    verbose_level: str | None = None
    thinking_level: str | None = None
    updated_at: int = field(default_factory=now_ms)


@dataclass
class AgentEvent:
    """One raw event from the upstream executor."""

    run_id: str
    seq: int
    stream: str
    ts: int = field(default_factory=now_ms)
    data: dict[str, Any] = field(default_factory=dict)
    session_key: str | None = None

    @classmethod
    def from_dict(cls, payload: Any) -> AgentEvent:
        if not isinstance(payload, dict):
            raise InvalidAgentEventError("payload must be an object")
        run_id = payload.get("runId")
        if not isinstance(run_id, str) or not run_id:
            raise InvalidAgentEventError("runId must be a non-empty string")
        seq = payload.get("seq")
        if isinstance(seq, bool) or not isinstance(seq, int):
            raise InvalidAgentEventError("seq must be an integer")
        stream = payload.get("stream")
        if not isinstance(stream, str) or not stream:
            raise InvalidAgentEventError("stream must be a non-empty string")
        data = payload.get("data")
        if data is None:
            data = {}
        if not isinstance(data, dict):
            raise InvalidAgentEventError("data must be an object")
        ts = payload.get("ts")
        session_key = payload.get("sessionKey")
        return cls(
            run_id=run_id,
            seq=seq,
            stream=stream,
            ts=ts if isinstance(ts, int) and not isinstance(ts, bool) else now_ms(),
            data=data,
            session_key=session_key if isinstance(session_key, str) else None,
        )

    def to_dict(self, session_key: str | None = None) -> dict[str, Any]:
        d: dict[str, Any] = {
            "runId": self.run_id,
            "seq": self.seq,
            "stream": self.stream,
            "ts": self.ts,
            "data": self.data,
        }
        key = session_key or self.session_key
        if key:
            d["sessionKey"] = key
        return d

    # ── Classification helpers ──

    @property
    def lifecycle_phase(self) -> str | None:
        if self.stream != AgentStream.LIFECYCLE.value:
            return None
        phase = self.data.get("phase")
        return phase if isinstance(phase, str) else None

    @property
    def is_terminal(self) -> bool:
        return self.lifecycle_phase in TERMINAL_LIFECYCLE_PHASES

    @property
    def assistant_text(self) -> str | None:
        if self.stream != AgentStream.ASSISTANT.value:
            return None
        text = self.data.get("text")
        return text if isinstance(text, str) else None

    @property
    def tool_marker(self) -> tuple[str, str] | None:
        """``(phase, name)`` for tool events carrying both fields."""
        if self.stream != AgentStream.TOOL.value:
            return None
        phase = self.data.get("phase")
        name = self.data.get("name")
        if isinstance(phase, str) and isinstance(name, str):
            return phase, name
        return None
