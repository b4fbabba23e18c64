"""Client-side chat state for one session view."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from chatrelay.engine.lifecycle import RunPhase


@dataclass
class StreamingMessage:
    """One in-flight bubble of the active run."""
    index: int
    text: str
    started_at: int


@dataclass
class ChatState:
    session_key: str = "main"
    connected: bool = False
    chat_loading: bool = False
    chat_messages: list[dict[str, Any]] = field(default_factory=list)
    chat_thinking_level: str | None = None
    chat_sending: bool = False
    chat_run_id: str | None = None
    # Kept sorted by index.
    stream_messages: list[StreamingMessage] = field(default_factory=list)
    tools_running: int = 0
    current_tool: str | None = None
    last_error: str | None = None
    phase: RunPhase = RunPhase.IDLE

    @property
    def run_active(self) -> bool:
        return self.chat_run_id is not None

    def clear_run(self) -> None:
        """Drop transient streaming state for the active run."""
        self.chat_run_id = None
        self.stream_messages = []
        self.tools_running = 0
        self.current_tool = None
