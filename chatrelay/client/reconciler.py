"""Client reconciler.

Applies chat notifications for the active session to ``ChatState``.
While a run streams, bubbles live in ``state.stream_messages`` keyed by
message index; every delta replaces its bubble's text wholesale. Once a
terminal notification arrives the streaming buffer is discarded and the
authoritative message list is re-fetched from history, so the view ends
up identical to a fresh load.
"""
from __future__ import annotations

import logging
import uuid
from collections.abc import Callable
from typing import Any, Protocol

from chatrelay.adapters.events import (
    ChatDelta,
    ChatError,
    ChatEvent,
    ChatToolEnd,
    ChatToolStart,
    dict_to_chat_event,
)
from chatrelay.client.state import ChatState, StreamingMessage
from chatrelay.engine.errors import GatewayRequestError
from chatrelay.engine.lifecycle import RunPhase, validate_transition
from chatrelay.engine.models import ChatEventState, now_ms
from chatrelay.shared.models.message import extract_text, text_message

logger = logging.getLogger(__name__)

HISTORY_LIMIT = 200

_TERMINAL_PHASES: dict[str, RunPhase] = {
    ChatEventState.FINAL.value: RunPhase.FINALIZED,
    ChatEventState.ABORTED.value: RunPhase.ABORTED,
    ChatEventState.ERROR.value: RunPhase.ERRORED,
}


class GatewayTransport(Protocol):
    connected: bool

    async def request(self, method: str, params: dict[str, Any]) -> Any: ...


class ChatController:
    """Drives one ``ChatState`` from user actions and gateway notifications."""

    def __init__(
        self,
        state: ChatState,
        client: GatewayTransport | None = None,
        new_run_id: Callable[[], str] | None = None,
    ) -> None:
        self.state = state
        self.client = client
        self._new_run_id = new_run_id or (lambda: str(uuid.uuid4()))

    @property
    def _online(self) -> bool:
        return self.client is not None and bool(getattr(self.client, "connected", False))

    def _transition(self, target: RunPhase) -> None:
        validate_transition(self.state.phase, target)
        self.state.phase = target

    def _enter_streaming(self) -> None:
        if self.state.phase is not RunPhase.STREAMING:
            self._transition(RunPhase.STREAMING)

    # ── Notifications ──

    def handle_event(self, payload: dict[str, Any] | ChatEvent | None) -> str | None:
        """Apply one chat notification; return its state, or None if ignored."""
        event = payload if isinstance(payload, ChatEvent) else dict_to_chat_event(payload)
        if event is None:
            return None
        state = self.state
        if event.session_key != state.session_key:
            return None
        if event.run_id and state.chat_run_id and event.run_id != state.chat_run_id:
            logger.debug(
                "Ignoring notification for stale run=%s active=%s",
                event.run_id, state.chat_run_id,
            )
            return None

        if isinstance(event, ChatDelta):
            text = extract_text(event.message)
            if text is None:
                return event.state
            self._enter_streaming()
            index = event.message_index if event.message_index is not None else 0
            existing = next((m for m in state.stream_messages if m.index == index), None)
            if existing is not None:
                existing.text = text
            else:
                state.stream_messages = sorted(
                    [*state.stream_messages, StreamingMessage(index=index, text=text, started_at=now_ms())],
                    key=lambda m: m.index,
                )
        elif isinstance(event, ChatToolStart):
            self._enter_streaming()
            state.tools_running += 1
            state.current_tool = event.tool_name or None
        elif isinstance(event, ChatToolEnd):
            self._enter_streaming()
            state.tools_running = max(0, state.tools_running - 1)
            if state.tools_running == 0:
                state.current_tool = None
        elif event.state in _TERMINAL_PHASES:
            state.clear_run()
            if isinstance(event, ChatError):
                state.last_error = event.error_message or "chat error"
            if state.phase is RunPhase.STREAMING:
                self._transition(_TERMINAL_PHASES[event.state])
        return event.state

    async def process_event(self, payload: dict[str, Any] | ChatEvent | None) -> str | None:
        """``handle_event`` plus a history re-fetch after terminal states."""
        result = self.handle_event(payload)
        if result in _TERMINAL_PHASES:
            # The run error stays visible after the re-fetch.
            await self.load_history(keep_error=result == ChatEventState.ERROR.value)
        return result

    # ── User actions ──

    async def load_history(self, *, keep_error: bool = False) -> None:
        if not self._online:
            return
        state = self.state
        state.chat_loading = True
        if not keep_error:
            state.last_error = None
        try:
            res = await self.client.request(
                "chat.history",
                {"sessionKey": state.session_key, "limit": HISTORY_LIMIT},
            )
            res = res if isinstance(res, dict) else {}
            messages = res.get("messages")
            state.chat_messages = messages if isinstance(messages, list) else []
            state.chat_thinking_level = res.get("thinkingLevel")
        except GatewayRequestError as exc:
            state.last_error = str(exc)
        finally:
            state.chat_loading = False

    async def send_message(self, message: str) -> bool:
        if not self._online:
            return False
        text = message.strip()
        if not text:
            return False
        state = self.state
        state.chat_messages = [*state.chat_messages, text_message("user", text)]
        state.chat_sending = True
        state.last_error = None
        run_id = self._new_run_id()
        self._transition(RunPhase.STREAMING)
        state.clear_run()
        state.chat_run_id = run_id
        try:
            await self.client.request(
                "chat.send",
                {
                    "sessionKey": state.session_key,
                    "message": text,
                    "deliver": False,
                    "idempotencyKey": run_id,
                },
            )
            return True
        except GatewayRequestError as exc:
            error = str(exc)
            logger.warning("chat.send failed run=%s: %s", run_id, error)
            state.clear_run()
            state.last_error = error
            state.chat_messages = [
                *state.chat_messages,
                text_message("assistant", f"Error: {error}"),
            ]
            self._transition(RunPhase.ERRORED)
            return False
        finally:
            state.chat_sending = False

    async def abort_run(self) -> bool:
        if not self._online:
            return False
        state = self.state
        params: dict[str, Any] = {"sessionKey": state.session_key}
        if state.chat_run_id:
            params["runId"] = state.chat_run_id
        try:
            await self.client.request("chat.abort", params)
            return True
        except GatewayRequestError as exc:
            state.last_error = str(exc)
            return False
