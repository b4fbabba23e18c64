"""Agent event router.

Consumes raw executor events one at a time and turns them into chat
notifications for the run they belong to:

- resolves the session key and client run id through the run link
  registry (falling back to the run-context resolver and the raw run id),
- reports sequence gaps on the general ``agent`` channel without
  dropping the event,
- bumps the run's message index on every tool start so that later
  deltas land in a new bubble,
- emits delta / tool-start / tool-end / final / error notifications,
  or cleanup only for runs that were aborted.

Processing is synchronous and single-threaded: one event is fully
handled before the next, so the run-state maps never see interleaved
mutation.
"""
from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from chatrelay.adapters.events import (
    AGENT_CHANNEL,
    CHAT_CHANNEL,
    ChatDelta,
    ChatError,
    ChatEvent,
    ChatFinal,
    ChatToolEnd,
    ChatToolStart,
    SeqGapDiagnostic,
    assistant_text_message,
    chat_event_to_dict,
)
from chatrelay.engine.errors import format_error_for_log
from chatrelay.engine.models import AgentEvent, AgentStream, LifecyclePhase, ToolPhase
from chatrelay.engine.run_state import ChatRunState
from chatrelay.engine.sequence import SequenceGuard

logger = logging.getLogger(__name__)

# Signature: broadcast(channel, payload, *, drop_if_slow=False) -> None
Broadcast = Callable[..., None]
# Signature: send_to_session(session_key, channel, payload) -> None
SendToSession = Callable[[str, str, dict[str, Any]], None]
# Signature: resolve_session_key_for_run(run_id) -> session_key | None
SessionKeyResolver = Callable[[str], "str | None"]
# Signature: clear_agent_run_context(run_id) -> None
RunContextRelease = Callable[[str], None]
# Signature: should_emit_tool_events(run_id, session_key, client_run_id) -> bool
ToolVerbosity = Callable[[str, "str | None", str], bool]


@dataclass
class RouterMetrics:
    """Lightweight counters for observability."""

    events_routed: int = 0
    deltas_emitted: int = 0
    tool_events_emitted: int = 0
    finals_emitted: int = 0
    errors_emitted: int = 0
    seq_gaps: int = 0
    tool_details_suppressed: int = 0
    aborted_events_suppressed: int = 0
    aborted_runs_cleaned: int = 0

    def snapshot(self) -> dict[str, int]:
        return dict(self.__dict__)


class AgentEventHandler:
    """Routes raw ``AgentEvent``s to chat notifications."""

    def __init__(
        self,
        *,
        broadcast: Broadcast,
        send_to_session: SendToSession,
        run_state: ChatRunState,
        sequence_guard: SequenceGuard,
        resolve_session_key_for_run: SessionKeyResolver,
        clear_agent_run_context: RunContextRelease,
        should_emit_tool_events: ToolVerbosity | None = None,
    ) -> None:
        self._broadcast = broadcast
        self._send_to_session = send_to_session
        self._state = run_state
        self._seq = sequence_guard
        self._resolve_session_key = resolve_session_key_for_run
        self._clear_run_context = clear_agent_run_context
        self._should_emit_tool_events = should_emit_tool_events or (lambda _run, _session, _client_run: False)
        self.metrics = RouterMetrics()

    def __call__(self, evt: AgentEvent) -> None:
        self.handle(evt)

    # ── Emitters ──

    def _publish(self, event: ChatEvent, *, drop_if_slow: bool = False) -> None:
        payload = chat_event_to_dict(event)
        self._broadcast(CHAT_CHANNEL, payload, drop_if_slow=drop_if_slow)
        self._send_to_session(event.session_key, CHAT_CHANNEL, payload)

    def _emit_tool_event(
        self,
        session_key: str,
        client_run_id: str,
        seq: int,
        phase: str,
        tool_name: str,
    ) -> None:
        if phase == ToolPhase.START.value:
            # Deltas after this point belong to the next bubble.
            self._state.advance_index(client_run_id)
            event: ChatEvent = ChatToolStart(
                run_id=client_run_id, session_key=session_key, seq=seq, tool_name=tool_name,
            )
        else:
            event = ChatToolEnd(
                run_id=client_run_id, session_key=session_key, seq=seq, tool_name=tool_name,
            )
        self.metrics.tool_events_emitted += 1
        self._publish(event)

    def _emit_chat_delta(
        self,
        session_key: str,
        client_run_id: str,
        seq: int,
        text: str,
    ) -> None:
        message_index = self._state.current_index(client_run_id)
        self.metrics.deltas_emitted += 1
        self._publish(
            ChatDelta(
                run_id=client_run_id,
                session_key=session_key,
                seq=seq,
                message_index=message_index,
                message=assistant_text_message(text),
            ),
            drop_if_slow=True,
        )

    def _emit_chat_final(
        self,
        session_key: str,
        client_run_id: str,
        seq: int,
        failed: bool,
        error: Any = None,
    ) -> None:
        self._state.drop_progress(client_run_id)
        if not failed:
            self.metrics.finals_emitted += 1
            self._publish(ChatFinal(run_id=client_run_id, session_key=session_key, seq=seq))
            return
        self.metrics.errors_emitted += 1
        self._publish(
            ChatError(
                run_id=client_run_id,
                session_key=session_key,
                seq=seq,
                error_message=format_error_for_log(error) if error else None,
            )
        )

    def _release_run(self, run_id: str) -> None:
        self._seq.forget(run_id)
        # Later sends queued on this context still need it.
        if run_id not in self._state.registry:
            self._clear_run_context(run_id)

    # ── Main entry ──

    def handle(self, evt: AgentEvent) -> None:
        state = self._state
        self.metrics.events_routed += 1

        chat_link = state.registry.peek(evt.run_id)
        if chat_link is not None:
            session_key: str | None = chat_link.session_key
            client_run_id = chat_link.client_run_id
        else:
            session_key = self._resolve_session_key(evt.run_id) or evt.session_key
            client_run_id = evt.run_id
        is_aborted = state.is_aborted(client_run_id, evt.run_id)
        agent_payload = evt.to_dict(session_key)

        # Verbose-off hides the raw tool stream only; message indexing and
        # tool-start/end notifications below still run.
        skip_tool_detail = (
            evt.stream == AgentStream.TOOL.value
            and not self._should_emit_tool_events(evt.run_id, session_key, client_run_id)
        )
        if skip_tool_detail:
            self.metrics.tool_details_suppressed += 1

        gap = self._seq.observe(evt.run_id, evt.seq)
        if gap is not None:
            self.metrics.seq_gaps += 1
            self._broadcast(AGENT_CHANNEL, SeqGapDiagnostic.from_gap(gap, session_key).to_dict())
        if not skip_tool_detail:
            self._broadcast(AGENT_CHANNEL, agent_payload)

        lifecycle_phase = evt.lifecycle_phase
        terminal = evt.is_terminal

        if session_key:
            if not skip_tool_detail:
                self._send_to_session(session_key, AGENT_CHANNEL, agent_payload)

            text = evt.assistant_text
            tool_marker = evt.tool_marker
            if is_aborted and not terminal and (text is not None or tool_marker is not None):
                self.metrics.aborted_events_suppressed += 1

            if not is_aborted and text is not None:
                self._emit_chat_delta(session_key, client_run_id, evt.seq, text)
            elif not is_aborted and tool_marker is not None:
                phase, name = tool_marker
                if phase in (ToolPhase.START.value, ToolPhase.RESULT.value):
                    self._emit_tool_event(session_key, client_run_id, evt.seq, phase, name)
            elif not is_aborted and terminal:
                failed = lifecycle_phase == LifecyclePhase.ERROR.value
                if chat_link is not None:
                    finished = state.registry.shift(evt.run_id)
                    if finished is None:
                        self._release_run(evt.run_id)
                        return
                    self._emit_chat_final(
                        finished.session_key,
                        finished.client_run_id,
                        evt.seq,
                        failed,
                        evt.data.get("error"),
                    )
                else:
                    self._emit_chat_final(
                        session_key, evt.run_id, evt.seq, failed, evt.data.get("error"),
                    )
            elif is_aborted and terminal:
                state.clear_aborted(client_run_id, evt.run_id)
                state.drop_progress(client_run_id)
                if chat_link is not None:
                    state.registry.remove(evt.run_id, client_run_id, session_key)
                self.metrics.aborted_runs_cleaned += 1
                logger.info(
                    "Aborted run cleaned up run=%s client_run=%s session=%s",
                    evt.run_id, client_run_id, session_key,
                )

        if terminal:
            self._release_run(evt.run_id)
