from __future__ import annotations

from typing import Any

from chatrelay.adapters.chat_router import AgentEventHandler
from chatrelay.engine.models import AgentEvent, RunLink
from chatrelay.engine.run_context import RunContextStore
from chatrelay.engine.run_state import ChatRunState
from chatrelay.engine.sequence import SequenceGuard


class _Recorder:
    def __init__(self) -> None:
        self.broadcasts: list[tuple[str, dict[str, Any], bool]] = []
        self.session_sends: list[tuple[str, str, dict[str, Any]]] = []

    def broadcast(self, channel: str, payload: dict[str, Any], *, drop_if_slow: bool = False) -> None:
        self.broadcasts.append((channel, payload, drop_if_slow))

    def send_to_session(self, session_key: str, channel: str, payload: dict[str, Any]) -> None:
        self.session_sends.append((session_key, channel, payload))

    def chat(self) -> list[dict[str, Any]]:
        return [p for c, p, _ in self.broadcasts if c == "chat"]

    def agent(self) -> list[dict[str, Any]]:
        return [p for c, p, _ in self.broadcasts if c == "agent"]

    def gaps(self) -> list[dict[str, Any]]:
        return [p for p in self.agent() if p.get("data", {}).get("reason") == "seq gap"]


def _build(verbose: bool = False):
    recorder = _Recorder()
    state = ChatRunState()
    contexts = RunContextStore()
    router = AgentEventHandler(
        broadcast=recorder.broadcast,
        send_to_session=recorder.send_to_session,
        run_state=state,
        sequence_guard=SequenceGuard(),
        resolve_session_key_for_run=contexts.resolve_session_key,
        clear_agent_run_context=contexts.clear,
        should_emit_tool_events=lambda *_: verbose,
    )
    return router, state, contexts, recorder


def _text(run_id: str, seq: int, text: str) -> AgentEvent:
    return AgentEvent(run_id=run_id, seq=seq, stream="assistant", data={"text": text})


def _tool(run_id: str, seq: int, phase: str, name: str) -> AgentEvent:
    return AgentEvent(run_id=run_id, seq=seq, stream="tool", data={"phase": phase, "name": name})


def _lifecycle(run_id: str, seq: int, phase: str, **extra: Any) -> AgentEvent:
    return AgentEvent(run_id=run_id, seq=seq, stream="lifecycle", data={"phase": phase, **extra})


def test_end_to_end_bubbles_split_at_tool_start() -> None:
    router, state, contexts, rec = _build()
    state.registry.add("ctx", RunLink(session_key="s1", client_run_id="r1"))
    contexts.register("ctx", session_key="s1")

    for evt in [
        _text("ctx", 1, "Hello"),
        _tool("ctx", 2, "start", "search"),
        _tool("ctx", 3, "result", "search"),
        _text("ctx", 4, "Found it"),
        _lifecycle("ctx", 5, "end"),
    ]:
        router.handle(evt)

    chat = rec.chat()
    assert [p["state"] for p in chat] == ["delta", "tool-start", "tool-end", "delta", "final"]
    assert chat[0]["messageIndex"] == 0
    assert chat[0]["message"]["content"] == [{"type": "text", "text": "Hello"}]
    assert chat[1]["tool"] == {"name": "search"}
    assert chat[2]["tool"] == {"name": "search"}
    assert chat[3]["messageIndex"] == 1
    assert chat[3]["message"]["content"][0]["text"] == "Found it"
    assert all(p["runId"] == "r1" and p["sessionKey"] == "s1" for p in chat)
    assert [p["seq"] for p in chat] == [1, 2, 3, 4, 5]

    assert rec.gaps() == []
    assert not state.has_residue("r1")
    assert len(state.registry) == 0
    assert len(contexts) == 0


def test_only_deltas_are_droppable() -> None:
    router, state, _, rec = _build()
    state.registry.add("ctx", RunLink("s1", "r1"))

    router.handle(_text("ctx", 1, "Hi"))
    router.handle(_tool("ctx", 2, "start", "read"))
    router.handle(_tool("ctx", 3, "result", "read"))
    router.handle(_lifecycle("ctx", 4, "end"))

    flags = {p["state"]: drop for c, p, drop in rec.broadcasts if c == "chat"}
    assert flags == {"delta": True, "tool-start": False, "tool-end": False, "final": False}


def test_chat_notifications_are_also_sent_to_session() -> None:
    router, state, _, rec = _build()
    state.registry.add("ctx", RunLink("s1", "r1"))

    router.handle(_text("ctx", 1, "Hi"))
    router.handle(_lifecycle("ctx", 2, "end"))

    session_chat = [p for key, c, p in rec.session_sends if key == "s1" and c == "chat"]
    assert [p["state"] for p in session_chat] == ["delta", "final"]
    session_agent = [p for key, c, p in rec.session_sends if key == "s1" and c == "agent"]
    assert [p["seq"] for p in session_agent] == [1, 2]
    assert all(p["sessionKey"] == "s1" for p in session_agent)


def test_message_index_equals_tool_start_count() -> None:
    router, state, _, rec = _build()
    state.registry.add("ctx", RunLink("s1", "r1"))

    seq = 0
    for name in ["a", "b", "c"]:
        seq += 1
        router.handle(_text("ctx", seq, f"before {name}"))
        seq += 1
        router.handle(_tool("ctx", seq, "start", name))
    seq += 1
    router.handle(_tool("ctx", seq, "update", "c"))
    seq += 1
    router.handle(_text("ctx", seq, "after"))

    deltas = [p for p in rec.chat() if p["state"] == "delta"]
    assert [p["messageIndex"] for p in deltas] == [0, 1, 2, 3]
    assert state.current_index("r1") == 3


def test_seq_gap_reported_once_without_dropping_event() -> None:
    router, state, _, rec = _build()
    state.registry.add("ctx", RunLink("s1", "r1"))

    router.handle(_text("ctx", 1, "a"))
    router.handle(_text("ctx", 3, "ab"))
    router.handle(_text("ctx", 4, "abc"))

    gaps = rec.gaps()
    assert len(gaps) == 1
    assert gaps[0]["runId"] == "ctx"
    assert gaps[0]["stream"] == "error"
    assert gaps[0]["sessionKey"] == "s1"
    assert gaps[0]["data"] == {"reason": "seq gap", "expected": 2, "received": 3}
    assert [p["message"]["content"][0]["text"] for p in rec.chat()] == ["a", "ab", "abc"]


def test_verbose_off_hides_raw_tool_events_but_keeps_chat_tool_events() -> None:
    router, state, _, rec = _build(verbose=False)
    state.registry.add("ctx", RunLink("s1", "r1"))

    router.handle(_text("ctx", 1, "x"))
    router.handle(_tool("ctx", 2, "start", "search"))
    router.handle(_tool("ctx", 3, "result", "search"))
    router.handle(_text("ctx", 4, "y"))

    assert [p["stream"] for p in rec.agent()] == ["assistant", "assistant"]
    assert [p["state"] for p in rec.chat()] == ["delta", "tool-start", "tool-end", "delta"]
    assert rec.chat()[-1]["messageIndex"] == 1
    assert router.metrics.tool_details_suppressed == 2


def test_verbose_on_forwards_raw_tool_events() -> None:
    router, state, _, rec = _build(verbose=True)
    state.registry.add("ctx", RunLink("s1", "r1"))

    router.handle(_tool("ctx", 1, "start", "search"))

    assert [p["stream"] for p in rec.agent()] == ["tool"]
    assert rec.agent()[0]["data"] == {"phase": "start", "name": "search"}


def test_aborted_run_emits_nothing_and_cleans_up_on_terminal() -> None:
    router, state, contexts, rec = _build()
    state.registry.add("ctx", RunLink("s1", "r1"))
    contexts.register("ctx", session_key="s1")
    state.mark_aborted("r1")

    router.handle(_text("ctx", 1, "ignored"))
    router.handle(_tool("ctx", 2, "start", "search"))
    router.handle(_lifecycle("ctx", 3, "error", error="cancelled"))

    assert rec.chat() == []
    assert not state.has_residue("r1")
    assert "ctx" not in state.aborted_runs
    assert len(state.registry) == 0
    assert len(contexts) == 0
    assert router.metrics.aborted_runs_cleaned == 1


def test_abort_marker_on_internal_run_id_also_suppresses() -> None:
    router, state, _, rec = _build()
    state.registry.add("ctx", RunLink("s1", "r1"))
    state.mark_aborted("ctx")

    router.handle(_text("ctx", 1, "ignored"))
    router.handle(_lifecycle("ctx", 2, "end"))

    assert rec.chat() == []
    assert state.aborted_runs == {}


def test_unlinked_run_falls_back_to_resolver_and_internal_id() -> None:
    router, state, contexts, rec = _build()
    contexts.register("run-x", session_key="s2")

    router.handle(_text("run-x", 1, "direct"))
    router.handle(_lifecycle("run-x", 2, "error", error={"message": "boom"}))

    chat = rec.chat()
    assert [p["state"] for p in chat] == ["delta", "error"]
    assert all(p["runId"] == "run-x" and p["sessionKey"] == "s2" for p in chat)
    assert chat[1]["errorMessage"] == "boom"
    assert not state.has_residue("run-x")
    assert len(contexts) == 0


def test_error_without_message_omits_error_field() -> None:
    router, state, _, rec = _build()
    state.registry.add("ctx", RunLink("s1", "r1"))

    router.handle(_lifecycle("ctx", 1, "error"))

    assert rec.chat() == [{"runId": "r1", "sessionKey": "s1", "seq": 1, "state": "error"}]


def test_unresolvable_session_emits_no_chat_but_releases_context() -> None:
    router, state, contexts, rec = _build()
    contexts.register("orphan")

    router.handle(_text("orphan", 1, "lost"))
    router.handle(_lifecycle("orphan", 2, "end"))

    assert rec.chat() == []
    assert [p["stream"] for p in rec.agent()] == ["assistant", "lifecycle"]
    assert len(contexts) == 0


def test_serial_runs_on_one_context_are_attributed_in_order() -> None:
    router, state, _, rec = _build()
    state.registry.add("ctx", RunLink("s1", "r1"))
    state.registry.add("ctx", RunLink("s1", "r2"))

    router.handle(_text("ctx", 1, "first"))
    router.handle(_lifecycle("ctx", 2, "end"))
    router.handle(_text("ctx", 1, "second"))
    router.handle(_lifecycle("ctx", 2, "end"))

    chat = rec.chat()
    assert [(p["runId"], p["state"]) for p in chat] == [
        ("r1", "delta"), ("r1", "final"), ("r2", "delta"), ("r2", "final"),
    ]
    assert rec.gaps() == []
    assert len(state.registry) == 0


def test_lifecycle_start_is_not_terminal() -> None:
    router, state, contexts, rec = _build()
    state.registry.add("ctx", RunLink("s1", "r1"))
    contexts.register("ctx", session_key="s1")

    router.handle(_lifecycle("ctx", 1, "start"))

    assert rec.chat() == []
    assert state.registry.peek("ctx") == RunLink("s1", "r1")
    assert len(contexts) == 1
