from __future__ import annotations

import pytest

from chatrelay.engine.run_context import RunContextStore
from chatrelay.engine.verbose import VerboseResolver, normalize_verbose_level
from chatrelay.shared.services.sessions import SessionStore


@pytest.mark.parametrize(
    ("value", "expected"),
    [("on", "on"), (" Full ", "on"), (True, "on"), ("off", "off"), ("0", "off"), (False, "off"), ("loud", None), (None, None), (3, None)],
)
def test_normalize_verbose_level(value, expected) -> None:
    assert normalize_verbose_level(value) == expected


def test_run_context_overrides_session() -> None:
    contexts = RunContextStore()
    sessions = SessionStore(verbose_default="on")
    sessions.update("s1", verbose_level="on")
    contexts.register("ctx", session_key="s1", verbose_level="off")
    resolver = VerboseResolver(contexts, sessions.load_verbose)

    assert resolver.should_emit_tool_events("ctx", "s1") is False


def test_session_level_then_default() -> None:
    contexts = RunContextStore()
    sessions = SessionStore(verbose_default="on")
    sessions.update("quiet", verbose_level="off")
    resolver = VerboseResolver(contexts, sessions.load_verbose)

    assert resolver.should_emit_tool_events("ctx", "quiet") is False
    assert resolver.should_emit_tool_events("ctx", "unknown") is True


def test_no_session_key_or_loader_means_off() -> None:
    contexts = RunContextStore()

    assert VerboseResolver(contexts).should_emit_tool_events("ctx", "s1") is False
    assert VerboseResolver(contexts, lambda _key: ("on", None)).should_emit_tool_events("ctx", None) is False


def test_loader_failure_means_off() -> None:
    def broken(_key: str):
        raise OSError("session store unavailable")

    resolver = VerboseResolver(RunContextStore(), broken)

    assert resolver.should_emit_tool_events("ctx", "s1") is False


def test_each_queued_client_run_keeps_its_own_level() -> None:
    contexts = RunContextStore()
    contexts.register("ctx", session_key="s1", verbose_level="off", client_run_id="rA")
    contexts.register("ctx", session_key="s1", verbose_level="on", client_run_id="rB")
    resolver = VerboseResolver(contexts, lambda _key: (None, "off"))

    assert resolver.should_emit_tool_events("ctx", "s1", "rA") is False
    assert resolver.should_emit_tool_events("ctx", "s1", "rB") is True
    # Runs without an override fall through to the session default.
    assert resolver.should_emit_tool_events("ctx", "s1", "rC") is False

    contexts.discard_client_run("ctx", "rB")
    assert resolver.should_emit_tool_events("ctx", "s1", "rB") is False
