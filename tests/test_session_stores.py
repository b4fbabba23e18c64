from __future__ import annotations

import hashlib
import json
import tempfile
from pathlib import Path

import pytest

from chatrelay.engine.errors import SessionLookupError
from chatrelay.engine.models import SessionEntry
from chatrelay.shared.services.history import HistoryStore
from chatrelay.shared.services.sessions import SessionStore


def _history_name(session_key: str, safe_name: str) -> str:
    return f"{safe_name}-{hashlib.sha1(session_key.encode('utf-8')).hexdigest()[:8]}.json"


def test_ensure_assigns_stable_context_id() -> None:
    store = SessionStore()

    first = store.ensure("main")
    second = store.ensure("main")

    assert first.session_id
    assert first.session_id == second.session_id
    assert len(store) == 1


def test_ensure_keeps_seeded_context_id() -> None:
    store = SessionStore(seed={"ops": SessionEntry("ops", session_id="ctx-ops")})

    assert store.ensure("ops").session_id == "ctx-ops"


def test_ensure_rejects_empty_key() -> None:
    with pytest.raises(SessionLookupError):
        SessionStore().ensure("")


def test_update_and_load_verbose() -> None:
    store = SessionStore(verbose_default="off")

    assert store.load_verbose("main") == (None, "off")
    store.update("main", verbose_level="on", thinking_level="high")
    assert store.load_verbose("main") == ("on", "off")
    assert store.get("main").thinking_level == "high"


def test_memory_history_limit_and_clear() -> None:
    history = HistoryStore()
    for i in range(5):
        history.append("s1", {"role": "user", "content": str(i)})

    assert not history.persistent
    assert [m["content"] for m in history.load("s1", limit=2)] == ["3", "4"]
    assert history.load("s1", limit=0) == []
    assert len(history.load("s1")) == 5
    history.clear("s1")
    assert history.load("s1") == []


def test_persistent_history_survives_new_store() -> None:
    with tempfile.TemporaryDirectory() as tmp:
        first = HistoryStore(tmp)
        first.append("agent:main/x", {"role": "user", "content": "hello"})

        files = list(Path(tmp).glob("*.json"))
        assert [f.name for f in files] == [_history_name("agent:main/x", "agent_main_x")]
        assert json.loads(files[0].read_text(encoding="utf-8")) == [{"role": "user", "content": "hello"}]

        second = HistoryStore(tmp)
        assert second.load("agent:main/x") == [{"role": "user", "content": "hello"}]

        second.clear()
        assert list(Path(tmp).glob("*.json")) == []


def test_unreadable_history_file_starts_empty() -> None:
    with tempfile.TemporaryDirectory() as tmp:
        (Path(tmp) / _history_name("s1", "s1")).write_text("{not json", encoding="utf-8")

        assert HistoryStore(tmp).load("s1") == []


def test_keys_with_same_safe_name_keep_separate_files() -> None:
    with tempfile.TemporaryDirectory() as tmp:
        first = HistoryStore(tmp)
        first.append("a/b", {"role": "user", "content": "slash"})
        first.append("a_b", {"role": "user", "content": "underscore"})

        names = sorted(f.name for f in Path(tmp).glob("*.json"))
        assert names == sorted([_history_name("a/b", "a_b"), _history_name("a_b", "a_b")])

        second = HistoryStore(tmp)
        assert second.load("a/b") == [{"role": "user", "content": "slash"}]
        assert second.load("a_b") == [{"role": "user", "content": "underscore"}]

        second.clear("a/b")
        assert HistoryStore(tmp).load("a_b") == [{"role": "user", "content": "underscore"}]
