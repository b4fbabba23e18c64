"""Session settings store.

Holds one ``SessionEntry`` per session key: the internal context id the
executor uses as its runId, plus the verbose and thinking levels that
the router and history endpoint consult.
"""

from __future__ import annotations

import logging
import uuid

from chatrelay.engine.errors import SessionLookupError
from chatrelay.engine.models import SessionEntry, now_ms

logger = logging.getLogger(__name__)


class SessionStore:
    def __init__(
        self,
        seed: dict[str, SessionEntry] | None = None,
        verbose_default: str | None = None,
    ) -> None:
        self._entries: dict[str, SessionEntry] = dict(seed or {})
        self.verbose_default = verbose_default

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, session_key: str) -> SessionEntry | None:
        return self._entries.get(session_key)

    def ensure(self, session_key: str) -> SessionEntry:
        """Return the entry for *session_key*, creating it (with a context id) if needed."""
        if not session_key:
            raise SessionLookupError(session_key, "session key is empty")
        entry = self._entries.get(session_key)
        if entry is None:
            entry = SessionEntry(session_key=session_key)
            self._entries[session_key] = entry
            logger.info("Session created key=%s", session_key)
        if not entry.session_id:
            entry.session_id = str(uuid.uuid4())
            entry.updated_at = now_ms()
        return entry

    def update(
        self,
        session_key: str,
        *,
        verbose_level: str | None = None,
        thinking_level: str | None = None,
    ) -> SessionEntry:
        entry = self.ensure(session_key)
        if verbose_level is not None:
            entry.verbose_level = verbose_level
        if thinking_level is not None:
            entry.thinking_level = thinking_level
        entry.updated_at = now_ms()
        logger.info(
            "Session updated key=%s verbose=%s thinking=%s",
            session_key, entry.verbose_level, entry.thinking_level,
        )
        return entry

    def load_verbose(self, session_key: str) -> tuple[str | None, str | None]:
        """``(session_level, default_level)`` for verbose resolution."""
        entry = self._entries.get(session_key)
        return (entry.verbose_level if entry else None), self.verbose_default
