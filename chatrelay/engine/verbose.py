"""Verbose level handling for detailed tool-event broadcasts."""
from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

from .run_context import RunContextStore

logger = logging.getLogger(__name__)

VERBOSE_ON = "on"
VERBOSE_OFF = "off"

_ON_VALUES = frozenset({"on", "true", "yes", "1", "full"})
_OFF_VALUES = frozenset({"off", "false", "no", "0", "none"})

# Signature: load_session_verbose(session_key) -> (session_level, default_level)
# May raise; failures count as "off".
SessionVerboseLoader = Callable[[str], tuple[str | None, str | None]]


def normalize_verbose_level(value: Any) -> str | None:
    """Map user-facing spellings to ``"on"``/``"off"``; anything else is unset."""
    if isinstance(value, bool):
        return VERBOSE_ON if value else VERBOSE_OFF
    if not isinstance(value, str):
        return None
    key = value.strip().lower()
    if key in _ON_VALUES:
        return VERBOSE_ON
    if key in _OFF_VALUES:
        return VERBOSE_OFF
    return None


class VerboseResolver:
    """Decides whether detailed tool events for a run are broadcast.

    Resolution order: the client run's override, the run context, the
    session entry, then the configured default.
    """

    def __init__(
        self,
        run_contexts: RunContextStore,
        load_session_verbose: SessionVerboseLoader | None = None,
    ) -> None:
        self._run_contexts = run_contexts
        self._load_session_verbose = load_session_verbose

    def should_emit_tool_events(
        self,
        run_id: str,
        session_key: str | None,
        client_run_id: str | None = None,
    ) -> bool:
        ctx = self._run_contexts.get(run_id)
        run_verbose = normalize_verbose_level(ctx.verbose_for(client_run_id) if ctx else None)
        if run_verbose:
            return run_verbose == VERBOSE_ON
        if not session_key or self._load_session_verbose is None:
            return False
        try:
            session_level, default_level = self._load_session_verbose(session_key)
        except Exception:
            logger.debug(
                "Verbose lookup failed for session %s; treating as off",
                session_key, exc_info=True,
            )
            return False
        session_verbose = normalize_verbose_level(session_level)
        if session_verbose:
            return session_verbose == VERBOSE_ON
        return normalize_verbose_level(default_level) == VERBOSE_ON
