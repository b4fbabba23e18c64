"""Per-execution-run context kept alongside the router.

The executor registers a context when it starts a run; the router
reads it to resolve a session key for unlinked runs and a verbose
override, and releases it once a terminal lifecycle event leaves no
queued client run on that context.

Several client runs can queue on one execution context, so a verbose
override given with a send is kept per client run id.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field

from .models import now_ms

logger = logging.getLogger(__name__)


@dataclass
class RunContext:
    run_id: str
    session_key: str | None = None
    # Applies to every run on this context without its own override.
    verbose_level: str | None = None
    # client run id -> verbose level given with that send
    verbose_by_client_run: dict[str, str] = field(default_factory=dict)
    registered_at: int = field(default_factory=now_ms)

    def verbose_for(self, client_run_id: str | None) -> str | None:
        if client_run_id and client_run_id in self.verbose_by_client_run:
            return self.verbose_by_client_run[client_run_id]
        return self.verbose_level


class RunContextStore:
    """In-memory ``run_id -> RunContext`` map."""

    def __init__(self) -> None:
        self._contexts: dict[str, RunContext] = {}

    def __len__(self) -> int:
        return len(self._contexts)

    def register(
        self,
        run_id: str,
        session_key: str | None = None,
        verbose_level: str | None = None,
        client_run_id: str | None = None,
    ) -> RunContext:
        ctx = self._contexts.get(run_id)
        if ctx is None:
            ctx = RunContext(run_id=run_id)
            self._contexts[run_id] = ctx
        if session_key is not None:
            ctx.session_key = session_key
        if verbose_level is not None:
            if client_run_id:
                ctx.verbose_by_client_run[client_run_id] = verbose_level
            else:
                ctx.verbose_level = verbose_level
        return ctx

    def get(self, run_id: str) -> RunContext | None:
        return self._contexts.get(run_id)

    def resolve_session_key(self, run_id: str) -> str | None:
        ctx = self._contexts.get(run_id)
        return ctx.session_key if ctx else None

    def discard_client_run(self, run_id: str, client_run_id: str) -> None:
        """Forget one client run's override, keeping the shared context."""
        ctx = self._contexts.get(run_id)
        if ctx is not None:
            ctx.verbose_by_client_run.pop(client_run_id, None)

    def clear(self, run_id: str) -> None:
        if self._contexts.pop(run_id, None) is not None:
            logger.debug("Run context released run=%s", run_id)

    def reset(self) -> None:
        self._contexts.clear()
