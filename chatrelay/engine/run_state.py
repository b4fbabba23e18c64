"""Process-wide chat run bookkeeping, owned by one object.

``ChatRunState`` groups the three stores the router mutates: the run
link registry, the per-run message index, and abort markers. The
gateway creates one and injects it into the router; tests create as
many independent instances as they like.
"""
from __future__ import annotations

import logging

from .models import now_ms
from .run_registry import RunLinkRegistry

logger = logging.getLogger(__name__)


class ChatRunState:
    """Registry + message index + abort markers, with a single ``reset``."""

    def __init__(self) -> None:
        self.registry = RunLinkRegistry()
        # client run id -> current message index (bumped on each tool start)
        self.message_index_by_run: dict[str, int] = {}
        # client or internal run id -> abort timestamp (ms)
        self.aborted_runs: dict[str, int] = {}

    # ── Message index ──

    def current_index(self, client_run_id: str) -> int:
        """Return the run's message index, creating it at 0 on first use."""
        return self.message_index_by_run.setdefault(client_run_id, 0)

    def advance_index(self, client_run_id: str) -> int:
        index = self.message_index_by_run.get(client_run_id, 0) + 1
        self.message_index_by_run[client_run_id] = index
        return index

    def drop_progress(self, client_run_id: str) -> None:
        self.message_index_by_run.pop(client_run_id, None)

    # ── Abort markers ──

    def mark_aborted(self, run_id: str, at: int | None = None) -> None:
        self.aborted_runs[run_id] = at if at is not None else now_ms()
        logger.info("Run marked aborted run=%s", run_id)

    def is_aborted(self, *run_ids: str) -> bool:
        return any(run_id in self.aborted_runs for run_id in run_ids)

    def clear_aborted(self, *run_ids: str) -> None:
        for run_id in run_ids:
            self.aborted_runs.pop(run_id, None)

    # ── Introspection ──

    def has_residue(self, client_run_id: str) -> bool:
        """True if any progress or abort entry remains for *client_run_id*."""
        return (
            client_run_id in self.message_index_by_run
            or client_run_id in self.aborted_runs
        )

    def reset(self) -> None:
        """Wipe every store (hot restart)."""
        self.registry.clear()
        self.message_index_by_run.clear()
        self.aborted_runs.clear()
        logger.info("Chat run state reset")
