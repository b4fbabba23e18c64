"""Per-run sequence tracking.

The executor numbers events 1, 2, 3, ... per run. A jump is reported
but never acted on: there is no retransmission channel, so the event
is processed as received and the counter follows it.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SequenceGap:
    run_id: str
    expected: int
    received: int


class SequenceGuard:
    """Last observed ``seq`` per execution run (0 = nothing seen yet)."""

    def __init__(self) -> None:
        self._last: dict[str, int] = {}
        self.gaps_detected = 0

    def last(self, run_id: str) -> int:
        return self._last.get(run_id, 0)

    def observe(self, run_id: str, seq: int) -> SequenceGap | None:
        """Record *seq* for *run_id*; return the gap if it was not ``last + 1``."""
        expected = self._last.get(run_id, 0) + 1
        self._last[run_id] = seq
        if seq == expected:
            return None
        self.gaps_detected += 1
        logger.warning(
            "Sequence gap run=%s expected=%d received=%d",
            run_id, expected, seq,
        )
        return SequenceGap(run_id=run_id, expected=expected, received=seq)

    def forget(self, run_id: str) -> None:
        self._last.pop(run_id, None)

    def clear(self) -> None:
        self._last.clear()
        self.gaps_detected = 0
