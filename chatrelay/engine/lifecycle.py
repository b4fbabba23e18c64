"""Client-side chat run state machine.

Defines valid transitions and enforces them. Invalid transitions
raise ValueError rather than silently proceeding.

State Diagram:

    IDLE ──> STREAMING ──┬──> FINALIZED
                         │
                         ├──> ABORTED
                         │
                         └──> ERRORED

    FINALIZED / ABORTED / ERRORED ──> STREAMING  (next send)
"""
from __future__ import annotations

from enum import Enum


class RunPhase(Enum):
    IDLE = "idle"
    STREAMING = "streaming"
    FINALIZED = "finalized"
    ABORTED = "aborted"
    ERRORED = "errored"


TERMINAL_PHASES = frozenset({
    RunPhase.FINALIZED,
    RunPhase.ABORTED,
    RunPhase.ERRORED,
})

VALID_TRANSITIONS: dict[RunPhase, set[RunPhase]] = {
    RunPhase.IDLE: {
        RunPhase.STREAMING,
    },
    RunPhase.STREAMING: {
        RunPhase.STREAMING,  # tool boundaries and repeated deltas
        RunPhase.FINALIZED,
        RunPhase.ABORTED,
        RunPhase.ERRORED,
    },
    RunPhase.FINALIZED: {
        RunPhase.STREAMING,
    },
    RunPhase.ABORTED: {
        RunPhase.STREAMING,
    },
    RunPhase.ERRORED: {
        RunPhase.STREAMING,
    },
}


def validate_transition(current: RunPhase, target: RunPhase) -> None:
    """Validate a state transition. Raises ValueError if invalid."""
    allowed = VALID_TRANSITIONS.get(current, set())
    if target not in allowed:
        allowed_str = ", ".join(sorted(s.value for s in allowed)) or "none (terminal)"
        raise ValueError(
            f"Invalid run transition: {current.value} -> {target.value}. "
            f"Allowed from {current.value}: {allowed_str}"
        )
