"""Status bar: bottom bar showing run state and tool activity."""

from __future__ import annotations

import time
from typing import Optional

from rich.text import Text
from textual.reactive import reactive
from textual.timer import Timer
from textual.widget import Widget


def _format_elapsed(seconds: float) -> str:
    """Format elapsed seconds into a human-readable string."""
    secs = int(seconds)
    if secs < 60:
        return f"{secs}s"
    elif secs < 3600:
        m, s = divmod(secs, 60)
        return f"{m}m {s}s"
    else:
        h, remainder = divmod(secs, 3600)
        m = remainder // 60
        return f"{h}h {m}m"


class StatusBar(Widget):
    """Single-line status bar with session, run phase and tool counters."""

    DEFAULT_CSS = """
    StatusBar {
        height: 1;
        dock: bottom;
    }
    """

    session_key: reactive[str] = reactive("main")
    phase: reactive[str] = reactive("idle")
    connected: reactive[bool] = reactive(False)
    tools_running: reactive[int] = reactive(0)
    current_tool: reactive[str] = reactive("")
    last_error: reactive[str] = reactive("")

    def __init__(self, **kwargs) -> None:
        super().__init__(**kwargs)
        self._run_started_at: Optional[float] = None
        self._elapsed_timer: Timer | None = None

    def watch_phase(self, old_value: str, new_value: str) -> None:
        """Track run elapsed time while streaming."""
        if new_value == "streaming" and old_value != "streaming":
            self._run_started_at = time.monotonic()
            if self._elapsed_timer is None:
                self._elapsed_timer = self.set_interval(1.0, self.refresh)
        elif old_value == "streaming" and new_value != "streaming":
            self._run_started_at = None
            if self._elapsed_timer is not None:
                self._elapsed_timer.stop()
                self._elapsed_timer = None

    def render(self) -> Text:
        phase_colors = {
            "idle": "green",
            "streaming": "yellow",
            "finalized": "green",
            "aborted": "magenta",
            "errored": "red bold",
        }
        bar = Text()
        bar.append(f" {self.session_key} ", style="bold")
        bar.append(" │ ", style="dim")
        if not self.connected:
            bar.append("● disconnected", style="red")
        else:
            status_display = f"● {self.phase}"
            if self._run_started_at is not None:
                status_display += f" ({_format_elapsed(time.monotonic() - self._run_started_at)})"
            bar.append(status_display, style=phase_colors.get(self.phase, "white"))
        if self.tools_running:
            bar.append(" │ ", style="dim")
            bar.append(f"{self.tools_running} tool(s)", style="cyan")
            if self.current_tool:
                bar.append(f" {self.current_tool}", style="cyan dim")
        if self.last_error:
            bar.append(" │ ", style="dim")
            bar.append(self.last_error[:80], style="red")
        return bar
