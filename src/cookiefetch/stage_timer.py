# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Per-stage timing for one browser session.

Stages are entered in order and each one ends when the next begins. The
timer lives outside the deadline scope, so a session cut short by the
deadline can still report the stage it was in.
"""

from __future__ import annotations

import time
from collections.abc import Callable

STAGE_SETUP = "setup"
STAGE_NAVIGATION = "navigation"
STAGE_PATTERN = "pattern_wait"
STAGE_READINESS = "readiness"
STAGE_NETWORK_IDLE = "network_idle"
STAGE_COOKIES = "cookies"

STAGE_HINTS: dict[str, str] = {
    STAGE_SETUP: "Browser launch is slow. Another process may hold the profile directory lock.",
    STAGE_NAVIGATION: "Page may be slow to load or unreachable.",
    STAGE_PATTERN: "The redirect chain never reached the expected URL. Check the pattern.",
    STAGE_READINESS: "The page never rendered a visible body.",
    STAGE_NETWORK_IDLE: "Page keeps issuing requests (polling, analytics, long-lived connections).",
    STAGE_COOKIES: "Cookie retrieval is stalling.",
}


def hint_for_stage(stage: str) -> str:
    return STAGE_HINTS.get(stage, f"Timed out during '{stage}' stage.")


def _ms(seconds: float) -> float:
    return round(seconds * 1000, 1)


class StageTimer:
    """Ordered ``(stage, entered_at)`` marks and the moment timing stopped."""

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._began = clock()
        self._marks: list[tuple[str, float]] = []
        self._stopped_at: float | None = None

    def enter(self, stage: str) -> None:
        """Close the running stage and open *stage*. Ignored once stopped."""
        if self._stopped_at is None:
            self._marks.append((stage, self._clock()))

    def stop(self) -> None:
        if self._stopped_at is None:
            self._stopped_at = self._clock()

    @property
    def current(self) -> str | None:
        if self._stopped_at is not None or not self._marks:
            return None
        return self._marks[-1][0]

    def durations_ms(self) -> dict[str, float]:
        """Milliseconds spent in each stage; a running stage counts up to now."""
        end = self._stopped_at if self._stopped_at is not None else self._clock()
        ends = [entered for _, entered in self._marks[1:]] + [end]
        return {name: _ms(until - entered) for (name, entered), until in zip(self._marks, ends)}

    def deadline_report(self) -> dict:
        """Where the session was when the deadline hit, for problem details."""
        durations = self.durations_ms()
        stage = self.current
        finished = self._marks[:-1] if stage is not None else self._marks
        return {
            "completed_stages": [{"stage": name, "ms": durations[name]} for name, _ in finished],
            "timed_out_at": stage or "unknown",
            "timed_out_stage_ms": durations[stage] if stage is not None else 0,
            "total_ms": _ms(self._clock() - self._began),
            "hint": hint_for_stage(stage or "unknown"),
        }
