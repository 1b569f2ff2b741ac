# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Network idle detection: push-driven activity, pull-driven decision.

Outbound requests are reported through ``ActivityClock.touch()`` (wired to
CDP ``Network.requestWillBeSent``). A polling loop checks the clock every
tick, so worst-case detection latency is one tick past the idle window.
"""

from __future__ import annotations

import asyncio
import logging
import threading
import time
from collections.abc import Callable

from .errors import NetworkIdleTimeoutError

logger = logging.getLogger(__name__)

DEFAULT_IDLE_WINDOW = 2.0
DEFAULT_IDLE_TIMEOUT = 30.0
DEFAULT_TICK = 0.1


class ActivityClock:
    """Time of the last observed outbound request.

    Written from the event listener, read from the polling loop; both
    sides go through the lock.
    """

    __slots__ = ("_clock", "_last", "_lock", "_events")

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._lock = threading.Lock()
        self._last = clock()
        self._events = 0

    def touch(self, *_event: object) -> None:
        """Record activity now. Accepts and ignores the event payload."""
        now = self._clock()
        with self._lock:
            self._last = now
            self._events += 1

    def idle_for(self) -> float:
        """Seconds since the last recorded activity."""
        with self._lock:
            last = self._last
        return self._clock() - last

    @property
    def event_count(self) -> int:
        with self._lock:
            return self._events


class NetworkIdleDetector:
    """Wait until the network has been quiet for an idle window."""

    def __init__(
        self,
        *,
        tick: float = DEFAULT_TICK,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if tick <= 0:
            raise ValueError("tick must be positive")
        self.tick = tick
        self._clock = clock
        self.activity = ActivityClock(clock)

    def on_request(self, *event: object) -> None:
        """Event-listener entry point (signature-agnostic)."""
        self.activity.touch(*event)

    async def wait(
        self,
        idle_window: float = DEFAULT_IDLE_WINDOW,
        timeout: float = DEFAULT_IDLE_TIMEOUT,
    ) -> float:
        """Block until idle for *idle_window* seconds; return the observed idle time.

        Raises NetworkIdleTimeoutError once *timeout* elapses. Cancellation of
        the calling task (overall deadline or caller) propagates from the
        sleep immediately and wins over both outcomes.
        """
        deadline = self._clock() + timeout
        while True:
            await asyncio.sleep(self.tick)
            idle = self.activity.idle_for()
            if idle >= idle_window:
                logger.debug(
                    "Network idle for %.2fs (%d requests observed)",
                    idle,
                    self.activity.event_count,
                )
                return idle
            if self._clock() >= deadline:
                raise NetworkIdleTimeoutError(f"timeout waiting for network idle after {timeout:g}s")
