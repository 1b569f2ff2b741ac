# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Poll the browser's navigation history until the location matches a pattern."""

from __future__ import annotations

import asyncio
import logging
import re
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from .errors import PatternTimeoutError
from .pattern import matches

logger = logging.getLogger(__name__)

DEFAULT_PATTERN_TIMEOUT = 30.0


@dataclass(frozen=True, slots=True)
class NavigationSnapshot:
    """Point-in-time read of the navigation history."""

    current_index: int
    urls: tuple[str, ...]

    @property
    def current_url(self) -> str | None:
        """URL at the current index, or None while the browser is mid-transition."""
        if 0 <= self.current_index < len(self.urls):
            return self.urls[self.current_index]
        return None

    @classmethod
    def from_cdp(cls, payload: dict) -> NavigationSnapshot:
        """Build from a CDP ``Page.getNavigationHistory`` result."""
        entries = payload.get("entries") or []
        return cls(
            current_index=int(payload.get("currentIndex", -1)),
            urls=tuple(str(e.get("url", "")) for e in entries),
        )


class NavigationWatcher:
    """Report when the current location first matches *matcher*."""

    def __init__(
        self,
        read_history: Callable[[], Awaitable[NavigationSnapshot]],
        matcher: re.Pattern[str],
        *,
        tick: float = 0.1,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if tick <= 0:
            raise ValueError("tick must be positive")
        self._read_history = read_history
        self.matcher = matcher
        self.tick = tick
        self._clock = clock
        self.polls = 0

    async def wait(self, timeout: float = DEFAULT_PATTERN_TIMEOUT) -> str:
        """Return the first matching URL, polling once per tick.

        Raises PatternTimeoutError after *timeout*, or as soon as the history
        cannot be read over the protocol (the pattern wait has failed either way).
        """
        deadline = self._clock() + timeout
        last_url = ""
        while True:
            await asyncio.sleep(self.tick)
            self.polls += 1
            try:
                snapshot = await self._read_history()
            except Exception as exc:
                raise PatternTimeoutError(
                    f"failed to get current URL while waiting for pattern {self.matcher.pattern}: {exc}",
                    pattern=self.matcher.pattern,
                    last_url=last_url,
                ) from exc
            url = snapshot.current_url
            if url is not None:
                last_url = url
            if matches(self.matcher, url):
                logger.debug("Current URL %s matches pattern %s", url, self.matcher.pattern)
                return url
            if self._clock() >= deadline:
                raise PatternTimeoutError(
                    f"timeout waiting for URL to match pattern {self.matcher.pattern} after {timeout:g}s",
                    pattern=self.matcher.pattern,
                    last_url=last_url,
                )
