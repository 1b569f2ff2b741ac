# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Session orchestration: one browser session per request, end to end.

navigate → [pattern wait] → body visible → network idle → cookies, all
under one overall deadline. The session is closed exactly once on every
exit path (success, classified error, deadline, caller cancellation),
and teardown itself is bounded by CLOSE_TIMEOUT.

Error precedence: once the overall deadline has passed, ContextCancelledError
is reported even if a step raised its own error in the same instant.
"""

from __future__ import annotations

import asyncio
import logging
import re
from collections.abc import Callable

from . import CookieRecord, SessionRequest
from .browser_session import BrowserConfig, BrowserSession, BrowserSessionProtocol
from .config import SessionSettings, expand_profile_dir
from .cookies import normalize_cookies
from .errors import (
    ContextCancelledError,
    CookieFetchError,
    CookieServiceError,
    NavigationError,
    NetworkIdleTimeoutError,
    ReadinessError,
    SessionSetupError,
)
from .idle_detector import NetworkIdleDetector
from .navigation_watcher import NavigationWatcher
from .pattern import compile_pattern
from .stage_timer import (
    STAGE_COOKIES,
    STAGE_NAVIGATION,
    STAGE_NETWORK_IDLE,
    STAGE_PATTERN,
    STAGE_READINESS,
    STAGE_SETUP,
    StageTimer,
)

logger = logging.getLogger(__name__)

READY_SELECTOR = "body"
CLOSE_TIMEOUT = 5.0  # seconds

SessionFactory = Callable[[BrowserConfig], BrowserSessionProtocol]


class SessionOrchestrator:
    """Drive one browser session per ``run()`` call.

    Args:
        settings: Timeouts, poll interval and default profile directory.
        session_factory: Builds an unstarted session from a BrowserConfig.
            Must have no side effects; ``start()`` does the launch.
        log: Logger for step tracing. Verbosity is the logger's level,
            not process-global state.
        close_timeout: Upper bound on browser teardown. A session that does
            not close in time is abandoned with a warning.
    """

    def __init__(
        self,
        settings: SessionSettings | None = None,
        *,
        session_factory: SessionFactory = BrowserSession,
        log: logging.Logger | None = None,
        close_timeout: float = CLOSE_TIMEOUT,
    ) -> None:
        self.settings = settings or SessionSettings()
        self._session_factory = session_factory
        self._log = log or logger
        self.close_timeout = close_timeout

    async def run(self, request: SessionRequest) -> list[CookieRecord]:
        """Return the cookies visible once *request*'s page has settled."""
        settings = self.settings
        log = self._log

        # Both checks precede any browser interaction.
        matcher = compile_pattern(request.pattern) if request.pattern else None
        profile = expand_profile_dir(request.profile_dir or settings.profile_dir)
        log.debug("Using Chrome profile directory: %s", profile)

        session = self._session_factory(BrowserConfig(profile_dir=profile, headless=request.headless))
        timer = StageTimer()
        loop = asyncio.get_running_loop()
        deadline = loop.time() + settings.overall_timeout
        scope = asyncio.timeout_at(deadline)
        try:
            async with scope:
                raw_cookies = await self._run_steps(session, request, matcher, timer)
            if loop.time() >= deadline:
                raise self._deadline_error(timer)
        except TimeoutError as exc:
            if not scope.expired():
                raise
            raise self._deadline_error(timer) from exc
        except ContextCancelledError:
            raise
        except CookieServiceError as exc:
            if loop.time() >= deadline:
                raise self._deadline_error(timer) from exc
            log.info("Session failed at %s: %s", timer.current, exc)
            raise
        finally:
            timer.stop()
            await self._close(session)

        cookies = normalize_cookies(raw_cookies)
        log.info(
            "Fetched %d cookies for %s (stages_ms=%s)",
            len(cookies),
            request.url,
            timer.durations_ms(),
        )
        return cookies

    async def _run_steps(
        self,
        session: BrowserSessionProtocol,
        request: SessionRequest,
        matcher: re.Pattern[str] | None,
        timer: StageTimer,
    ) -> list[dict]:
        settings = self.settings
        log = self._log

        timer.enter(STAGE_SETUP)
        try:
            await session.start()
        except CookieServiceError:
            raise
        except Exception as exc:
            raise SessionSetupError(f"failed to setup Chrome context: {exc}") from exc

        timer.enter(STAGE_NAVIGATION)
        log.debug("Navigating to %s", request.url)
        try:
            await session.navigate(request.url)
        except Exception as exc:
            raise NavigationError(f"failed to navigate to {request.url}: {exc}") from exc

        if matcher is not None:
            timer.enter(STAGE_PATTERN)
            log.debug("Waiting for URL to match pattern: %s", matcher.pattern)
            watcher = NavigationWatcher(
                session.get_navigation_history,
                matcher,
                tick=settings.poll_interval,
            )
            await watcher.wait(settings.pattern_timeout)

        timer.enter(STAGE_READINESS)
        log.debug("Waiting for page body to load")
        try:
            await session.wait_visible(READY_SELECTOR)
        except Exception as exc:
            raise ReadinessError(f"page body never became visible: {exc}") from exc

        timer.enter(STAGE_NETWORK_IDLE)
        log.debug("Waiting for network idle")
        detector = NetworkIdleDetector(tick=settings.poll_interval)
        try:
            await session.enable_network_events(detector.on_request)
        except Exception as exc:
            raise NetworkIdleTimeoutError(f"failed to enable network events: {exc}") from exc
        await detector.wait(settings.idle_window, settings.idle_timeout)

        timer.enter(STAGE_COOKIES)
        log.debug("Fetching cookies")
        try:
            return await session.get_cookies()
        except Exception as exc:
            raise CookieFetchError(f"failed to fetch cookies: {exc}") from exc

    async def _close(self, session: BrowserSessionProtocol) -> None:
        try:
            async with asyncio.timeout(self.close_timeout):
                await session.close()
        except TimeoutError:
            self._log.warning("Browser session did not close within %gs", self.close_timeout)

    def _deadline_error(self, timer: StageTimer) -> ContextCancelledError:
        report = timer.deadline_report()
        stage = report["timed_out_at"]
        self._log.warning(
            "Session deadline of %gs exceeded during %s",
            self.settings.overall_timeout,
            stage,
        )
        return ContextCancelledError(
            f"session deadline of {self.settings.overall_timeout:g}s exceeded during {stage}",
            stage=stage,
            report=report,
        )


async def run_session(
    request: SessionRequest,
    settings: SessionSettings | None = None,
    *,
    session_factory: SessionFactory = BrowserSession,
    log: logging.Logger | None = None,
) -> list[CookieRecord]:
    """Functional wrapper around ``SessionOrchestrator(...).run(request)``."""
    orchestrator = SessionOrchestrator(settings, session_factory=session_factory, log=log)
    return await orchestrator.run(request)
