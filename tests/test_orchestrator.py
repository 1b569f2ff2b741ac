# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Tests for SessionOrchestrator: step order, error classification,
deadline precedence and the close-exactly-once guarantee.

All sessions are FakeSession instances; no browser is launched.
"""

from __future__ import annotations

import asyncio
import dataclasses
import logging
import os

import pytest

from cookiefetch import CookieRecord, SessionRequest
from cookiefetch.errors import (
    ConfigError,
    ContextCancelledError,
    CookieFetchError,
    InvalidPatternError,
    NavigationError,
    NetworkIdleTimeoutError,
    PatternTimeoutError,
    ReadinessError,
    SessionSetupError,
)
from cookiefetch.orchestrator import READY_SELECTOR, SessionOrchestrator, run_session
from tests._session_helpers import FAST_SETTINGS, SessionRecorder, snapshot

NO_PATTERN_STEPS = ["start", "navigate", "wait_visible", "enable_network_events", "get_cookies"]


def _orchestrator(recorder: SessionRecorder, **overrides) -> SessionOrchestrator:
    settings = dataclasses.replace(FAST_SETTINGS, **overrides) if overrides else FAST_SETTINGS
    return SessionOrchestrator(settings, session_factory=recorder)


# ── End-to-end scenarios ──────────────────────────────────────────


class TestScenarios:
    async def test_plain_fetch_returns_cookies_in_order(self):
        recorder = SessionRecorder()
        cookies = await _orchestrator(recorder).run(SessionRequest.create("example.com"))

        assert cookies == [
            CookieRecord("session_id", "abc123", ".example.com", "/"),
            CookieRecord("user_token", "xyz789", ".example.com", "/"),
        ]
        session = recorder.session
        assert session.navigated_to == ["https://example.com"]
        assert session.calls == NO_PATTERN_STEPS
        assert session.close_count == 1

    async def test_pattern_never_matches(self):
        recorder = SessionRecorder(history=[snapshot("https://example.com/")])
        request = SessionRequest.create("https://example.com", pattern=".*login.*")

        with pytest.raises(PatternTimeoutError) as exc_info:
            await _orchestrator(recorder).run(request)

        session = recorder.session
        assert "get_cookies" not in session.calls
        assert "wait_visible" not in session.calls
        assert session.close_count == 1
        assert exc_info.value.last_url == "https://example.com/"

    async def test_invalid_pattern_touches_nothing(self):
        recorder = SessionRecorder()
        with pytest.raises(InvalidPatternError):
            await _orchestrator(recorder).run(SessionRequest.create("example.com", pattern="(("))
        assert recorder.sessions == []

    async def test_pattern_matches_after_redirects(self):
        recorder = SessionRecorder(
            history=[
                snapshot("https://sso.example.com/authorize"),
                snapshot(),
                snapshot("https://sso.example.com/authorize", "https://app.example.com/login/callback"),
            ]
        )
        request = SessionRequest.create("https://sso.example.com/authorize", pattern=r"/login/")
        cookies = await _orchestrator(recorder).run(request)

        session = recorder.session
        assert len(cookies) == 2
        assert session.calls.count("get_navigation_history") == 3
        assert session.calls[:2] == ["start", "navigate"]
        assert session.calls[-3:] == ["wait_visible", "enable_network_events", "get_cookies"]
        assert session.close_count == 1


# ── Session configuration ─────────────────────────────────────────


class TestSessionConfig:
    async def test_headless_and_default_profile(self):
        recorder = SessionRecorder()
        await _orchestrator(recorder).run(SessionRequest.create("example.com", headless=False))
        assert recorder.session.config.headless is False
        assert recorder.session.config.profile_dir == FAST_SETTINGS.profile_dir

    async def test_request_profile_expanded(self):
        recorder = SessionRecorder()
        await _orchestrator(recorder).run(SessionRequest.create("example.com", profile_dir="~/cf-profile"))
        assert recorder.session.config.profile_dir == os.path.expanduser("~/cf-profile")

    async def test_unresolvable_profile_is_config_error(self):
        recorder = SessionRecorder()
        request = SessionRequest.create("example.com", profile_dir="~no-such-user-cookiefetch/profile")
        with pytest.raises(ConfigError, match="failed to expand profile dir"):
            await _orchestrator(recorder).run(request)
        assert recorder.sessions == []

    def test_readiness_selector_is_body(self):
        assert READY_SELECTOR == "body"

    async def test_network_listener_wired(self):
        recorder = SessionRecorder()
        await _orchestrator(recorder).run(SessionRequest.create("example.com"))
        assert callable(recorder.session.on_request)


# ── Error classification + teardown ───────────────────────────────


class TestTeardown:
    @pytest.mark.parametrize(
        "step,expected",
        [
            ("start", SessionSetupError),
            ("navigate", NavigationError),
            ("get_navigation_history", PatternTimeoutError),
            ("wait_visible", ReadinessError),
            ("enable_network_events", NetworkIdleTimeoutError),
            ("get_cookies", CookieFetchError),
        ],
    )
    async def test_failing_step_closes_once(self, step, expected):
        recorder = SessionRecorder(fail={step: RuntimeError("boom")})
        request = SessionRequest.create("example.com", pattern="example")

        with pytest.raises(expected) as exc_info:
            await _orchestrator(recorder).run(request)

        session = recorder.session
        assert session.close_count == 1
        assert session.calls[-1] == step
        assert isinstance(exc_info.value.__cause__, RuntimeError)

    async def test_classified_setup_error_passes_through(self):
        original = SessionSetupError("Chromium is not installed")
        recorder = SessionRecorder(fail={"start": original})
        with pytest.raises(SessionSetupError) as exc_info:
            await _orchestrator(recorder).run(SessionRequest.create("example.com"))
        assert exc_info.value is original
        assert recorder.session.close_count == 1

    async def test_idle_wait_timeout_closes_once(self):
        recorder = SessionRecorder()
        orchestrator = _orchestrator(recorder, idle_window=1.0, idle_timeout=0.1)
        with pytest.raises(NetworkIdleTimeoutError):
            await orchestrator.run(SessionRequest.create("example.com"))
        assert recorder.session.close_count == 1
        assert "get_cookies" not in recorder.session.calls

    async def test_pattern_timeout_closes_once(self):
        recorder = SessionRecorder(history=[snapshot("https://example.com/")])
        with pytest.raises(PatternTimeoutError):
            await _orchestrator(recorder).run(SessionRequest.create("example.com", pattern="nope"))
        assert recorder.session.close_count == 1

    async def test_hung_close_is_bounded(self, caplog):
        recorder = SessionRecorder(hang={"close"})
        orchestrator = SessionOrchestrator(FAST_SETTINGS, session_factory=recorder, close_timeout=0.05)
        with caplog.at_level(logging.WARNING, logger="cookiefetch.orchestrator"):
            async with asyncio.timeout(2.0):
                cookies = await orchestrator.run(SessionRequest.create("example.com"))
        assert len(cookies) == 2
        assert recorder.session.close_count == 1
        assert "did not close within" in caplog.text

    async def test_hung_close_keeps_step_error(self):
        recorder = SessionRecorder(hang={"close"}, fail={"navigate": RuntimeError("net::ERR_CONNECTION_RESET")})
        orchestrator = SessionOrchestrator(FAST_SETTINGS, session_factory=recorder, close_timeout=0.05)
        with pytest.raises(NavigationError):
            async with asyncio.timeout(2.0):
                await orchestrator.run(SessionRequest.create("example.com"))
        assert recorder.session.close_count == 1

    async def test_success_closes_once(self):
        recorder = SessionRecorder()
        await _orchestrator(recorder).run(SessionRequest.create("example.com"))
        assert recorder.session.close_count == 1


# ── Overall deadline ──────────────────────────────────────────────


class TestDeadline:
    @pytest.mark.parametrize(
        "step,stage",
        [
            ("start", "setup"),
            ("navigate", "navigation"),
            ("get_navigation_history", "pattern_wait"),
            ("wait_visible", "readiness"),
            ("get_cookies", "cookies"),
        ],
    )
    async def test_hung_step_hits_deadline(self, step, stage):
        recorder = SessionRecorder(hang={step})
        orchestrator = _orchestrator(recorder, overall_timeout=0.2, pattern_timeout=5.0)

        with pytest.raises(ContextCancelledError) as exc_info:
            await orchestrator.run(SessionRequest.create("example.com", pattern="example"))

        assert exc_info.value.stage == stage
        assert exc_info.value.report["timed_out_at"] == stage
        assert recorder.session.close_count == 1

    async def test_deadline_during_idle_wait(self):
        recorder = SessionRecorder()
        orchestrator = _orchestrator(recorder, overall_timeout=0.2, idle_window=5.0, idle_timeout=5.0)
        with pytest.raises(ContextCancelledError) as exc_info:
            await orchestrator.run(SessionRequest.create("example.com"))
        assert exc_info.value.stage == "network_idle"
        assert recorder.session.close_count == 1

    async def test_deadline_beats_concurrent_sub_timeout(self):
        recorder = SessionRecorder(history=[snapshot("https://example.com/")])
        orchestrator = _orchestrator(recorder, overall_timeout=0.2, pattern_timeout=0.2)
        with pytest.raises(ContextCancelledError):
            await orchestrator.run(SessionRequest.create("example.com", pattern="never"))
        assert recorder.session.close_count == 1

    async def test_deadline_beats_step_error(self):
        # The step blocks past the deadline, then fails with its own error.
        recorder = SessionRecorder(
            block={"start": 0.25},
            fail={"start": SessionSetupError("profile locked")},
        )
        orchestrator = _orchestrator(recorder, overall_timeout=0.2)
        with pytest.raises(ContextCancelledError) as exc_info:
            await orchestrator.run(SessionRequest.create("example.com"))
        assert exc_info.value.stage == "setup"
        assert isinstance(exc_info.value.__cause__, SessionSetupError)
        assert recorder.session.close_count == 1

    async def test_deadline_beats_late_success(self):
        recorder = SessionRecorder(block={"get_cookies": 0.3})
        orchestrator = _orchestrator(recorder, overall_timeout=0.2)
        with pytest.raises(ContextCancelledError) as exc_info:
            await orchestrator.run(SessionRequest.create("example.com"))
        assert exc_info.value.stage == "cookies"
        assert recorder.session.close_count == 1

    async def test_report_hint_present(self):
        recorder = SessionRecorder(hang={"navigate"})
        with pytest.raises(ContextCancelledError) as exc_info:
            await _orchestrator(recorder, overall_timeout=0.1).run(SessionRequest.create("example.com"))
        report = exc_info.value.report
        assert report["hint"]
        assert [s["stage"] for s in report["completed_stages"]] == ["setup"]


# ── Caller cancellation ───────────────────────────────────────────


class TestCallerCancellation:
    async def test_cancel_propagates_and_closes(self):
        recorder = SessionRecorder(hang={"navigate"})
        task = asyncio.create_task(_orchestrator(recorder).run(SessionRequest.create("example.com")))
        while not recorder.sessions or "navigate" not in recorder.session.calls:
            await asyncio.sleep(0.005)

        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        assert recorder.session.close_count == 1

    async def test_cancel_with_hung_close(self):
        recorder = SessionRecorder(hang={"navigate", "close"})
        orchestrator = SessionOrchestrator(FAST_SETTINGS, session_factory=recorder, close_timeout=0.05)
        task = asyncio.create_task(orchestrator.run(SessionRequest.create("example.com")))
        while not recorder.sessions or "navigate" not in recorder.session.calls:
            await asyncio.sleep(0.005)

        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            async with asyncio.timeout(2.0):
                await task
        assert recorder.session.close_count == 1

    async def test_concurrent_sessions_isolated(self):
        ok = SessionRecorder()
        broken = SessionRecorder(fail={"navigate": RuntimeError("net::ERR_NAME_NOT_RESOLVED")})
        results = await asyncio.gather(
            _orchestrator(ok).run(SessionRequest.create("example.com")),
            _orchestrator(broken).run(SessionRequest.create("bad.invalid")),
            return_exceptions=True,
        )
        assert len(results[0]) == 2
        assert isinstance(results[1], NavigationError)
        assert ok.session.close_count == 1
        assert broken.session.close_count == 1


# ── Logging + functional wrapper ──────────────────────────────────


class TestLoggingAndWrapper:
    async def test_injected_logger_traces_steps(self, caplog):
        log = logging.getLogger("test.orchestrator")
        recorder = SessionRecorder()
        with caplog.at_level(logging.DEBUG, logger="test.orchestrator"):
            await SessionOrchestrator(FAST_SETTINGS, session_factory=recorder, log=log).run(
                SessionRequest.create("example.com")
            )
        assert "Navigating to https://example.com" in caplog.text
        assert "Fetched 2 cookies" in caplog.text

    async def test_quiet_logger_skips_debug(self, caplog):
        log = logging.getLogger("test.orchestrator.quiet")
        with caplog.at_level(logging.INFO, logger="test.orchestrator.quiet"):
            await run_session(
                SessionRequest.create("example.com"),
                FAST_SETTINGS,
                session_factory=SessionRecorder(),
                log=log,
            )
        assert "Navigating to" not in caplog.text
        assert "Fetched 2 cookies" in caplog.text

    async def test_run_session_wrapper(self):
        recorder = SessionRecorder(cookies=[])
        cookies = await run_session(SessionRequest.create("example.com"), FAST_SETTINGS, session_factory=recorder)
        assert cookies == []
        assert recorder.session.close_count == 1
