# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Tests for StageTimer (session stage tracking)."""

from __future__ import annotations

from cookiefetch.stage_timer import (
    STAGE_COOKIES,
    STAGE_NAVIGATION,
    STAGE_NETWORK_IDLE,
    STAGE_PATTERN,
    STAGE_READINESS,
    STAGE_SETUP,
    StageTimer,
    hint_for_stage,
)


class ManualClock:
    def __init__(self) -> None:
        self.now = 100.0

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class TestStageTimer:
    def test_durations_in_entry_order(self):
        clock = ManualClock()
        timer = StageTimer(clock)
        timer.enter(STAGE_SETUP)
        clock.advance(0.5)
        timer.enter(STAGE_NAVIGATION)
        clock.advance(1.25)
        timer.enter(STAGE_COOKIES)
        clock.advance(0.01)
        timer.stop()

        assert timer.durations_ms() == {"setup": 500.0, "navigation": 1250.0, "cookies": 10.0}

    def test_current(self):
        timer = StageTimer()
        assert timer.current is None

        timer.enter(STAGE_NAVIGATION)
        assert timer.current == "navigation"

        timer.enter(STAGE_PATTERN)
        assert timer.current == "pattern_wait"

        timer.stop()
        assert timer.current is None

    def test_stop_freezes_timing(self):
        clock = ManualClock()
        timer = StageTimer(clock)
        timer.enter(STAGE_SETUP)
        clock.advance(0.2)
        timer.stop()
        clock.advance(5.0)
        timer.stop()
        timer.enter(STAGE_COOKIES)
        assert timer.durations_ms() == {"setup": 200.0}

    def test_running_stage_counts_up_to_now(self):
        clock = ManualClock()
        timer = StageTimer(clock)
        timer.enter("running")
        clock.advance(0.3)
        assert timer.durations_ms() == {"running": 300.0}


class TestDeadlineReport:
    def test_report_structure(self):
        clock = ManualClock()
        timer = StageTimer(clock)
        clock.advance(0.1)
        timer.enter(STAGE_NAVIGATION)
        clock.advance(2.0)
        timer.enter(STAGE_NETWORK_IDLE)
        clock.advance(3.0)

        report = timer.deadline_report()
        assert report["timed_out_at"] == "network_idle"
        assert report["completed_stages"] == [{"stage": "navigation", "ms": 2000.0}]
        assert report["timed_out_stage_ms"] == 3000.0
        assert report["total_ms"] == 5100.0
        assert report["hint"] == hint_for_stage(STAGE_NETWORK_IDLE)

    def test_report_without_stages(self):
        report = StageTimer().deadline_report()
        assert report["timed_out_at"] == "unknown"
        assert report["completed_stages"] == []
        assert report["timed_out_stage_ms"] == 0

    def test_report_after_stop_lists_every_stage(self):
        timer = StageTimer()
        timer.enter(STAGE_SETUP)
        timer.enter(STAGE_COOKIES)
        timer.stop()
        report = timer.deadline_report()
        assert report["timed_out_at"] == "unknown"
        assert [s["stage"] for s in report["completed_stages"]] == ["setup", "cookies"]


class TestHints:
    def test_known_stages(self):
        assert "profile directory lock" in hint_for_stage(STAGE_SETUP)
        assert "slow to load" in hint_for_stage(STAGE_NAVIGATION)
        assert "pattern" in hint_for_stage(STAGE_PATTERN)
        assert "body" in hint_for_stage(STAGE_READINESS)
        assert "requests" in hint_for_stage(STAGE_NETWORK_IDLE)

    def test_unknown_stage(self):
        assert "custom_stage" in hint_for_stage("custom_stage")
