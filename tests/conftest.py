# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Shared test configuration and fixtures."""

try:
    import cookiefetch  # noqa: F401
except ImportError:
    raise ImportError("cookiefetch is not installed. Run: pip install -e '.[dev]'") from None

import pytest
import structlog


@pytest.fixture(autouse=True)
def _block_real_browser(request, monkeypatch):
    """Safety net: prevent real browser sessions in unit tests.

    Tests drive the orchestrator through ``tests._session_helpers.FakeSession``.
    A test that forgets to inject one gets a clear error instead of silently
    trying to launch Chromium.

    Tests that exercise ``BrowserSession.start`` itself can opt out with::

        @pytest.mark.allow_real_browser
    """
    if "allow_real_browser" in request.keywords:
        return

    async def _no_real_start(self):
        raise RuntimeError("Test tried to launch a real browser. Pass a FakeSession factory in your test.")

    monkeypatch.setattr("cookiefetch.browser_session.BrowserSession.start", _no_real_start)


@pytest.fixture(autouse=True)
def _reset_structlog_context():
    """Request handlers bind contextvars; keep them from leaking between tests."""
    structlog.contextvars.clear_contextvars()
    yield
    structlog.contextvars.clear_contextvars()


def pytest_configure(config):
    config.addinivalue_line("markers", "allow_real_browser: opt out of the real-browser guard")
