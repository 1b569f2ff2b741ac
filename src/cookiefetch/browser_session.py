# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Playwright browser session management for Cookie Fetch.

Manages a persistent-profile Chromium lifecycle and the CDP session used
for navigation history, network events and cookie retrieval.
"""

from __future__ import annotations

import asyncio
import logging
import sys
from collections.abc import Callable
from contextlib import suppress
from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

from playwright.async_api import (
    BrowserContext,
    CDPSession,
    Page,
    Playwright,
    async_playwright,
)

from .errors import SessionSetupError
from .navigation_watcher import NavigationSnapshot

logger = logging.getLogger(__name__)


@dataclass
class BrowserConfig:
    """Browser launch configuration."""

    profile_dir: str
    headless: bool = True
    extra_args: list[str] = field(default_factory=list)


@runtime_checkable
class BrowserSessionProtocol(Protocol):
    """The slice of the browser the orchestrator depends on."""

    async def start(self) -> None: ...

    async def navigate(self, url: str) -> None: ...

    async def wait_visible(self, selector: str) -> None: ...

    async def get_navigation_history(self) -> NavigationSnapshot: ...

    async def enable_network_events(self, on_request: Callable[..., None]) -> None: ...

    async def get_cookies(self) -> list[dict[str, Any]]: ...

    async def close(self) -> None: ...


# ── Chromium auto-install ─────────────────────────────────────────

_chromium_install_attempted = False
_AUTO_INSTALL_TIMEOUT = 300  # seconds, Chromium is ~140MB


async def _auto_install_chromium() -> bool:
    """Run ``playwright install chromium`` once per process.

    Returns True if install succeeded, False otherwise. A cancelled attempt
    kills the installer and does not use up the one attempt.
    """
    global _chromium_install_attempted  # noqa: PLW0603
    if _chromium_install_attempted:
        return False

    logger.info("Chromium not found, running 'playwright install chromium'")
    try:
        proc = await asyncio.create_subprocess_exec(
            sys.executable,
            "-m",
            "playwright",
            "install",
            "chromium",
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except OSError:
        _chromium_install_attempted = True
        logger.warning("Chromium auto-install failed", exc_info=True)
        return False

    try:
        _stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=_AUTO_INSTALL_TIMEOUT)
    except TimeoutError:
        _chromium_install_attempted = True
        logger.warning("Chromium install timed out after %ds", _AUTO_INSTALL_TIMEOUT)
        return False
    finally:
        if proc.returncode is None:
            with suppress(ProcessLookupError):
                proc.kill()
            await proc.wait()

    _chromium_install_attempted = True
    if proc.returncode == 0:
        logger.info("Chromium installed successfully")
        return True
    logger.warning(
        "playwright install chromium failed (rc=%d): %s",
        proc.returncode,
        stderr.decode(errors="replace")[:500],
    )
    return False


def chromium_launch_args(config: BrowserConfig) -> list[str]:
    """Return Chromium launch arguments: no first-run UI, no default-browser prompt."""
    return [
        "--no-first-run",
        "--no-default-browser-check",
        *config.extra_args,
    ]


class BrowserSession:
    """One isolated Chromium context bound to one profile directory.

    Construction has no side effects; ``start()`` launches the browser and
    ``close()`` tears it down. ``close()`` is idempotent and safe after errors.
    """

    def __init__(self, config: BrowserConfig):
        self.config = config
        self._playwright: Playwright | None = None
        self._context: BrowserContext | None = None
        self._page: Page | None = None
        self._cdp_session: CDPSession | None = None
        self._closed = False

    @property
    def page(self) -> Page:
        if self._page is None:
            raise RuntimeError("Browser session not started. Call start() first.")
        return self._page

    @property
    def context(self) -> BrowserContext:
        if self._context is None:
            raise RuntimeError("Browser session not started.")
        return self._context

    async def _launch_context(self) -> BrowserContext:
        """Launch a persistent context, auto-installing on first 'executable not found' error."""
        args = chromium_launch_args(self.config)
        try:
            return await self._playwright.chromium.launch_persistent_context(
                self.config.profile_dir,
                headless=self.config.headless,
                args=args,
            )
        except Exception as exc:
            if "executable doesn't exist" not in str(exc).lower():
                raise
            if not await _auto_install_chromium():
                raise SessionSetupError(
                    "Chromium is not installed and auto-install failed. Please run: playwright install chromium"
                ) from exc
            return await self._playwright.chromium.launch_persistent_context(
                self.config.profile_dir,
                headless=self.config.headless,
                args=args,
            )

    async def start(self) -> None:
        """Launch browser with the configured profile and open the working page."""
        logger.debug("Initializing Chrome with headless=%s", self.config.headless)
        self._playwright = await async_playwright().start()
        self._context = await self._launch_context()
        # Persistent contexts open with one blank tab already
        pages = self._context.pages
        self._page = pages[0] if pages else await self._context.new_page()
        logger.info(
            "Browser session started (headless=%s, profile=%s)",
            self.config.headless,
            self.config.profile_dir,
        )

    async def get_cdp_session(self) -> CDPSession:
        """Get or create a CDP session for the current page."""
        if self._cdp_session is None:
            self._cdp_session = await self.context.new_cdp_session(self.page)
        return self._cdp_session

    async def navigate(self, url: str) -> None:
        """Navigate and wait for the load event. Bounded by the caller's deadline."""
        await self.page.goto(url, wait_until="load", timeout=0)

    async def wait_visible(self, selector: str) -> None:
        await self.page.wait_for_selector(selector, state="visible", timeout=0)

    async def get_navigation_history(self) -> NavigationSnapshot:
        cdp = await self.get_cdp_session()
        result = await cdp.send("Page.getNavigationHistory")
        return NavigationSnapshot.from_cdp(result)

    async def enable_network_events(self, on_request: Callable[..., None]) -> None:
        """Subscribe *on_request* to ``Network.requestWillBeSent``, then enable the domain."""
        cdp = await self.get_cdp_session()
        cdp.on("Network.requestWillBeSent", on_request)
        await cdp.send("Network.enable")

    async def get_cookies(self) -> list[dict[str, Any]]:
        """All cookies visible to the current page, in browser order."""
        cdp = await self.get_cdp_session()
        result = await cdp.send("Network.getCookies")
        return list(result.get("cookies", []))

    async def close(self) -> None:
        """Close browser and clean up. Safe to call repeatedly and on a crashed browser."""
        if self._closed:
            return
        self._closed = True

        if self._cdp_session:
            with suppress(Exception):
                await self._cdp_session.detach()
            self._cdp_session = None

        if self._context:
            with suppress(Exception):
                await self._context.close()
            self._context = None
        self._page = None

        if self._playwright:
            with suppress(Exception):
                await self._playwright.stop()
            self._playwright = None

        logger.info("Browser session stopped")
