# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Cookie Fetch exception hierarchy.

All errors inherit from CookieServiceError, allowing callers to catch the
base class for any session failure or specific subclasses for targeted
handling. Each class corresponds to the step that detected the failure.
"""

from __future__ import annotations


class CookieServiceError(Exception):
    """Base exception for all Cookie Fetch errors."""


class InvalidPatternError(CookieServiceError):
    """The match pattern does not compile as a regular expression."""

    def __init__(self, message: str, *, pattern: str = "") -> None:
        super().__init__(message)
        self.pattern = pattern


class ConfigError(CookieServiceError):
    """Configuration value cannot be resolved (profile dir, timeouts, ...)."""


class SessionSetupError(CookieServiceError):
    """Browser session could not be launched or attached."""


class NavigationError(CookieServiceError):
    """Navigation to the target URL failed, or its location could not be read."""


class PatternTimeoutError(CookieServiceError):
    """Navigation never reached a URL matching the pattern in time."""

    def __init__(self, message: str, *, pattern: str = "", last_url: str = "") -> None:
        super().__init__(message)
        self.pattern = pattern
        self.last_url = last_url


class ReadinessError(CookieServiceError):
    """The page never exposed a visible document body."""


class NetworkIdleTimeoutError(CookieServiceError):
    """Network activity never settled within the idle sub-timeout."""


class CookieFetchError(CookieServiceError):
    """Cookie retrieval from the browser failed."""


class ContextCancelledError(CookieServiceError):
    """Overall session deadline exceeded.

    Takes precedence over any step-specific error raised at or after
    the deadline.
    """

    def __init__(self, message: str, *, stage: str = "", report: dict | None = None) -> None:
        super().__init__(message)
        self.stage = stage
        self.report = report or {}
