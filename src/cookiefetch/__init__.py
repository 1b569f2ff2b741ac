# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Cookie Fetch: browser-rendered cookie state over HTTP.

Drives a real Chromium session per request and returns the cookies visible
once the page (or a redirect chain matching a pattern) has settled:
- session orchestration with one overall deadline
- navigation pattern watching and network idle detection
- normalized cookie records {name, value, domain, path}
"""

from __future__ import annotations

from dataclasses import asdict, dataclass

_SCHEMES = ("http://", "https://")


def ensure_https(url: str) -> str:
    """Prepend ``https://`` unless the URL already carries an http(s) scheme."""
    if url.startswith(_SCHEMES):
        return url
    return "https://" + url


@dataclass(frozen=True, slots=True)
class CookieRecord:
    """A single cookie as exposed to callers."""

    name: str
    value: str
    domain: str
    path: str

    def to_dict(self) -> dict[str, str]:
        return asdict(self)


@dataclass(frozen=True, slots=True)
class SessionRequest:
    """Immutable parameters for one cookie-fetch session."""

    url: str  # absolute, scheme-normalized
    pattern: str = ""  # empty means skip the pattern wait
    headless: bool = True
    profile_dir: str = ""  # empty means use the configured default

    @classmethod
    def create(
        cls,
        url: str,
        *,
        pattern: str = "",
        headless: bool = True,
        profile_dir: str = "",
    ) -> SessionRequest:
        return cls(
            url=ensure_https(url.strip()),
            pattern=pattern,
            headless=headless,
            profile_dir=profile_dir,
        )
