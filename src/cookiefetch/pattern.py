# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""URL pattern matching for redirect-chain waits. Pure, no state."""

from __future__ import annotations

import re

from .errors import InvalidPatternError


def compile_pattern(pattern: str) -> re.Pattern[str]:
    """Compile *pattern* or raise InvalidPatternError.

    Callers treat an empty pattern as "no wait"; it is rejected here so an
    empty matcher never silently matches every URL.
    """
    if not pattern:
        raise InvalidPatternError("Pattern must not be empty", pattern=pattern)
    try:
        return re.compile(pattern)
    except re.error as exc:
        raise InvalidPatternError(f"Invalid regex pattern: {exc}", pattern=pattern) from exc


def matches(matcher: re.Pattern[str], url: str | None) -> bool:
    """Unanchored search of *url*; ``None`` (no location yet) never matches."""
    if url is None:
        return False
    return matcher.search(url) is not None
