# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Project CDP cookie records onto the public {name, value, domain, path} shape."""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from typing import Any

from . import CookieRecord


def normalize_cookie(raw: Mapping[str, Any]) -> CookieRecord:
    """Drop expiry, flags and partition info; missing keys become ``""``."""
    return CookieRecord(
        name=str(raw.get("name", "")),
        value=str(raw.get("value", "")),
        domain=str(raw.get("domain", "")),
        path=str(raw.get("path", "")),
    )


def normalize_cookies(raws: Iterable[Mapping[str, Any]]) -> list[CookieRecord]:
    """Normalize in browser order."""
    return [normalize_cookie(raw) for raw in raws]
