# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""RFC 9457 Problem Details for HTTP APIs.

Maps Cookie Fetch exceptions to standardised problem detail objects. The
module is a near-leaf dependency (stdlib + errors.py + starlette lazy) so
it can be imported safely from any layer.

Key public API:

- ``ProblemType``   — error taxonomy, one member per session failure kind.
- ``ProblemDetail`` — frozen dataclass (→ JSON / Starlette response / CLI text).
- ``sanitize_detail()`` — scrub secrets & paths from error messages.
- ``from_exception`` / ``from_validation`` — factory functions.

Type URI namespace: ``https://www.retio.ai/cookie-fetch/errors/{slug}``
"""

from __future__ import annotations

import dataclasses
import json
import re
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

# ── Constants ────────────────────────────────────────────────────────

_ERROR_BASE = "https://www.retio.ai/cookie-fetch/errors"

MAX_DETAIL_LENGTH = 300

# ── ProblemType taxonomy ─────────────────────────────────────────────


class ProblemType(StrEnum):
    """Error taxonomy for Cookie Fetch."""

    # Request validation (before any browser work)
    VALIDATION_ERROR = "validation-error"
    INVALID_PATTERN = "invalid-pattern"

    # Session steps
    CONFIG_ERROR = "config-error"
    SESSION_SETUP_FAILED = "session-setup-failed"
    NAVIGATION_FAILED = "navigation-failed"
    PATTERN_TIMEOUT = "pattern-timeout"
    PAGE_NOT_READY = "page-not-ready"
    NETWORK_IDLE_TIMEOUT = "network-idle-timeout"
    COOKIE_FETCH_FAILED = "cookie-fetch-failed"
    DEADLINE_EXCEEDED = "deadline-exceeded"

    @property
    def uri(self) -> str:
        """Full type URI for RFC 9457 ``type`` field."""
        return f"{_ERROR_BASE}/{self.value}"


# ── Per-type metadata: (status, title, hint) ─────────────────────────

_TYPE_METADATA: dict[ProblemType, tuple[int, str, str]] = {
    ProblemType.VALIDATION_ERROR: (400, "Invalid Request", "Provide a URL, e.g. example.com or https://example.com."),
    ProblemType.INVALID_PATTERN: (400, "Invalid Pattern", "The pattern must be a valid regular expression."),
    ProblemType.CONFIG_ERROR: (500, "Configuration Error", "Check chrome.profile_dir in config.yaml."),
    ProblemType.SESSION_SETUP_FAILED: (
        503,
        "Browser Unavailable",
        "Ensure Chromium is installed (playwright install chromium) and the profile is not locked.",
    ),
    ProblemType.NAVIGATION_FAILED: (502, "Navigation Failed", "Check the URL and that the site is reachable."),
    ProblemType.PATTERN_TIMEOUT: (504, "Pattern Not Reached", "Check the pattern against the redirect chain."),
    ProblemType.PAGE_NOT_READY: (504, "Page Not Ready", "The page never rendered a visible body."),
    ProblemType.NETWORK_IDLE_TIMEOUT: (
        504,
        "Network Never Idle",
        "The page keeps issuing requests; cookie state may be incomplete.",
    ),
    ProblemType.COOKIE_FETCH_FAILED: (502, "Cookie Fetch Failed", "Retry the request."),
    ProblemType.DEADLINE_EXCEEDED: (504, "Session Deadline Exceeded", ""),
}

# ── Secret sanitization patterns ─────────────────────────────────────

_SECRET_PATTERNS: list[tuple[re.Pattern[str], str]] = [
    (re.compile(r"Bearer\s+\S+"), "Bearer <redacted>"),
    (
        re.compile(
            r"(?:API_KEY|SECRET|TOKEN|PASSWORD|CREDENTIAL)\s*[=:]\s*\S+",
            re.IGNORECASE,
        ),
        "<redacted>",
    ),
    (re.compile(r"Basic\s+[A-Za-z0-9+/=]{8,}"), "Basic <redacted>"),
    (re.compile(r"://[^@\s/]+@"), "://<redacted>@"),
    (
        re.compile(r"eyJ[A-Za-z0-9_-]{10,}\.[A-Za-z0-9_-]{10,}\.[A-Za-z0-9_-]{10,}"),
        "<redacted>",
    ),
]

_PATH_PATTERN = re.compile(
    r"(/(?:Users|home|tmp|var|etc|opt|root|srv|proc|sys|usr|Library"
    r"|Applications|private|snap|mnt|media|nix)/[\w./ -]+"
    r"|[A-Z]:\\[\w.\\ -]+)"
)


def sanitize_detail(text: str) -> str:
    """Scrub secrets and filesystem paths from *text*.

    Applies ``_SECRET_PATTERNS`` and ``_PATH_PATTERN``, then truncates
    to ``MAX_DETAIL_LENGTH`` characters.
    """
    for pattern, replacement in _SECRET_PATTERNS:
        text = pattern.sub(replacement, text)
    text = _PATH_PATTERN.sub("<path>", text)
    if len(text) > MAX_DETAIL_LENGTH:
        text = text[:MAX_DETAIL_LENGTH] + "..."
    return text


# ── ProblemDetail dataclass ──────────────────────────────────────────

# Standard RFC 9457 fields that extensions must never shadow.
_STANDARD_FIELDS = frozenset({"type", "title", "status", "detail", "instance"})


@dataclass(frozen=True, slots=True)
class ProblemDetail:
    """RFC 9457 Problem Detail object.

    Immutable representation of a structured error. Supports
    serialisation to JSON dict, JSON string, Starlette response,
    and CLI text.
    """

    type: str = "about:blank"
    title: str = ""
    status: int = 500
    detail: str = ""
    instance: str = ""
    extensions: dict[str, Any] = field(default_factory=dict)
    hint: str = field(default="", repr=False)

    def to_dict(self) -> dict[str, Any]:
        """RFC 9457 JSON dict. Empty optional fields omitted, extensions merged at top level."""
        d: dict[str, Any] = {"type": self.type, "status": self.status}
        if self.title:
            d["title"] = self.title
        if self.detail:
            d["detail"] = self.detail
        if self.instance:
            d["instance"] = self.instance
        for k, v in self.extensions.items():
            if k not in _STANDARD_FIELDS:
                d[k] = v
        return d

    def to_json(self) -> str:
        """JSON string (``ensure_ascii=False``)."""
        return json.dumps(self.to_dict(), ensure_ascii=False)

    def to_response(self):
        """Starlette ``JSONResponse`` with RFC 9457 headers."""
        from starlette.responses import JSONResponse

        return JSONResponse(
            content=self.to_dict(),
            status_code=self.status,
            media_type="application/problem+json",
            headers={"Cache-Control": "no-store", "Content-Language": "en"},
        )

    def to_cli_text(self) -> str:
        """Human-friendly CLI error message.

        Format::

            Error: <detail>
            Hint: <hint>
        """
        lines = [f"Error: {self.detail or self.title}"]
        if self.hint:
            lines.append(f"Hint: {self.hint}")
        return "\n".join(lines)


# ── Exception → ProblemType mapping ──────────────────────────────────


def _exception_type_map() -> dict[type, ProblemType]:
    """Lazy-build mapping from exception classes to ProblemType."""
    from .errors import (
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

    return {
        InvalidPatternError: ProblemType.INVALID_PATTERN,
        ConfigError: ProblemType.CONFIG_ERROR,
        SessionSetupError: ProblemType.SESSION_SETUP_FAILED,
        NavigationError: ProblemType.NAVIGATION_FAILED,
        PatternTimeoutError: ProblemType.PATTERN_TIMEOUT,
        ReadinessError: ProblemType.PAGE_NOT_READY,
        NetworkIdleTimeoutError: ProblemType.NETWORK_IDLE_TIMEOUT,
        CookieFetchError: ProblemType.COOKIE_FETCH_FAILED,
        ContextCancelledError: ProblemType.DEADLINE_EXCEEDED,
    }


def _build(problem_type: ProblemType, detail: str, *, instance: str, extensions: dict[str, Any]) -> ProblemDetail:
    status, title, hint = _TYPE_METADATA[problem_type]
    return ProblemDetail(
        type=problem_type.uri,
        title=title,
        status=status,
        detail=sanitize_detail(detail),
        instance=instance,
        extensions=extensions,
        hint=hint,
    )


# ── Factory functions ────────────────────────────────────────────────


def from_exception(
    exc: BaseException,
    *,
    instance: str = "",
    extensions: dict[str, Any] | None = None,
) -> ProblemDetail:
    """Build a ProblemDetail from an exception.

    Known Cookie Fetch errors map to their ProblemType. Anything else
    produces a generic ``about:blank`` 500 without the exception text so
    internal state does not leak.
    """
    from .errors import ContextCancelledError, InvalidPatternError, PatternTimeoutError

    ext = dict(extensions) if extensions else {}
    type_map = _exception_type_map()
    problem_type = None
    for exc_cls in type(exc).__mro__:
        problem_type = type_map.get(exc_cls)
        if problem_type is not None:
            break

    if problem_type is None:
        return ProblemDetail(
            type="about:blank",
            title="Internal Server Error",
            status=500,
            detail="Unexpected error while fetching cookies.",
            instance=instance,
            extensions=ext,
        )

    if isinstance(exc, InvalidPatternError) and exc.pattern:
        ext.setdefault("pattern", exc.pattern)
    if isinstance(exc, PatternTimeoutError):
        if exc.pattern:
            ext.setdefault("pattern", exc.pattern)
        if exc.last_url:
            ext.setdefault("last_url", sanitize_detail(exc.last_url))
    if isinstance(exc, ContextCancelledError):
        if exc.stage:
            ext.setdefault("stage", exc.stage)
        if exc.report:
            ext.setdefault("timing", exc.report)

    problem = _build(problem_type, str(exc), instance=instance, extensions=ext)
    if isinstance(exc, ContextCancelledError) and exc.report.get("hint"):
        problem = dataclasses.replace(problem, hint=exc.report["hint"])
    return problem


def from_validation(
    detail: str,
    *,
    field_name: str = "",
    instance: str = "",
) -> ProblemDetail:
    """Build a 400 ProblemDetail for malformed requests."""
    ext: dict[str, Any] = {}
    if field_name:
        ext["field"] = field_name
    return _build(ProblemType.VALIDATION_ERROR, detail, instance=instance, extensions=ext)
