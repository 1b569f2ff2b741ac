# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Cookie Fetch HTTP server.

Routes:
- GET  /fetch-cookies/{url}  — URL taken from the path, ``?headless=false`` for a visible browser
- POST /fetch-cookies/       — JSON ``{"url", "pattern", "headless"}``
- GET  /health               — liveness check

Each request runs one isolated browser session (see orchestrator.py).
Errors are RFC 9457 problem+json. All logging goes to stderr.
"""

from __future__ import annotations

import argparse
import asyncio
import dataclasses
import json
import logging
import os
import uuid
from contextlib import suppress
from typing import Annotated
from urllib.parse import urlencode

import structlog
from pydantic import BaseModel, Field, StringConstraints, ValidationError
from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from starlette.routing import Route

from . import SessionRequest
from .browser_session import BrowserSession
from .config import DEFAULT_CONFIG_PATH, AppConfig, apply_env, load_config
from .errors import ConfigError, CookieServiceError
from .orchestrator import SessionFactory, SessionOrchestrator
from .problem_details import from_exception, from_validation

# Logging configured in main() via logging_config.configure()
logger = logging.getLogger("cookiefetch.server")

_FALSY_HEADLESS = ("false", "False")


class FetchCookiesPayload(BaseModel):
    """POST body for /fetch-cookies/."""

    url: Annotated[str, StringConstraints(strip_whitespace=True, min_length=1)] = Field(
        description="Target URL; https:// is assumed when no scheme is given"
    )
    pattern: str = Field(default="", description="Regex the browser location must match before cookies are read")
    headless: bool = Field(default=True, description="Run Chromium without a visible window")


def _target_from_path(raw: str, query: dict[str, str]) -> str:
    """Rebuild the target URL from the path remainder and non-control query params.

    Proxies sometimes collapse ``https://`` to ``https:/``; that is repaired.
    """
    target = raw
    for scheme in ("http:/", "https:/"):
        if target.startswith(scheme) and not target.startswith(scheme + "/"):
            target = scheme + "/" + target[len(scheme) :]
            break
    extra = {k: v for k, v in query.items() if k != "headless"}
    if extra:
        target = f"{target}?{urlencode(extra)}"
    return target


def _problem_response(exc: BaseException, request_id: str) -> Response:
    problem = from_exception(exc, instance=f"urn:request:{request_id}")
    logger.warning("Error: %s (Status: %d)", problem.detail, problem.status)
    return problem.to_response()


def create_app(
    config: AppConfig | None = None,
    *,
    session_factory: SessionFactory = BrowserSession,
) -> Starlette:
    """Build the ASGI app. Sessions are created per request, never shared."""
    config = config or AppConfig()
    orchestrator = SessionOrchestrator(config.session, session_factory=session_factory)

    async def _run(session_request: SessionRequest, request_id: str) -> Response:
        logger.debug("Processing URL: %s (headless=%s)", session_request.url, session_request.headless)
        try:
            cookies = await orchestrator.run(session_request)
        except Exception as exc:
            if not isinstance(exc, CookieServiceError):
                logger.exception("Unexpected error while fetching cookies for %s", session_request.url)
            return _problem_response(exc, request_id)
        logger.info("Returning %d cookies for %s", len(cookies), session_request.url)
        return JSONResponse([c.to_dict() for c in cookies], headers={"X-Request-ID": request_id})

    def _bind_request(request: Request) -> str:
        request_id = request.headers.get("x-request-id") or uuid.uuid4().hex[:16]
        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(
            request_id=request_id,
            client_ip=request.client.host if request.client else "",
        )
        return request_id

    async def fetch_cookies_get(request: Request) -> Response:
        request_id = _bind_request(request)
        raw = request.path_params.get("target", "")
        if not raw.strip():
            problem = from_validation("Missing URL in path", field_name="url", instance=f"urn:request:{request_id}")
            return problem.to_response()
        headless = request.query_params.get("headless") not in _FALSY_HEADLESS
        target = _target_from_path(raw, dict(request.query_params))
        session_request = SessionRequest.create(
            target,
            headless=headless,
            profile_dir=config.session.profile_dir,
        )
        return await _run(session_request, request_id)

    async def fetch_cookies_post(request: Request) -> Response:
        request_id = _bind_request(request)
        instance = f"urn:request:{request_id}"
        try:
            body = await request.json()
        except (json.JSONDecodeError, UnicodeDecodeError):
            return from_validation("Invalid JSON payload", instance=instance).to_response()
        try:
            payload = FetchCookiesPayload.model_validate(body)
        except ValidationError as exc:
            first = exc.errors()[0]
            field_name = ".".join(str(p) for p in first.get("loc", ()))
            message = f"{field_name}: {first.get('msg', 'invalid value')}" if field_name else "Invalid request body"
            return from_validation(message, field_name=field_name, instance=instance).to_response()
        session_request = SessionRequest.create(
            payload.url,
            pattern=payload.pattern,
            headless=payload.headless,
            profile_dir=config.session.profile_dir,
        )
        return await _run(session_request, request_id)

    async def health(request: Request) -> Response:
        return JSONResponse({"status": "ok"})

    routes = [
        Route("/health", health, methods=["GET"]),
        Route("/fetch-cookies", fetch_cookies_post, methods=["POST"]),
        Route("/fetch-cookies/", fetch_cookies_post, methods=["POST"]),
        Route("/fetch-cookies/{target:path}", fetch_cookies_get, methods=["GET"]),
    ]
    app = Starlette(routes=routes)
    app.state.config = config
    return app


def _parse_server_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse CLI args and env vars for server configuration."""
    parser = argparse.ArgumentParser(description="Cookie Fetch HTTP server")
    parser.add_argument(
        "--config",
        default="",
        help=f"Path to YAML config (default: {DEFAULT_CONFIG_PATH})",
    )
    parser.add_argument("--host", default="", help="Override server.ip")
    parser.add_argument("--port", type=int, default=0, help="Override server.port")
    parser.add_argument(
        "--verbose",
        action="store_true",
        default=False,
        help="Enable verbose logging",
    )
    args, _ = parser.parse_known_args(argv)

    env_config = os.environ.get("COOKIEFETCH_CONFIG", "").strip()
    if env_config and not args.config:
        args.config = env_config
    if not args.config:
        args.config = DEFAULT_CONFIG_PATH
    return args


def build_config(args: argparse.Namespace) -> AppConfig:
    """config.yaml → COOKIEFETCH_* env → command-line flags (last wins)."""
    config = apply_env(load_config(args.config))
    server = config.server
    if args.host:
        server = dataclasses.replace(server, host=args.host)
    if args.port:
        server = dataclasses.replace(server, port=args.port)
    return dataclasses.replace(config, server=server, verbose=config.verbose or args.verbose)


async def _run_http_server(config: AppConfig) -> None:
    import uvicorn

    app = create_app(config)
    uv_config = uvicorn.Config(
        app,
        host=config.server.host,
        port=config.server.port,
        log_level="debug" if config.verbose else "info",
    )
    server = uvicorn.Server(uv_config)
    await server.serve()
    logger.info("HTTP server: shutdown complete")


def main(argv: list[str] | None = None) -> None:
    """Entry point for the HTTP server."""
    import sys

    from .logging_config import configure as configure_logging

    args = _parse_server_args(argv if argv is not None else sys.argv[1:])
    # Configure structlog BEFORE any log output
    configure_logging(json_output=True, verbose=args.verbose)
    try:
        config = build_config(args)
    except ConfigError as exc:
        logger.error("Invalid configuration: %s", exc)
        sys.exit(1)
    if config.verbose and not args.verbose:
        configure_logging(json_output=True, verbose=True)

    logger.info("Starting server on %s:%d", config.server.host, config.server.port)
    with suppress(KeyboardInterrupt):
        asyncio.run(_run_http_server(config))


if __name__ == "__main__":
    main()
