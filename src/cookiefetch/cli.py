# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Cookie Fetch CLI: one-shot fetch and server launcher.

Usage:
    cookie-fetch fetch URL [--pattern REGEX] [--headed] [--config FILE] [--verbose]
    cookie-fetch serve [--config FILE] [--host HOST] [--port PORT] [--verbose]
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import os
import sys

from . import SessionRequest
from .config import DEFAULT_CONFIG_PATH, apply_env, load_config
from .errors import CookieServiceError
from .logging_config import configure as configure_logging
from .orchestrator import run_session
from .problem_details import from_exception

logger = logging.getLogger("cookiefetch.cli")


def cmd_fetch(args: argparse.Namespace) -> int:
    """Run a single session and print the cookies as a JSON array."""
    config_path = args.config or os.environ.get("COOKIEFETCH_CONFIG", "").strip() or DEFAULT_CONFIG_PATH
    config = apply_env(load_config(config_path))
    if config.verbose:
        configure_logging(json_output=False, verbose=True)
    request = SessionRequest.create(
        args.url,
        pattern=args.pattern,
        headless=not args.headed,
        profile_dir=config.session.profile_dir,
    )
    cookies = asyncio.run(run_session(request, config.session))
    print(json.dumps([c.to_dict() for c in cookies], indent=2, ensure_ascii=False))
    return 0


def cmd_serve(args: argparse.Namespace) -> int:
    """Start the HTTP server, forwarding any extra args to it."""
    from .server import main as server_main

    server_main(getattr(args, "_server_argv", []))
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Cookie Fetch CLI",
        prog="cookie-fetch",
    )
    parser.add_argument("-v", "--verbose", action="store_true")
    subparsers = parser.add_subparsers(dest="command", required=True)

    _fetch_epilog = """\
examples:
  %(prog)s example.com                                   Cookies after the page settles
  %(prog)s https://sso.example.com --pattern '/home$'    Wait for the redirect chain first
  %(prog)s example.com --headed                          Show the browser window
"""
    p_fetch = subparsers.add_parser(
        "fetch",
        help="Fetch cookies for one URL and print them as JSON",
        epilog=_fetch_epilog,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    p_fetch.add_argument("url", metavar="URL", help="Target URL (https:// assumed when no scheme)")
    p_fetch.add_argument("--pattern", default="", metavar="REGEX", help="Wait until the location matches REGEX")
    p_fetch.add_argument("--headed", action="store_true", help="Run with a visible browser window")
    p_fetch.add_argument("--config", default="", metavar="FILE", help=f"YAML config (default: {DEFAULT_CONFIG_PATH})")
    p_fetch.add_argument("--verbose", action="store_true", dest="fetch_verbose", help="Trace each session step")

    subparsers.add_parser(
        "serve",
        help="Start the HTTP server (extra args forwarded to server)",
        add_help=False,
    )
    return parser


def main(argv: list[str] | None = None) -> None:
    """CLI entry point."""
    parser = build_parser()
    commands = {"fetch": cmd_fetch, "serve": cmd_serve}

    args, remaining = parser.parse_known_args(argv)

    # Forward remaining args to server when using 'serve' command
    if args.command == "serve":
        args._server_argv = remaining
    elif remaining:
        parser.error(f"unrecognized arguments: {' '.join(remaining)}")

    verbose = args.verbose or getattr(args, "fetch_verbose", False)
    if args.command == "fetch":
        configure_logging(json_output=False, verbose=verbose)

    try:
        code = commands[args.command](args)
    except KeyboardInterrupt:
        print("\nInterrupted.", file=sys.stderr)
        sys.exit(130)
    except SystemExit:
        raise
    except Exception as e:
        problem = from_exception(e)
        print(problem.to_cli_text(), file=sys.stderr)
        if verbose and not isinstance(e, CookieServiceError):
            logger.error("Unexpected error", exc_info=e)
        sys.exit(1)
    sys.exit(code)


if __name__ == "__main__":
    main()
