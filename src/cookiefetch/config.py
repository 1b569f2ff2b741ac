# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Service configuration: config.yaml + COOKIEFETCH_* environment overrides.

File layout::

    chrome:
      profile_dir: "~/AppData/Local/Google/Chrome/User Data/"
    server:
      ip: 0.0.0.0
      port: 8080
    timeouts:          # seconds
      overall: 60
      pattern: 30
      network_idle: 30
      idle_window: 2
      poll_interval: 0.1

A missing or unparsable file falls back to defaults with a warning.
Values that parse but make no sense (negative timeouts, bad port) raise
ConfigError.
"""

from __future__ import annotations

import dataclasses
import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from .errors import ConfigError

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = "config.yaml"
DEFAULT_PROFILE_DIR = "~/AppData/Local/Google/Chrome/User Data/"
DEFAULT_HOST = "0.0.0.0"  # nosec B104
DEFAULT_PORT = 8080

_TRUTHY = ("1", "true", "yes")


@dataclass(frozen=True, slots=True)
class SessionSettings:
    """Everything the orchestrator reads. Durations in seconds."""

    profile_dir: str = DEFAULT_PROFILE_DIR
    overall_timeout: float = 60.0
    pattern_timeout: float = 30.0
    idle_timeout: float = 30.0
    idle_window: float = 2.0
    poll_interval: float = 0.1

    def __post_init__(self) -> None:
        for name in ("overall_timeout", "pattern_timeout", "idle_timeout", "poll_interval"):
            if getattr(self, name) <= 0:
                raise ConfigError(f"{name} must be positive, got {getattr(self, name)!r}")
        if self.idle_window < 0:
            raise ConfigError(f"idle_window must not be negative, got {self.idle_window!r}")


@dataclass(frozen=True, slots=True)
class ServerSettings:
    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT

    def __post_init__(self) -> None:
        if not 0 < self.port < 65536:
            raise ConfigError(f"port out of range: {self.port!r}")


@dataclass(frozen=True, slots=True)
class AppConfig:
    session: SessionSettings = field(default_factory=SessionSettings)
    server: ServerSettings = field(default_factory=ServerSettings)
    verbose: bool = False


def expand_profile_dir(path: str) -> str:
    """Expand ``~`` in *path*; empty means the default profile directory.

    Raises ConfigError when the home directory cannot be resolved
    (unknown ``~user``, no HOME).
    """
    raw = path or DEFAULT_PROFILE_DIR
    expanded = os.path.expanduser(raw)
    if expanded.startswith("~"):
        raise ConfigError(f"failed to expand profile dir: {raw}")
    return expanded


def _number(section: Mapping[str, Any], key: str, default: float) -> float:
    value = section.get(key)
    if value is None:
        return default
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ConfigError(f"timeouts.{key} must be a number, got {value!r}")
    return float(value)


def _section(data: Mapping[str, Any], name: str) -> Mapping[str, Any]:
    section = data.get(name) or {}
    if not isinstance(section, Mapping):
        raise ConfigError(f"'{name}' must be a mapping")
    return section


def parse_config(data: Mapping[str, Any]) -> AppConfig:
    """Build AppConfig from an already-parsed YAML document."""
    chrome = _section(data, "chrome")
    server = _section(data, "server")
    timeouts = _section(data, "timeouts")

    session = SessionSettings(
        profile_dir=str(chrome.get("profile_dir") or DEFAULT_PROFILE_DIR),
        overall_timeout=_number(timeouts, "overall", 60.0),
        pattern_timeout=_number(timeouts, "pattern", 30.0),
        idle_timeout=_number(timeouts, "network_idle", 30.0),
        idle_window=_number(timeouts, "idle_window", 2.0),
        poll_interval=_number(timeouts, "poll_interval", 0.1),
    )
    port = server.get("port") or DEFAULT_PORT
    try:
        port = int(port)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"server.port must be an integer, got {port!r}") from exc
    return AppConfig(
        session=session,
        server=ServerSettings(host=str(server.get("ip") or DEFAULT_HOST), port=port),
    )


def load_config(path: str | Path = DEFAULT_CONFIG_PATH) -> AppConfig:
    """Load *path*; unreadable or malformed YAML logs a warning and yields defaults."""
    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except OSError as exc:
        logger.warning("Failed to load config, using defaults: failed to read config file %s: %s", path, exc)
        return AppConfig()
    except yaml.YAMLError as exc:
        logger.warning("Failed to load config, using defaults: failed to parse config file %s: %s", path, exc)
        return AppConfig()
    if not isinstance(data, Mapping):
        logger.warning("Failed to load config, using defaults: %s is not a mapping", path)
        return AppConfig()
    return parse_config(data)


def apply_env(config: AppConfig, environ: Mapping[str, str] | None = None) -> AppConfig:
    """Apply COOKIEFETCH_* environment overrides."""
    env = os.environ if environ is None else environ

    server = config.server
    env_host = env.get("COOKIEFETCH_HOST", "").strip()
    if env_host:
        server = dataclasses.replace(server, host=env_host)
    env_port = env.get("COOKIEFETCH_PORT", "").strip()
    if env_port:
        try:
            server = dataclasses.replace(server, port=int(env_port))
        except ValueError as exc:
            raise ConfigError(f"COOKIEFETCH_PORT must be an integer, got {env_port!r}") from exc

    session = config.session
    env_profile = env.get("COOKIEFETCH_PROFILE_DIR", "").strip()
    if env_profile:
        session = dataclasses.replace(session, profile_dir=env_profile)

    env_verbose = env.get("COOKIEFETCH_VERBOSE", "").strip().lower()
    verbose = config.verbose or env_verbose in _TRUTHY

    return AppConfig(session=session, server=server, verbose=verbose)
