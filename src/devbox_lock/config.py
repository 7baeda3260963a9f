"""
Configuration — environment variables, defaults and duration parsing.

Values are read from the environment at call time so that a single
command invocation always sees the environment it was started with.
"""

import logging
import os
import re
from datetime import timedelta
from pathlib import Path

from devbox_lock.errors import InvalidDurationError

logger = logging.getLogger(__name__)

ENV_GITHUB_TOKEN = "GITHUB_TOKEN"
# DEVBOX_X marks an experimental override.
ENV_PLUGIN_CACHE_TTL = "DEVBOX_X_GITHUB_PLUGIN_CACHE_TTL"
ENV_XDG_CACHE_HOME = "XDG_CACHE_HOME"

LOCK_FILE_NAME = "devbox.lock"
CONFIG_FILE_NAME = "devbox.json"
STATE_DIR_NAME = ".devbox"

DEFAULT_STDENV = "github:NixOS/nixpkgs/nixpkgs-unstable"
DEFAULT_PLUGIN_CACHE_TTL = timedelta(hours=24)
PLUGIN_CACHE_NAMESPACE = "devbox/plugin/github"

_UNIT_SECONDS = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "μs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}

_DURATION_PART = re.compile(r"(\d+(?:\.\d*)?|\.\d+)(ns|us|µs|μs|ms|s|m|h)")

# Largest duration Go accepts: 2**63 - 1 nanoseconds (about 2562047h).
MAX_DURATION_SECONDS = (2**63 - 1) / 1e9


def parse_duration(value: str) -> timedelta:
    """
    Parse a duration string such as ``"300ms"``, ``"1.5h"`` or ``"2h45m"``.

    The grammar is a signed sequence of decimal numbers, each with a unit
    suffix. ``"0"`` is accepted without a unit.

    Raises:
        InvalidDurationError: If the string is not a valid duration.
    """
    raw = value
    sign = 1.0
    if value[:1] in ("+", "-"):
        sign = -1.0 if value[0] == "-" else 1.0
        value = value[1:]

    if value == "0":
        return timedelta(0)
    if not value:
        raise InvalidDurationError(f"invalid duration {raw!r}")

    total = 0.0
    pos = 0
    while pos < len(value):
        match = _DURATION_PART.match(value, pos)
        if not match:
            raise InvalidDurationError(
                f"invalid duration {raw!r}",
                hint="Use a number followed by a unit, e.g. 30s, 15m or 1h.",
            )
        number, unit = match.groups()
        total += float(number) * _UNIT_SECONDS[unit]
        if total > MAX_DURATION_SECONDS:
            raise InvalidDurationError(
                f"invalid duration {raw!r}: out of range",
                hint="Durations must be shorter than about 2562047h.",
            )
        pos = match.end()

    return timedelta(seconds=sign * total)


def plugin_cache_ttl_override() -> str:
    """Raw TTL override from the environment ("" when unset)."""
    return os.environ.get(ENV_PLUGIN_CACHE_TTL, "")


def plugin_cache_ttl(override: str | None = None) -> timedelta:
    """
    Effective TTL for cached plugin content.

    A malformed override is an error; it never falls back to the default.
    """
    if override is None:
        override = plugin_cache_ttl_override()
    if not override:
        return DEFAULT_PLUGIN_CACHE_TTL
    return parse_duration(override)


def github_token() -> str | None:
    return os.environ.get(ENV_GITHUB_TOKEN) or None


def default_cache_dir() -> Path:
    """User cache directory, honouring ``XDG_CACHE_HOME``."""
    base = os.environ.get(ENV_XDG_CACHE_HOME)
    if base:
        return Path(base)
    return Path.home() / ".cache"
