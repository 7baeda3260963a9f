"""Nix platform helpers."""

import platform
import sys
from functools import cache

_ARCH_ALIASES = {
    "amd64": "x86_64",
    "x64": "x86_64",
    "arm64": "aarch64",
    "armv8": "aarch64",
    "i386": "i686",
}


@cache
def current_system() -> str:
    """The Nix system double for this machine, e.g. ``x86_64-linux``."""
    machine = platform.machine().lower()
    arch = _ARCH_ALIASES.get(machine, machine)
    os_name = "darwin" if sys.platform == "darwin" else sys.platform.rstrip("0123456789")
    return f"{arch}-{os_name}"
