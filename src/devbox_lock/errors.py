"""
Error types raised by devbox-lock.

Every error carries an optional hint and a context mapping so that callers
(and the CLI) can render a helpful diagnostic without parsing messages.
"""

from __future__ import annotations

from collections.abc import Mapping


class DevboxLockError(Exception):
    """Base error with an optional hint and context."""

    def __init__(
        self,
        message: str,
        *,
        hint: str | None = None,
        context: Mapping[str, str] | None = None,
    ) -> None:
        super().__init__(message)
        self.hint = hint
        self.context = dict(context or {})

    def __str__(self) -> str:
        parts = [super().__str__()]
        if self.hint:
            parts.append(f"Hint: {self.hint}")
        for key, value in self.context.items():
            if value:
                parts.append(f"  {key}: {value}")
        return "\n".join(parts)


class LockfileError(DevboxLockError):
    """The lockfile could not be read, decoded, or resolved."""


class StateError(DevboxLockError):
    """The persisted installation state file is unreadable."""


class FlakeRefError(DevboxLockError, ValueError):
    """A string could not be parsed as a flake reference or installable."""


class InvalidDurationError(DevboxLockError, ValueError):
    """A duration override is not a valid duration string."""


class PluginManifestError(DevboxLockError, ValueError):
    """A plugin manifest is not valid JSON (with comments)."""


class PluginFetchError(DevboxLockError):
    """
    User-facing failure to fetch a remote plugin.

    The message is meant to be shown as-is; it never contains a full
    credential.
    """
