"""
Package Classification
======================

Every package spec a user declares falls into exactly one class, checked
in this order:

1. RunX       — ``runx:owner/repo[@version]``, a tool from the RunX registry
2. Versioned  — ``name@version``
3. Flake      — a scheme-qualified flake installable (``github:...#attr``,
                ``path:...``) or an absolute path
4. Legacy     — a bare attribute name such as ``python3``

A spec matching none of these is UNRESOLVED. It is left as an empty lock
entry rather than rejected (see ``LockFile.resolve``).
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Protocol, runtime_checkable

from devbox_lock.errors import FlakeRefError
from devbox_lock.parsers.flake import parse_installable

logger = logging.getLogger(__name__)

RUNX_PREFIX = "runx:"


class PackageKind(Enum):
    """Resolution strategy for a package spec."""

    RUNX = "runx"
    VERSIONED = "versioned"
    FLAKE = "flake"
    LEGACY = "legacy"
    UNRESOLVED = "unresolved"


def is_runx(spec: str) -> bool:
    return spec.startswith(RUNX_PREFIX)


def parse_versioned_package(spec: str) -> tuple[str, str, bool]:
    """
    Split ``name@version`` on the last ``@``.

    Some attribute names contain ``@`` (``emacsPackages.@``), so a trailing
    ``@`` is not a version separator. Scheme-qualified strings such as
    ``git+ssh://git@host/repo`` are flake references, not versions.

    Returns:
        ``(name, version, found)``; name and version are empty when not found.
    """
    if is_runx(spec):
        return "", "", False
    name, sep, version = spec.rpartition("@")
    if not sep or not name or not version or ":" in name:
        return "", "", False
    return name, version, True


def is_versioned(spec: str) -> bool:
    return parse_versioned_package(spec)[2]


def is_flake(spec: str) -> bool:
    if is_runx(spec) or is_versioned(spec):
        return False
    # Bare names are ambiguous with legacy packages; only scheme-qualified
    # references and absolute paths count as flakes.
    if ":" not in spec and not spec.startswith("/"):
        return False
    try:
        parse_installable(spec)
    except FlakeRefError:
        return False
    return True


def is_legacy_package(spec: str) -> bool:
    """
    A legacy package has no version, no scheme and is not an absolute path.

    Legacy packages resolve against the project's locked nixpkgs.
    """
    return (
        bool(spec)
        and not is_versioned(spec)
        and ":" not in spec
        and not spec.startswith("/")
    )


def classify(spec: str) -> PackageKind:
    if is_runx(spec):
        return PackageKind.RUNX
    if is_versioned(spec):
        return PackageKind.VERSIONED
    if is_flake(spec):
        return PackageKind.FLAKE
    if is_legacy_package(spec):
        return PackageKind.LEGACY
    return PackageKind.UNRESOLVED


# ──────────────────────────────────────────────
# RunX
# ──────────────────────────────────────────────


@dataclass(frozen=True)
class RunXRef:
    """A tool hosted on GitHub and versioned by its releases."""

    owner: str
    repo: str
    version: str = "latest"

    def __str__(self) -> str:
        return f"{self.owner}/{self.repo}@{self.version}"


@runtime_checkable
class RunXRegistry(Protocol):
    """Registry capable of pinning a RunX tool to a concrete release."""

    def resolve_version(self, ref: RunXRef) -> RunXRef:
        """Return the ref with ``version`` replaced by a concrete release."""
        ...


def parse_runx_ref(raw: str) -> RunXRef:
    """Parse ``owner/repo[@version]`` (without the ``runx:`` prefix)."""
    path, _, version = raw.partition("@")
    owner, _, repo = path.partition("/")
    if not owner or not repo or "/" in repo:
        raise ValueError(f"invalid runx package {raw!r}: expected owner/repo[@version]")
    return RunXRef(owner=owner, repo=repo, version=version or "latest")


def resolve_runx_package(spec: str, registry: RunXRegistry) -> RunXRef:
    """Pin a ``runx:`` spec to a concrete version via ``registry``."""
    ref = parse_runx_ref(spec.removeprefix(RUNX_PREFIX))
    resolved = registry.resolve_version(ref)
    logger.debug(f"[RunX] {spec} -> {resolved}")
    return resolved
