"""
Lockfile Model — the persisted shape of ``devbox.lock``.

Packages are keyed by the exact spec string a user declared. Each package
records its resolved install reference and, per system, the store outputs
it builds to.

Legacy lockfiles store a single ``store_path`` per system instead of an
``outputs`` list. Those are migrated into ``outputs`` in memory on load and
written back in their minimal legacy form so the file on disk does not
churn until the user resolves the package again.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

LOCK_FILE_VERSION = "1"


class PackageSource(str, Enum):
    """Where a locked package was resolved from."""

    NIXPKG = "nixpkg"
    DEVBOX_SEARCH = "devbox-search"
    FLAKE = "flake"
    RUNX = "runx"


@dataclass
class Output:
    """A single named build output of a package."""

    name: str = ""
    path: str = ""
    default: bool = False

    def to_dict(self) -> dict:
        data: dict[str, Any] = {}
        if self.name:
            data["name"] = self.name
        if self.path:
            data["path"] = self.path
        if self.default:
            data["default"] = True
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "Output":
        return cls(
            name=data.get("name", ""),
            path=data.get("path", ""),
            default=bool(data.get("default", False)),
        )


@dataclass
class SystemInfo:
    """Per-system build information for a locked package."""

    store_path: str = ""
    outputs: list[Output] = field(default_factory=list)
    # Set when outputs were derived from store_path. Never serialized.
    outputs_from_store_path: bool = field(default=False, compare=False)

    def to_dict(self, legacy_minimal: bool = False) -> dict:
        data: dict[str, Any] = {}
        if self.store_path:
            data["store_path"] = self.store_path
        if self.outputs and not (legacy_minimal and self.outputs_from_store_path):
            data["outputs"] = [output.to_dict() for output in self.outputs]
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "SystemInfo":
        return cls(
            store_path=data.get("store_path", ""),
            outputs=[Output.from_dict(o) for o in data.get("outputs") or []],
        )


@dataclass
class Package:
    """
    A locked package.

    An empty ``resolved`` means the package is pending or could not be
    resolved; downstream consumers must not treat it as installable.
    """

    resolved: str = ""
    source: str = ""
    allow_insecure: bool = False
    last_modified: str = ""
    plugin_version: str = ""
    version: str = ""
    systems: dict[str, SystemInfo] = field(default_factory=dict)

    @property
    def is_resolved(self) -> bool:
        return self.resolved != ""

    def to_dict(self, legacy_minimal: bool = False) -> dict:
        data: dict[str, Any] = {}
        if self.allow_insecure:
            data["allow_insecure"] = True
        if self.last_modified:
            data["last_modified"] = self.last_modified
        if self.plugin_version:
            data["plugin_version"] = self.plugin_version
        if self.resolved:
            data["resolved"] = self.resolved
        if self.source:
            data["source"] = str(getattr(self.source, "value", self.source))
        if self.version:
            data["version"] = self.version
        if self.systems:
            data["systems"] = {
                system: info.to_dict(legacy_minimal=legacy_minimal)
                for system, info in sorted(self.systems.items())
            }
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "Package":
        return cls(
            resolved=data.get("resolved", ""),
            source=data.get("source", ""),
            allow_insecure=bool(data.get("allow_insecure", False)),
            last_modified=data.get("last_modified", ""),
            plugin_version=data.get("plugin_version", ""),
            version=data.get("version", ""),
            systems={
                system: SystemInfo.from_dict(info or {})
                for system, info in (data.get("systems") or {}).items()
            },
        )


def ensure_outputs(packages: dict[str, Package]) -> None:
    """Fill ``outputs`` from legacy ``store_path`` fields, in place."""
    for pkg in packages.values():
        for info in pkg.systems.values():
            if not info.outputs and info.store_path:
                info.outputs = [Output(name="out", path=info.store_path, default=True)]
                info.outputs_from_store_path = True


def lockfile_to_dict(
    version: str, packages: dict[str, Package], legacy_minimal: bool = False
) -> dict:
    """Render a lockfile as a JSON-compatible dictionary."""
    return {
        "lockfile_version": version,
        "packages": {
            name: pkg.to_dict(legacy_minimal=legacy_minimal)
            for name, pkg in sorted(packages.items())
        },
    }


def packages_from_dict(data: dict) -> dict[str, Package]:
    return {
        name: Package.from_dict(pkg or {}) for name, pkg in (data.get("packages") or {}).items()
    }
