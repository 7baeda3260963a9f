"""
Project Capabilities — the narrow interfaces the lock store depends on.

The lock store never inspects a project's configuration directly. It talks
to a ``DevboxProject`` for the declared packages and base environment, and
to a ``PackageResolver`` for anything that needs a search index or a flake
evaluation.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import TYPE_CHECKING, Protocol, runtime_checkable

from devbox_lock.config import CONFIG_FILE_NAME, DEFAULT_STDENV
from devbox_lock.core.cachehash import json_hash
from devbox_lock.errors import LockfileError
from devbox_lock.parsers.flake import FlakeRef, parse_ref

if TYPE_CHECKING:
    from devbox_lock.models.lockfile import Package

logger = logging.getLogger(__name__)


@runtime_checkable
class DevboxProject(Protocol):
    """Project context consumed by the lock store."""

    def project_dir(self) -> Path:
        """Directory holding the project's config and lockfile."""
        ...

    def stdenv(self) -> FlakeRef:
        """Unlocked reference of the project's base nixpkgs."""
        ...

    def config_hash(self) -> str:
        """Hash of the declared configuration."""
        ...

    def all_package_names_including_removed_trigger_packages(self) -> list[str]:
        """Declared package specs plus retained trigger packages."""
        ...


@runtime_checkable
class PackageResolver(Protocol):
    """External resolver for flake, versioned and RunX specs."""

    def fetch_resolved_package(self, spec: str) -> Package | None:
        """
        Resolve ``spec`` to a locked package.

        ``None`` means there is nothing extra to lock (e.g. a flake with no
        metadata). Failures are raised.
        """
        ...

    def clear_flake_cache(self, ref: FlakeRef) -> None:
        """Drop any cached evaluation of ``ref`` so it is fetched again."""
        ...


class DevboxJSONProject:
    """
    DevboxProject backed by a ``devbox.json`` file.

    Understands ``packages`` as either a list of specs or a mapping of name
    to version (or to an options object with a ``version``), and
    ``nixpkgs.commit`` to pin the base environment.
    Trigger packages are supplied by the caller; they are retained in the
    lockfile even though they are no longer declared.
    """

    def __init__(self, project_dir: Path, trigger_packages: list[str] | None = None):
        self._project_dir = Path(project_dir)
        self._trigger_packages = list(trigger_packages or [])
        self._config: dict | None = None

    @property
    def config_path(self) -> Path:
        return self._project_dir / CONFIG_FILE_NAME

    def config(self) -> dict:
        if self._config is None:
            try:
                with open(self.config_path) as f:
                    config = json.load(f)
            except FileNotFoundError:
                logger.debug(f"No {CONFIG_FILE_NAME} in {self._project_dir}, using empty config")
                config = {}
            except json.JSONDecodeError as e:
                raise LockfileError(
                    f"Invalid {CONFIG_FILE_NAME}.",
                    hint=f"Fix the JSON syntax in {CONFIG_FILE_NAME} and run the command again.",
                    context={"path": str(self.config_path), "error": str(e)},
                ) from e
            if not isinstance(config, dict):
                raise LockfileError(
                    f"{CONFIG_FILE_NAME} must contain a JSON object.",
                    context={"path": str(self.config_path)},
                )
            self._config = config
        return self._config

    def project_dir(self) -> Path:
        return self._project_dir

    def stdenv(self) -> FlakeRef:
        commit = (self.config().get("nixpkgs") or {}).get("commit", "")
        if commit:
            return parse_ref(f"github:NixOS/nixpkgs/{commit}")
        return parse_ref(DEFAULT_STDENV)

    def config_hash(self) -> str:
        return json_hash(self.config())

    def package_names(self) -> list[str]:
        packages = self.config().get("packages") or []
        if isinstance(packages, dict):
            return [_versioned_name(name, options) for name, options in packages.items()]
        return [p for p in packages if isinstance(p, str)]

    def all_package_names_including_removed_trigger_packages(self) -> list[str]:
        return self.package_names() + self._trigger_packages


def _versioned_name(name: str, options) -> str:
    # Mapping values are either a version string or an options object.
    version = options.get("version", "") if isinstance(options, dict) else options
    if isinstance(version, str) and version:
        return f"{name}@{version}"
    return name
