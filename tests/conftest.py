"""Shared fixtures: an in-memory project and a scripted package resolver."""

import copy
from pathlib import Path

import pytest

from devbox_lock.core.lockfile import LockFile
from devbox_lock.models.lockfile import Package, PackageSource
from devbox_lock.parsers.flake import FlakeRef, parse_ref

SYSTEM = "x86_64-linux"
UNLOCKED_STDENV = "github:NixOS/nixpkgs/nixpkgs-unstable"
LOCKED_REV = "75a5ebf473cd60148ba9aec0d219f72e5cf52519"
LOCKED_STDENV = f"github:NixOS/nixpkgs/{LOCKED_REV}?lastModified=1700000000"


class FakeProject:
    """DevboxProject with fixed answers."""

    def __init__(
        self,
        project_dir: Path,
        stdenv: str = UNLOCKED_STDENV,
        packages: list[str] | None = None,
        triggers: list[str] | None = None,
        config_hash: str = "config-hash-1",
    ):
        self._project_dir = project_dir
        self._stdenv = stdenv
        self.packages = list(packages or [])
        self.triggers = list(triggers or [])
        self.hash = config_hash

    def project_dir(self) -> Path:
        return self._project_dir

    def stdenv(self) -> FlakeRef:
        return parse_ref(self._stdenv)

    def config_hash(self) -> str:
        return self.hash

    def all_package_names_including_removed_trigger_packages(self) -> list[str]:
        return self.packages + self.triggers


class FakeResolver:
    """PackageResolver answering from a table and recording every call."""

    def __init__(self, results: dict | None = None):
        self.results = {
            UNLOCKED_STDENV: Package(resolved=LOCKED_STDENV, source=PackageSource.FLAKE),
        }
        self.results.update(results or {})
        self.calls: list[str] = []
        self.cleared: list[str] = []

    def fetch_resolved_package(self, spec: str) -> Package | None:
        self.calls.append(spec)
        result = self.results.get(spec)
        if isinstance(result, Exception):
            raise result
        return copy.deepcopy(result)

    def clear_flake_cache(self, ref: FlakeRef) -> None:
        self.cleared.append(str(ref))


@pytest.fixture
def project(tmp_path):
    return FakeProject(tmp_path)


@pytest.fixture
def resolver():
    return FakeResolver()


@pytest.fixture
def lockfile(project, resolver):
    return LockFile.load(project, resolver=resolver, system=SYSTEM)
