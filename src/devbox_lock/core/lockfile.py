"""
Lock Store — resolves package specs and persists them in ``devbox.lock``.

A ``LockFile`` is loaded once per command invocation, mutated in memory
through ``add``/``remove``/``resolve``/``set_outputs_for_package`` and
flushed with ``save``. ``save`` only touches the disk when the in-memory
content differs from what is already there, so running a command that
changes nothing never produces version-control noise.

Instances are not thread-safe; use one per invocation.
"""

import json
import logging
from collections.abc import Iterable
from pathlib import Path

from devbox_lock.config import LOCK_FILE_NAME
from devbox_lock.core.cachehash import json_hash
from devbox_lock.core.nix import current_system
from devbox_lock.core.project import DevboxProject, PackageResolver
from devbox_lock.core.state import StateHashArgs, is_state_up_to_date
from devbox_lock.errors import FlakeRefError, LockfileError
from devbox_lock.models.lockfile import (
    LOCK_FILE_VERSION,
    Output,
    Package,
    PackageSource,
    SystemInfo,
    ensure_outputs,
    lockfile_to_dict,
    packages_from_dict,
)
from devbox_lock.parsers.flake import FlakeRef, Installable, parse_ref
from devbox_lock.parsers.pkgtype import PackageKind, classify

logger = logging.getLogger(__name__)


def lock_file_path(project_dir: Path) -> Path:
    return Path(project_dir) / LOCK_FILE_NAME


def read_lockfile(path: Path) -> tuple[str, dict[str, Package]]:
    """
    Read a lockfile from disk.

    A missing file yields an empty lockfile at the current format version.
    Legacy ``store_path`` entries are migrated into ``outputs``.
    """
    try:
        raw = Path(path).read_text(encoding="utf-8")
    except FileNotFoundError:
        return LOCK_FILE_VERSION, {}

    try:
        payload = json.loads(raw)
    except json.JSONDecodeError as e:
        raise LockfileError(
            "Invalid lockfile JSON.",
            hint="Fix or delete the lockfile and run the command again.",
            context={"path": str(path), "error": str(e)},
        ) from e
    if not isinstance(payload, dict):
        raise LockfileError("Invalid lockfile payload type.", context={"path": str(path)})

    packages = packages_from_dict(payload)
    ensure_outputs(packages)
    return payload.get("lockfile_version", LOCK_FILE_VERSION), packages


def write_lockfile(path: Path, data: dict) -> None:
    with open(path, "w", encoding="utf-8") as f:
        f.write(json.dumps(data, indent=2, ensure_ascii=False) + "\n")


class LockFile:
    """
    In-memory model of a project's lockfile.

    Packages are keyed by the exact spec string the user declared.
    """

    def __init__(
        self,
        project: DevboxProject,
        resolver: PackageResolver | None = None,
        system: str | None = None,
        lockfile_version: str = LOCK_FILE_VERSION,
        packages: dict[str, Package] | None = None,
    ):
        self.project = project
        self.resolver = resolver
        self.system = system or current_system()
        self.lockfile_version = lockfile_version
        self.packages: dict[str, Package] = packages if packages is not None else {}

        # Locked base environment, keyed by the unlocked reference string.
        self._stdenv_memo: dict[str, FlakeRef] = {}
        self._stdenv_depth = 0

    @classmethod
    def load(
        cls,
        project: DevboxProject,
        resolver: PackageResolver | None = None,
        system: str | None = None,
    ) -> "LockFile":
        version, packages = read_lockfile(lock_file_path(project.project_dir()))
        return cls(
            project,
            resolver=resolver,
            system=system,
            lockfile_version=version,
            packages=packages,
        )

    @property
    def path(self) -> Path:
        return lock_file_path(self.project.project_dir())

    def to_dict(self, legacy_minimal: bool = False) -> dict:
        return lockfile_to_dict(self.lockfile_version, self.packages, legacy_minimal)

    # ──────────────────────────────────────────────
    # Mutation
    # ──────────────────────────────────────────────

    def add(self, *specs: str) -> None:
        """Resolve each spec and save. Stops at the first failure."""
        for spec in specs:
            self.resolve(spec)
        self.save()

    def remove(self, *specs: str) -> None:
        for spec in specs:
            self.packages.pop(spec, None)
            self._stdenv_memo.pop(spec, None)
        self.save()

    def resolve(self, spec: str) -> Package:
        """
        Return the locked package for ``spec``, resolving it if needed.

        Updates the in-memory copy only; call ``save`` to persist. A spec
        that matches no resolution strategy is stored as an empty, unresolved
        package.
        """
        entry = self.packages.get(spec)
        if entry is not None and entry.is_resolved:
            return entry

        locked = Package()
        kind = classify(spec)
        if kind in (PackageKind.RUNX, PackageKind.VERSIONED, PackageKind.FLAKE):
            resolved = self._require_resolver(spec).fetch_resolved_package(spec)
            if resolved is not None:
                locked = resolved
                # In-memory entries always carry outputs, as after read_lockfile.
                ensure_outputs({spec: locked})
        elif kind is PackageKind.LEGACY:
            # Bare names resolve against the locked nixpkgs so they stay
            # reproducible when the default nixpkgs moves forward.
            locked = Package(
                resolved=str(Installable(ref=self.stdenv(), attr_path=spec)),
                source=PackageSource.NIXPKG,
            )
        else:
            logger.debug(f"No resolution strategy for {spec!r}; leaving it unresolved")

        self.packages[spec] = locked
        return locked

    def set_outputs_for_package(self, spec: str, outputs: Iterable[Output]) -> None:
        pkg = self.resolve(spec)
        info = pkg.systems.setdefault(self.system, SystemInfo())
        info.outputs = list(outputs)
        info.outputs_from_store_path = False
        self.save()

    def tidy(self) -> None:
        """
        Drop entries no longer referenced by the project.

        Keeps declared packages, trigger packages and the base environment.
        Does not save.
        """
        keep = set(self.project.all_package_names_including_removed_trigger_packages())
        keep.add(str(self.project.stdenv()))
        for spec in [s for s in self.packages if s not in keep]:
            logger.debug(f"Tidy: removing {spec}")
            del self.packages[spec]
            self._stdenv_memo.pop(spec, None)

    def update_stdenv(self) -> None:
        """Force a fresh resolution of the base environment."""
        unlocked = self.project.stdenv()
        self._require_resolver(str(unlocked)).clear_flake_cache(unlocked)
        self.remove(str(unlocked))
        self.add(str(unlocked))

    # ──────────────────────────────────────────────
    # Queries
    # ──────────────────────────────────────────────

    def get(self, spec: str) -> Package | None:
        """Return the entry for ``spec`` only if it is resolved."""
        entry = self.packages.get(spec)
        if entry is None or not entry.is_resolved:
            return None
        return entry

    def stdenv(self) -> FlakeRef:
        """
        The project's base nixpkgs, locked through this lockfile.

        Resolving the base reference never re-enters this method: it is a
        flake, not a legacy package. The depth guard turns a resolver that
        breaks that rule into an error instead of unbounded recursion.
        """
        unlocked = self.project.stdenv()
        key = str(unlocked)
        memo = self._stdenv_memo.get(key)
        if memo is not None:
            return memo

        if self._stdenv_depth >= 1:
            raise LockfileError(
                "Recursive resolution of the base environment.",
                hint="The package resolver must not resolve legacy packages "
                "while the base environment is being locked.",
                context={"stdenv": key},
            )
        self._stdenv_depth += 1
        try:
            pkg = self.resolve(key)
        finally:
            self._stdenv_depth -= 1

        if not pkg.is_resolved:
            # Not memoized: the entry is retried on the next call.
            return unlocked
        try:
            locked = parse_ref(pkg.resolved)
        except FlakeRefError as e:
            logger.warning(f"Locked base environment {pkg.resolved!r} is not a flake reference: {e}")
            return unlocked
        self._stdenv_memo[key] = locked
        return locked

    def has_allow_insecure_packages(self) -> bool:
        return any(pkg.allow_insecure for pkg in self.packages.values())

    def is_up_to_date_and_installed(self, is_fish: bool = False) -> bool:
        """
        True when the lockfile is saved and the last installation still
        matches the current config, lockfile and nix profile.
        """
        if self.is_dirty():
            return False
        return is_state_up_to_date(
            StateHashArgs(
                project_dir=self.project.project_dir(),
                config_hash=self.project.config_hash(),
                is_fish=is_fish,
            )
        )

    # ──────────────────────────────────────────────
    # Persistence
    # ──────────────────────────────────────────────

    def is_dirty(self) -> bool:
        """Whether the in-memory content differs from the file on disk."""
        current_hash = json_hash(self.to_dict())
        disk_version, on_disk = read_lockfile(self.path)
        filesystem_hash = json_hash(lockfile_to_dict(disk_version, on_disk))
        return current_hash != filesystem_hash

    def save(self) -> bool:
        """
        Write the lockfile if it changed.

        Outputs derived from a legacy ``store_path`` are written back in
        their legacy form so the file only changes on an explicit user
        action. The in-memory outputs are left intact.

        Returns:
            True if the file was written.
        """
        if not self.is_dirty():
            logger.debug(f"{self.path} is up to date, not writing")
            return False
        write_lockfile(self.path, self.to_dict(legacy_minimal=True))
        logger.info(f"Wrote {self.path} ({len(self.packages)} packages)")
        return True

    def _require_resolver(self, spec: str) -> PackageResolver:
        if self.resolver is None:
            raise LockfileError(
                f"Cannot resolve {spec!r}: no package resolver configured.",
                hint="Pass a PackageResolver when loading the lockfile.",
            )
        return self.resolver
