"""
Installation state tracking.

After a successful install the tool records a hash of everything that
influenced it: the declared config, the lockfile, the nix profile manifest
and the cached ``print-dev-env`` output. A later invocation with identical
inputs can skip reinstallation entirely.

The record lives in ``<project>/.devbox/state.json``.
"""

import json
import logging
from dataclasses import asdict, dataclass
from pathlib import Path

from devbox_lock import __version__
from devbox_lock.config import LOCK_FILE_NAME, STATE_DIR_NAME
from devbox_lock.core.cachehash import file_hash
from devbox_lock.errors import StateError

logger = logging.getLogger(__name__)

STATE_FILE_NAME = "state.json"


@dataclass(frozen=True)
class StateHashArgs:
    """Inputs identifying one installation of a project."""

    project_dir: Path
    config_hash: str
    is_fish: bool = False


@dataclass(frozen=True)
class StateHash:
    """Persisted fingerprint of an installation."""

    config_hash: str = ""
    lock_file_hash: str = ""
    nix_profile_manifest_hash: str = ""
    nix_print_dev_env_hash: str = ""
    is_fish: bool = False
    tool_version: str = ""

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "StateHash":
        known = {name for name in cls.__dataclass_fields__}
        return cls(**{k: v for k, v in data.items() if k in known})


def state_file_path(project_dir: Path) -> Path:
    return Path(project_dir) / STATE_DIR_NAME / STATE_FILE_NAME


def profile_manifest_path(project_dir: Path) -> Path:
    return Path(project_dir) / STATE_DIR_NAME / "nix" / "profile" / "default" / "manifest.json"


def print_dev_env_cache_path(project_dir: Path) -> Path:
    return Path(project_dir) / STATE_DIR_NAME / ".nix-print-dev-env-cache"


def current_state_hash(args: StateHashArgs) -> StateHash:
    project_dir = Path(args.project_dir)
    return StateHash(
        config_hash=args.config_hash,
        lock_file_hash=file_hash(project_dir / LOCK_FILE_NAME),
        nix_profile_manifest_hash=file_hash(profile_manifest_path(project_dir)),
        nix_print_dev_env_hash=file_hash(print_dev_env_cache_path(project_dir)),
        is_fish=args.is_fish,
        tool_version=__version__,
    )


def read_state_hash_file(project_dir: Path) -> StateHash | None:
    """Load the persisted state, or ``None`` if it was never written."""
    path = state_file_path(project_dir)
    try:
        with open(path) as f:
            data = json.load(f)
    except FileNotFoundError:
        return None
    except json.JSONDecodeError as e:
        raise StateError(
            "Installation state file is not valid JSON.",
            hint="Delete the file; it is recreated on the next install.",
            context={"path": str(path)},
        ) from e
    if not isinstance(data, dict):
        raise StateError("Installation state file has an invalid structure.", context={"path": str(path)})
    return StateHash.from_dict(data)


def update_state_hash_file(args: StateHashArgs) -> StateHash:
    """Record the current state as installed."""
    state = current_state_hash(args)
    path = state_file_path(args.project_dir)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w") as f:
        json.dump(state.to_dict(), f, indent=2)
    logger.debug(f"Updated state hash file {path}")
    return state


def is_state_up_to_date(args: StateHashArgs) -> bool:
    persisted = read_state_hash_file(args.project_dir)
    if persisted is None:
        return False
    return persisted == current_state_hash(args)
