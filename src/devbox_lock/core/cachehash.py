"""Content hashing used for dirty checks and cache keys."""

import hashlib
import json
from pathlib import Path
from typing import Any


def json_hash(obj: Any) -> str:
    """
    Hash a JSON-compatible value.

    Keys are sorted before hashing so that two structures with the same
    entries hash equal regardless of insertion order.
    """
    canonical = json.dumps(obj, sort_keys=True, separators=(",", ":"), ensure_ascii=False)
    return bytes_hash(canonical.encode("utf-8"))


def bytes_hash(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def file_hash(path: str | Path) -> str:
    """Hash a file's content. A missing file hashes to ``""``."""
    sha256 = hashlib.sha256()
    try:
        with open(path, "rb") as f:
            for chunk in iter(lambda: f.read(8192), b""):
                sha256.update(chunk)
    except FileNotFoundError:
        return ""
    return sha256.hexdigest()
