"""
Remote Content Cache — a TTL key/value store for fetched bytes.

Entries are kept in memory for the life of the cache object and persisted
under ``<cache_dir>/<namespace>/`` so that later command invocations can
reuse them until they expire. Each entry directory holds the raw value and
a small JSON manifest with its key, expiry and digest.

``get_or_set`` is single-flight: concurrent callers asking for the same
key share one computation and all receive its result (or its error).
"""

import asyncio
import hashlib
import json
import logging
import shutil
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import timedelta
from pathlib import Path

import aiofiles

from devbox_lock.config import default_cache_dir

logger = logging.getLogger(__name__)

ComputeFn = Callable[[], Awaitable[tuple[bytes, timedelta]]]


@dataclass
class CacheEntry:
    """A cached value with an absolute expiry timestamp (epoch seconds)."""

    key: str
    value: bytes
    expires_at: float

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at


class RemoteContentCache:
    """
    Demand-driven cache with per-entry TTL.

    Construct one per command invocation and hand it to whatever needs it;
    there is no shared global instance.
    """

    def __init__(
        self,
        namespace: str,
        cache_dir: Path | None = None,
        clock: Callable[[], float] = time.time,
    ):
        self.root = Path(cache_dir or default_cache_dir()) / namespace
        self._clock = clock
        self._entries: dict[str, CacheEntry] = {}
        self._inflight: dict[str, asyncio.Task] = {}

    async def get_or_set(self, key: str, compute: ComputeFn) -> bytes:
        """
        Return the cached value for ``key``, computing it if missing or expired.

        Args:
            key: Opaque cache key.
            compute: Async callable returning ``(value, ttl)``.
        """
        task = self._inflight.get(key)
        if task is None:
            task = asyncio.ensure_future(self._load_or_compute(key, compute))
            self._inflight[key] = task
            task.add_done_callback(lambda done: self._forget(key, done))
        else:
            logger.debug(f"[Cache] Waiting for in-flight {key}")
        return await asyncio.shield(task)

    async def get(self, key: str) -> bytes | None:
        """Return a fresh cached value without computing anything."""
        entry = await self._lookup(key)
        return entry.value if entry is not None else None

    def invalidate(self, key: str) -> None:
        self._entries.pop(key, None)
        entry_dir = self._entry_dir(key)
        if entry_dir.exists():
            shutil.rmtree(entry_dir)

    def clear(self) -> None:
        self._entries.clear()
        if self.root.exists():
            shutil.rmtree(self.root)

    # ──────────────────────────────────────────────
    # Internals
    # ──────────────────────────────────────────────

    def _forget(self, key: str, done: asyncio.Task) -> None:
        if self._inflight.get(key) is done:
            del self._inflight[key]

    async def _load_or_compute(self, key: str, compute: ComputeFn) -> bytes:
        entry = await self._lookup(key)
        if entry is not None:
            logger.debug(f"[Cache] Hit {key}")
            return entry.value

        logger.debug(f"[Cache] Miss {key}")
        value, ttl = await compute()
        entry = CacheEntry(key=key, value=value, expires_at=self._clock() + ttl.total_seconds())
        self._entries[key] = entry
        await self._write_entry(entry)
        return value

    async def _lookup(self, key: str) -> CacheEntry | None:
        entry = self._entries.get(key)
        if entry is None:
            entry = await self._read_entry(key)
        if entry is None:
            return None
        if entry.is_expired(self._clock()):
            self._entries.pop(key, None)
            return None
        self._entries[key] = entry
        return entry

    def _entry_dir(self, key: str) -> Path:
        return self.root / hashlib.sha256(key.encode("utf-8")).hexdigest()

    async def _read_entry(self, key: str) -> CacheEntry | None:
        entry_dir = self._entry_dir(key)
        manifest_path = entry_dir / "entry.json"
        value_path = entry_dir / "value.bin"
        if not manifest_path.exists() or not value_path.exists():
            return None

        try:
            async with aiofiles.open(manifest_path) as f:
                manifest = json.loads(await f.read())
            async with aiofiles.open(value_path, "rb") as f:
                value = await f.read()
        except (json.JSONDecodeError, OSError) as e:
            logger.warning(f"[Cache] Ignoring unreadable entry {entry_dir}: {e}")
            return None

        if (
            not isinstance(manifest, dict)
            or manifest.get("key") != key
            or manifest.get("sha256") != hashlib.sha256(value).hexdigest()
            or not isinstance(manifest.get("expires_at"), (int, float))
        ):
            logger.warning(f"[Cache] Ignoring corrupted entry {entry_dir}")
            return None

        return CacheEntry(key=key, value=value, expires_at=float(manifest["expires_at"]))

    async def _write_entry(self, entry: CacheEntry) -> None:
        entry_dir = self._entry_dir(entry.key)
        entry_dir.mkdir(parents=True, exist_ok=True)
        manifest = {
            "key": entry.key,
            "expires_at": entry.expires_at,
            "sha256": hashlib.sha256(entry.value).hexdigest(),
        }
        async with aiofiles.open(entry_dir / "value.bin", "wb") as f:
            await f.write(entry.value)
        async with aiofiles.open(entry_dir / "entry.json", "w") as f:
            await f.write(json.dumps(manifest, indent=2))
