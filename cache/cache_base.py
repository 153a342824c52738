#!/usr/bin/env python3
# SPDX-FileCopyrightText: Copyright (c) 2025 NVIDIA CORPORATION & AFFILIATES. All rights reserved.
# SPDX-License-Identifier: Apache-2.0

"""
Key/value byte stores with TTL, used as the backend of the interval chunk cache.

The store is an opaque collaborator for the chunk cache:
- put(key, value, ttl_s)
- get(key) -> bytes, raising CacheMissError when the key is absent or expired

Any other exception raised by a store is a transport failure, which the chunk cache
must keep apart from a plain miss.

Two stores ship with buildkite-stats:
- MemoryChunkStore: process-local dict (tests, one-shot CLI runs)
- DiskChunkStore:   one file per key under ~/.cache/buildkite-stats/chunks
"""

from __future__ import annotations

import os
import struct
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from threading import Lock
from typing import Callable, Dict, Optional, Tuple

try:
    import fcntl  # type: ignore
except ImportError:  # pragma: no cover - non-POSIX
    fcntl = None  # type: ignore


class CacheError(Exception):
    """Base class for chunk cache errors."""


class CacheMissError(CacheError):
    """Raised by ChunkStore.get() when the key is not present (or has expired)."""


class ChunkStoreUnavailableError(CacheError):
    """A store read/write failed for a reason other than a miss (transient)."""


class CorruptedChunkError(CacheError):
    """The store returned bytes that cannot be decoded. Never retried."""


@dataclass
class BaseCacheStats:
    """Basic store statistics."""
    hit: int = 0
    miss: int = 0
    write: int = 0


class ChunkStore(ABC):
    """Opaque Get/Put store with TTL. Implementations must be thread-safe."""

    @abstractmethod
    def put(self, key: str, value: bytes, ttl_s: int) -> None:
        ...

    @abstractmethod
    def get(self, key: str) -> bytes:
        """Return the stored bytes or raise CacheMissError."""


class MemoryChunkStore(ChunkStore):
    """Thread-safe in-memory store. Entries expire `ttl_s` after the put()."""

    def __init__(self, *, clock: Callable[[], float] = time.time):
        self._mu = Lock()
        self._clock = clock
        self._items: Dict[str, Tuple[float, bytes]] = {}
        self.stats = BaseCacheStats()

    def put(self, key: str, value: bytes, ttl_s: int) -> None:
        with self._mu:
            self._items[str(key)] = (self._clock() + float(ttl_s), bytes(value))
            self.stats.write += 1

    def get(self, key: str) -> bytes:
        with self._mu:
            item = self._items.get(str(key))
            if item is None or item[0] <= self._clock():
                self._items.pop(str(key), None)
                self.stats.miss += 1
                raise CacheMissError(key)
            self.stats.hit += 1
            return item[1]

    def __len__(self) -> int:
        with self._mu:
            return len(self._items)


class DiskChunkStore(ChunkStore):
    """File-per-key store with inter-process locking.

    File format: 8-byte big-endian expiry epoch (float64) followed by the value bytes.
    Writes go to a tmp file + rename so readers never observe a half-written value.
    Expired files are treated as misses and removed.
    """

    _HEADER = struct.Struct(">d")

    def __init__(self, *, cache_dir: Path, clock: Callable[[], float] = time.time):
        self._dir = Path(cache_dir)
        self._clock = clock
        self._mu = Lock()
        self.stats = BaseCacheStats()

    def _path(self, key: str) -> Path:
        safe = "".join(c if (c.isalnum() or c in "-_.") else "_" for c in str(key))
        return self._dir / f"{safe}.chunk"

    def _lock_file_path(self) -> Path:
        """Path to lock file (inside the cache dir)."""
        return self._dir / ".chunks.lock"

    def _acquire_disk_lock(self, *, timeout_s: float = 10.0) -> Optional[object]:
        """Best-effort inter-process lock for the cache dir.

        Returns file handle on success, None on failure/timeout.
        """
        if fcntl is None:
            return None

        lock_path = self._lock_file_path()
        lock_path.parent.mkdir(parents=True, exist_ok=True)

        fh = open(lock_path, "w")
        start = time.monotonic()
        while time.monotonic() - start < float(timeout_s):
            try:
                fcntl.flock(fh.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
                return fh
            except OSError:
                time.sleep(0.05)

        fh.close()
        return None

    def _release_disk_lock(self, lock_fh: Optional[object]) -> None:
        """Release inter-process lock."""
        if lock_fh is None:
            return
        try:
            if fcntl is not None:
                fcntl.flock(lock_fh.fileno(), fcntl.LOCK_UN)  # type: ignore[attr-defined]
        finally:
            lock_fh.close()  # type: ignore[attr-defined]

    def put(self, key: str, value: bytes, ttl_s: int) -> None:
        path = self._path(key)
        expires_at = self._clock() + float(ttl_s)
        with self._mu:
            self._dir.mkdir(parents=True, exist_ok=True)
            lock_fh = self._acquire_disk_lock()
            try:
                # Atomic write (tmp file + rename)
                tmp = path.with_name(f"{path.name}.tmp.{os.getpid()}")
                tmp.write_bytes(self._HEADER.pack(expires_at) + bytes(value))
                os.replace(str(tmp), str(path))
                self.stats.write += 1
            finally:
                self._release_disk_lock(lock_fh)

    def get(self, key: str) -> bytes:
        path = self._path(key)
        with self._mu:
            try:
                raw = path.read_bytes()
            except FileNotFoundError:
                self.stats.miss += 1
                raise CacheMissError(key)

            if len(raw) < self._HEADER.size:
                # Truncated header: nothing usable, behave like a miss and let the caller rewrite it.
                path.unlink(missing_ok=True)
                self.stats.miss += 1
                raise CacheMissError(key)

            (expires_at,) = self._HEADER.unpack_from(raw)
            if expires_at <= self._clock():
                path.unlink(missing_ok=True)
                self.stats.miss += 1
                raise CacheMissError(key)

            self.stats.hit += 1
            return raw[self._HEADER.size:]
