#!/usr/bin/env python3
# SPDX-FileCopyrightText: Copyright (c) 2025 NVIDIA CORPORATION & AFFILIATES. All rights reserved.
# SPDX-License-Identifier: Apache-2.0

"""
Interval Chunk Cache

Caches the passed builds of one time interval as a single compressed value:

    gzip(json({"v": <schema>, "n": <number of builds>, "builds": [<Build.to_dict()>, ...]}))

Compression keeps large chunks under the value size limits of typical stores
(memcached rejects values over 1MB by default).

Cache key format: "<interval start epoch>-<interval end epoch>"

Error handling:
- store miss                -> (empty list, False), never an error
- store transport failure   -> ChunkStoreUnavailableError (callers degrade to a miss)
- undecodable stored bytes  -> CorruptedChunkError (fatal; the store is trusted not to corrupt data)
"""

from __future__ import annotations

import gzip
import json
import logging
import threading
import zlib
from dataclasses import dataclass
from typing import Any, Dict, List, Tuple

from cache.cache_base import (
    CacheMissError,
    ChunkStore,
    ChunkStoreUnavailableError,
    CorruptedChunkError,
)
from common_types import Build

logger = logging.getLogger(__name__)

# Bump when the payload schema changes in a backward-incompatible way.
SCHEMA_VERSION = 1


@dataclass
class ChunkCacheStats:
    """Chunk cache statistics (hits/misses/writes plus degraded store operations)."""
    hit: int = 0
    miss: int = 0
    write: int = 0
    read_errors: int = 0
    write_errors: int = 0


def encode_builds(builds: List[Build]) -> bytes:
    """Serialize + compress a list of builds."""
    payload: Dict[str, Any] = {
        "v": SCHEMA_VERSION,
        "n": len(builds),
        "builds": [b.to_dict() for b in builds],
    }
    raw = json.dumps(payload, separators=(",", ":")).encode("utf-8")
    return gzip.compress(raw)


def decode_builds(data: bytes) -> List[Build]:
    """Inverse of encode_builds(). Raises CorruptedChunkError on any decoding problem."""
    try:
        raw = gzip.decompress(data)
    except (OSError, EOFError, zlib.error) as e:
        raise CorruptedChunkError(f"unable to decompress chunk: {e}") from e

    try:
        payload = json.loads(raw.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise CorruptedChunkError(f"unable to parse chunk: {e}") from e

    if not isinstance(payload, dict) or payload.get("v") != SCHEMA_VERSION:
        raise CorruptedChunkError(f"unexpected chunk schema: {str(payload)[:80]}")

    items = payload.get("builds")
    if not isinstance(items, list) or payload.get("n") != len(items):
        raise CorruptedChunkError("chunk build count does not match its header")

    try:
        return [Build.from_dict(d) for d in items]
    except (KeyError, TypeError, ValueError) as e:
        raise CorruptedChunkError(f"invalid build in chunk: {e}") from e


class BuildChunkCache:
    """Adapter between lists of builds and an opaque ChunkStore."""

    def __init__(self, store: ChunkStore):
        self.store = store
        self._stats_mu = threading.Lock()
        self.stats = ChunkCacheStats()

    def _bump(self, field_name: str) -> None:
        with self._stats_mu:
            setattr(self.stats, field_name, getattr(self.stats, field_name) + 1)

    def get(self, key: str) -> Tuple[List[Build], bool]:
        """Return (builds, hit).

        Raises:
            ChunkStoreUnavailableError: the store failed for a reason other than a miss
            CorruptedChunkError: the store returned bytes that do not decode
        """
        try:
            data = self.store.get(key)
        except CacheMissError:
            self._bump("miss")
            return [], False
        except Exception as e:
            self._bump("read_errors")
            raise ChunkStoreUnavailableError(f"chunk store read failed for {key}: {e}") from e

        builds = decode_builds(data)
        self._bump("hit")
        return builds, True

    def put(self, key: str, builds: List[Build], ttl_s: int) -> None:
        """Store builds under key for ttl_s seconds.

        Raises:
            ChunkStoreUnavailableError: the store rejected the write
        """
        data = encode_builds(builds)
        try:
            self.store.put(key, data, int(ttl_s))
        except Exception as e:
            self._bump("write_errors")
            raise ChunkStoreUnavailableError(f"chunk store write failed for {key}: {e}") from e
        self._bump("write")
        logger.debug("Cached %d builds under %s (%d bytes, ttl=%ds)", len(builds), key, len(data), int(ttl_s))
