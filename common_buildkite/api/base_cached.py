# SPDX-FileCopyrightText: Copyright (c) 2025 NVIDIA CORPORATION & AFFILIATES. All rights reserved.
# SPDX-License-Identifier: Apache-2.0
"""Base class for cached Buildkite API resources.

Goal: make each cached resource readable + debuggable by enforcing a small interface:
- TTL policy (assigned at write time; expiry is the store's job)
- API call "display format"
- shared cache access pattern
- consistent hit/miss/write statistics
"""

from __future__ import annotations

import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, Generic, Optional, TypeVar, TYPE_CHECKING

if TYPE_CHECKING:  # pragma: no cover
    from .. import BuildkiteAPIClient

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class ResourceStats:
    hits: int = 0
    misses: int = 0
    fetches: int = 0
    writes: int = 0


class InflightLocks:
    """Per-key locks that serialize identical fetches across threads and callers.

    One instance is created by whoever issues top-level queries and handed to every
    fetcher that must not run concurrently with the others (there is no global lock).
    """

    def __init__(self) -> None:
        self._mu = threading.Lock()
        self._locks: Dict[str, threading.Lock] = {}

    def lock(self, key: str) -> threading.Lock:
        k = str(key or "") or "__default__"
        with self._mu:
            lk = self._locks.get(k)
            if lk is None:
                lk = threading.Lock()
                self._locks[k] = lk
            return lk


class CachedResourceBase(ABC, Generic[T]):
    """Shared get() flow: cache lookup -> fetch on miss -> cache write with TTL.

    Subclasses define:
    - cache key format
    - how to read/write cache entries (read returns None on a miss)
    - TTL policy for new entries
    - the actual API fetch implementation
    """

    def __init__(self, api: "BuildkiteAPIClient"):
        self.api = api
        self._stats_mu = threading.Lock()
        self.stats = ResourceStats()

    @property
    @abstractmethod
    def cache_name(self) -> str:
        """Short name used for stats/log lines (e.g. 'builds_between')."""

    @abstractmethod
    def api_call_format(self) -> str:
        """Human-readable description of the API call(s) this resource performs."""

    @abstractmethod
    def cache_key(self, **kwargs: Any) -> str:
        """Return a stable cache key for this resource."""

    @abstractmethod
    def cache_read(self, *, key: str) -> Optional[T]:
        """Return the cached value or None on a miss."""

    @abstractmethod
    def cache_write(self, *, key: str, value: T, ttl_s: int) -> bool:
        """Write to cache; return False if the write was skipped or failed (non-fatal)."""

    @abstractmethod
    def ttl_s(self, **kwargs: Any) -> int:
        """TTL policy for a freshly fetched value."""

    @abstractmethod
    def fetch(self, **kwargs: Any) -> T:
        """Fetch from network."""

    def _bump(self, field_name: str) -> None:
        with self._stats_mu:
            setattr(self.stats, field_name, getattr(self.stats, field_name) + 1)

    def get(self, **kwargs: Any) -> T:
        key = self.cache_key(**kwargs)

        cached = self.cache_read(key=key)
        if cached is not None:
            self._bump("hits")
            return cached
        self._bump("misses")
        logger.debug("[%s] miss %s -> %s", self.cache_name, key, self.api_call_format())

        val = self.fetch(**kwargs)
        self._bump("fetches")
        if self.cache_write(key=key, value=val, ttl_s=self.ttl_s(**kwargs)):
            self._bump("writes")
        return val
