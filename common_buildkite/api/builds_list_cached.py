# SPDX-FileCopyrightText: Copyright (c) 2025 NVIDIA CORPORATION & AFFILIATES. All rights reserved.
# SPDX-License-Identifier: Apache-2.0
"""Buildkite passed-builds cached API (interval chunked).

Resources:
  GET /v2/organizations/{org}/builds?created_from=..&created_to=..&state=passed&per_page=100

A query [start, now) is split into hourly intervals anchored at midnight of start's
day (see `common_buildkite/intervals.py`). Each interval is one cache entry, fetched
from Buildkite (all pages) on a miss. Intervals are resolved concurrently on a bounded
thread pool; results are merged in interval order and trimmed to [start, now).

TTL (per interval, at write time; see `cache/cache_ttl_utils.py`):
  - ended > 12h ago: 60d + random [0, 20d)
  - ended > 1h ago:  2h
  - otherwise:       10m
"""

from __future__ import annotations

import logging
import random
import time
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta, timezone, tzinfo
from typing import Callable, List, Optional, Tuple, TYPE_CHECKING

from cache.cache_base import ChunkStoreUnavailableError
from cache.cache_chunks import BuildChunkCache
from cache.cache_ttl_utils import interval_ttl_s
from common import DEFAULT_CHUNK, DEFAULT_CONCURRENCY
from common_types import Build, BuildPredicate, TimeInterval

from ..exceptions import BuildFetchError
from ..intervals import generate_intervals
from .base_cached import CachedResourceBase, InflightLocks

if TYPE_CHECKING:  # pragma: no cover
    from .. import BuildkiteAPIClient

logger = logging.getLogger(__name__)

TTL_POLICY_DESCRIPTION = "ended>12h: 60d+[0,20d); ended>1h: 2h; else: 10m"

CACHE_NAME = "builds_between"
API_CALL_FORMAT = "GET /v2/organizations/{org}/builds?created_from=..&created_to=..&state=passed&per_page=100 (all pages)"
CACHE_KEY_FORMAT = "<interval start epoch>-<interval end epoch>"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class IntervalBuildsCached(CachedResourceBase[List[Build]]):
    """All passed builds created in one interval, cached as one chunk."""

    def __init__(
        self,
        api: "BuildkiteAPIClient",
        *,
        chunks: BuildChunkCache,
        now: Callable[[], datetime] = _utcnow,
        rng: Optional[random.Random] = None,
    ):
        super().__init__(api)
        self.chunks = chunks
        self._now = now
        self._rng = rng

    @property
    def cache_name(self) -> str:
        return CACHE_NAME

    def api_call_format(self) -> str:
        return API_CALL_FORMAT

    def cache_key(self, **kwargs) -> str:
        interval: TimeInterval = kwargs["interval"]
        return interval.cache_key

    def cache_read(self, *, key: str) -> Optional[List[Build]]:
        try:
            builds, hit = self.chunks.get(key)
        except ChunkStoreUnavailableError as e:
            # Treated as a miss; the interval is refetched from Buildkite.
            logger.warning("Chunk cache read failed, fetching from Buildkite instead: %s", e)
            return None
        return builds if hit else None

    def cache_write(self, *, key: str, value: List[Build], ttl_s: int) -> bool:
        try:
            self.chunks.put(key, value, ttl_s)
        except ChunkStoreUnavailableError as e:
            logger.warning("Chunk cache write failed (builds still returned): %s", e)
            return False
        return True

    def ttl_s(self, **kwargs) -> int:
        return interval_ttl_s(kwargs["interval"], now=self._now(), rng=self._rng)

    def fetch(self, **kwargs) -> List[Build]:
        return self.api.list_builds_between(kwargs["interval"])


class BuildsListCached:
    """list_builds(start, predicate): cached, concurrent, single-flight.

    Concurrent list_builds() calls sharing the same InflightLocks run one at a time;
    later callers see the chunks the first one wrote.
    """

    def __init__(
        self,
        api: "BuildkiteAPIClient",
        *,
        chunks: BuildChunkCache,
        inflight: Optional[InflightLocks] = None,
        concurrency: int = DEFAULT_CONCURRENCY,
        chunk: timedelta = DEFAULT_CHUNK,
        tz: Optional[tzinfo] = None,
        now: Callable[[], datetime] = _utcnow,
        rng: Optional[random.Random] = None,
    ):
        if int(concurrency) <= 0:
            raise ValueError(f"concurrency must be positive, got {concurrency}")
        self.api = api
        self.inflight = inflight if inflight is not None else InflightLocks()
        self.concurrency = int(concurrency)
        self.chunk = chunk
        self.tz = tz
        self._now = now
        self.resource = IntervalBuildsCached(api, chunks=chunks, now=now, rng=rng)

    def _inflight_key(self) -> str:
        return f"{CACHE_NAME}:{getattr(self.api, 'org', '')}"

    def list_builds(self, start: datetime, predicate: BuildPredicate) -> List[Build]:
        """Return passed builds created in [start, now) that match predicate.

        Order: ascending interval order, Buildkite's order within an interval.

        Raises:
            ValueError: start is a naive datetime
            BuildFetchError: any interval failed (every task is waited for first)
        """
        if start.tzinfo is None or start.utcoffset() is None:
            raise ValueError(f"start must be timezone-aware, got naive {start.isoformat()}")

        with self.inflight.lock(self._inflight_key()):
            t0 = time.monotonic()
            end = self._now()
            intervals = generate_intervals(start, end, self.chunk, tz=self.tz)
            hits0, fetches0 = self.resource.stats.hits, self.resource.stats.fetches

            # One slot per interval so completion order never leaks into the result.
            slots: List[List[Build]] = [[] for _ in intervals]
            failures: List[Tuple[TimeInterval, BaseException]] = []

            def resolve(index: int, interval: TimeInterval) -> None:
                slots[index] = self.resource.get(interval=interval)
                logger.debug("%d/%d %s: %d builds", index + 1, len(intervals), interval, len(slots[index]))

            with ThreadPoolExecutor(max_workers=self.concurrency) as executor:
                futs = [executor.submit(resolve, i, iv) for i, iv in enumerate(intervals)]
                for interval, fut in zip(intervals, futs):
                    exc = fut.exception()
                    if exc is not None:
                        failures.append((interval, exc))

            hits = self.resource.stats.hits - hits0
            fetches = self.resource.stats.fetches - fetches0
            if failures:
                logger.error("list_builds failed for %d/%d intervals", len(failures), len(intervals))
                raise BuildFetchError(failures) from failures[0][1]

            res: List[Build] = []
            for builds in slots:
                for b in builds:
                    # Intervals are a superset of [start, end), so trim here.
                    if start <= b.created_at < end and predicate.matches(b):
                        res.append(b)

            logger.info(
                "[%s] list_builds: %d intervals (%d cached, %d fetched), %d builds matched in %.2fs",
                self.resource.cache_name,
                len(intervals),
                hits,
                fetches,
                len(res),
                time.monotonic() - t0,
            )
            return res


def get_cached_builds(
    api: "BuildkiteAPIClient",
    *,
    start: datetime,
    predicate: BuildPredicate,
    chunks: BuildChunkCache,
    inflight: InflightLocks,
    concurrency: int = DEFAULT_CONCURRENCY,
) -> List[Build]:
    """One-shot convenience wrapper around BuildsListCached.list_builds().

    `inflight` is required: each call builds a new fetcher, so callers that share
    `chunks` must also share the InflightLocks to be serialized against each other.
    """
    return BuildsListCached(api, chunks=chunks, inflight=inflight, concurrency=concurrency).list_builds(start, predicate)
