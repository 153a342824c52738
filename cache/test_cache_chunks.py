"""
Pytest tests for cache/cache_chunks.py (serialize/compress + error kinds).
"""

import gzip
import json
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta, timezone

import pytest

from cache.cache_base import (
    CacheMissError,
    ChunkStore,
    ChunkStoreUnavailableError,
    CorruptedChunkError,
    MemoryChunkStore,
)
from cache.cache_chunks import BuildChunkCache, decode_builds, encode_builds
from common_types import Build, Pipeline

T0 = datetime(2024, 3, 10, 12, 0, tzinfo=timezone.utc)


def _build(i: int, pipeline: str = "app", branch: str = "main") -> Build:
    created = T0 + timedelta(minutes=i)
    return Build(
        id=f"b-{i}",
        pipeline=Pipeline(name=pipeline),
        branch=branch,
        created_at=created,
        scheduled_at=created + timedelta(seconds=5),
        started_at=created + timedelta(seconds=30),
        finished_at=created + timedelta(minutes=7, seconds=3),
    )


class BrokenStore(ChunkStore):
    def put(self, key, value, ttl_s):
        raise ConnectionError("memcached down")

    def get(self, key):
        raise ConnectionError("memcached down")


# ============================================================================
# Payload encoding
# ============================================================================

def test_encode_decode_preserves_builds_and_order():
    builds = [_build(i) for i in (3, 1, 2)]
    assert decode_builds(encode_builds(builds)) == builds


def test_encoded_payload_is_gzip_with_count_header():
    data = encode_builds([_build(1), _build(2)])
    payload = json.loads(gzip.decompress(data))
    assert payload["v"] == 1
    assert payload["n"] == 2
    assert payload["builds"][0]["pipeline"] == {"name": "app"}
    assert payload["builds"][0]["created_at"] == "2024-03-10T12:01:00Z"


def test_encode_empty_list():
    assert decode_builds(encode_builds([])) == []


@pytest.mark.parametrize(
    "data",
    [
        b"not gzip at all",
        gzip.compress(b"{not json"),
        gzip.compress(b"\xff\xfe"),
        gzip.compress(json.dumps({"v": 999, "n": 0, "builds": []}).encode()),
        gzip.compress(json.dumps({"v": 1, "n": 2, "builds": []}).encode()),
        gzip.compress(json.dumps({"v": 1, "n": 1, "builds": [{"id": "x"}]}).encode()),
        gzip.compress(json.dumps([1, 2, 3]).encode()),
    ],
)
def test_decode_corrupted_payload_raises(data):
    with pytest.raises(CorruptedChunkError):
        decode_builds(data)


# ============================================================================
# BuildChunkCache
# ============================================================================

def test_chunk_cache_miss_is_silent():
    chunks = BuildChunkCache(MemoryChunkStore())
    assert chunks.get("1-2") == ([], False)
    assert chunks.stats.miss == 1


def test_chunk_cache_put_then_get_hit():
    store = MemoryChunkStore()
    chunks = BuildChunkCache(store)
    builds = [_build(1), _build(2, pipeline="lib")]
    chunks.put("1-2", builds, 600)

    got, hit = chunks.get("1-2")
    assert hit is True
    assert got == builds
    assert chunks.stats.hit == 1
    assert chunks.stats.write == 1


def test_chunk_cache_empty_interval_is_a_hit():
    chunks = BuildChunkCache(MemoryChunkStore())
    chunks.put("1-2", [], 600)
    assert chunks.get("1-2") == ([], True)


def test_chunk_cache_transport_errors_are_unavailable_not_miss():
    chunks = BuildChunkCache(BrokenStore())
    with pytest.raises(ChunkStoreUnavailableError):
        chunks.get("1-2")
    with pytest.raises(ChunkStoreUnavailableError):
        chunks.put("1-2", [_build(1)], 600)
    assert chunks.stats.read_errors == 1
    assert chunks.stats.write_errors == 1


def test_chunk_cache_corrupted_value_is_fatal():
    store = MemoryChunkStore()
    store.put("1-2", b"garbage", 600)
    chunks = BuildChunkCache(store)
    with pytest.raises(CorruptedChunkError):
        chunks.get("1-2")


def test_cache_miss_error_is_not_unavailable():
    # The sentinel must stay distinguishable from transport failures.
    assert not issubclass(CacheMissError, ChunkStoreUnavailableError)


def test_stats_exact_under_concurrent_workers():
    cache = BuildChunkCache(MemoryChunkStore())
    cache.put("warm", [_build(0)], 600)

    def work(i: int) -> None:
        cache.get("warm" if i % 2 == 0 else f"cold-{i}")

    with ThreadPoolExecutor(max_workers=30) as executor:
        list(executor.map(work, range(3000)))

    assert cache.stats.hit == 1500
    assert cache.stats.miss == 1500
    assert cache.stats.write == 1
