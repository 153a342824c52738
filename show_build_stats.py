#!/usr/bin/env python3
# SPDX-FileCopyrightText: Copyright (c) 2025 NVIDIA CORPORATION & AFFILIATES. All rights reserved.
# SPDX-License-Identifier: Apache-2.0
"""Print build time reports for a Buildkite organization.

Builds are fetched through the interval chunk cache, so repeated runs only hit
Buildkite for the last hours (or for chunks whose TTL expired).

Usage:
    BUILDKITE_TOKEN=... python3 show_build_stats.py --org my-org --report-config reports.yaml
    python3 show_build_stats.py --org my-org --token @/etc/secrets/buildkite-token \\
        --report-config reports.yaml --cache disk --weeks 2 --percentile 95
"""

from __future__ import annotations

import argparse
import logging
import os
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import List, Optional, Sequence

from build_queries import ReportConfigError, ReportQuery, load_report_queries
from build_stats import (
    active_groups,
    format_duration,
    percentile_by_group,
    rolling_average,
    timeline,
    total_duration_by_group,
)
from cache.cache_base import ChunkStore, DiskChunkStore, MemoryChunkStore
from cache.cache_chunks import BuildChunkCache
from common import DEFAULT_CONCURRENCY, DEFAULT_LOOKBACK, optional_file_expansion, resolve_cache_path
from common_buildkite import BuildFetchError, BuildkiteAPIClient
from common_buildkite.api.base_cached import InflightLocks
from common_buildkite.api.builds_list_cached import BuildsListCached
from common_types import Build

logger = logging.getLogger(__name__)


def _make_store(kind: str, cache_dir: Optional[str]) -> ChunkStore:
    if kind == "disk":
        return DiskChunkStore(cache_dir=resolve_cache_path(cache_dir or "chunks"))
    return MemoryChunkStore()


def _print_table(title: str, header: str, rows: List[tuple]) -> None:
    print(f"\n{title}")
    width = max([len(header)] + [len(name) for name, _ in rows])
    print(f"  {header.ljust(width)}  Duration")
    for name, td in rows:
        print(f"  {name.ljust(width)}  {format_duration(td)}")


def print_report(query: ReportQuery, builds: List[Build], *, weeks: float, percentile: int) -> None:
    print("=" * 80)
    print(f"{query.name}  ({len(builds)} builds, past {weeks:g} weeks)")
    print("=" * 80)
    _print_table("Total time spent building", "Group", total_duration_by_group(builds, query))
    if builds:
        _print_table(f"{percentile}th percentile", "Group", percentile_by_group(builds, query, percentile / 100.0))

    groups = active_groups(builds, query)
    if groups:
        print("\nLatest rolling average (15 builds)")
        for group in groups:
            avg = rolling_average(timeline(builds, query, group))
            print(f"  {group}: {format_duration(timedelta(seconds=avg[-1][1]))}")
    print()


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Print Buildkite build time reports (cached, interval chunked).")
    parser.add_argument("--org", default=os.environ.get("BUILDKITE_ORG"), help="Buildkite organization slug (default: $BUILDKITE_ORG)")
    parser.add_argument(
        "--token",
        default=os.environ.get("BUILDKITE_TOKEN", ""),
        help="Buildkite API token with read_builds (default: $BUILDKITE_TOKEN). '@path' reads it from a file.",
    )
    parser.add_argument("--report-config", type=Path, required=True, help="YAML/JSON file with report definitions")
    parser.add_argument("--weeks", type=float, default=DEFAULT_LOOKBACK / timedelta(weeks=1), help="Lookback window in weeks (default: 4)")
    parser.add_argument("--percentile", type=int, default=90, help="Percentile table to print (default: 90)")
    parser.add_argument("--cache", choices=["memory", "disk"], default="disk", help="Chunk store (default: disk)")
    parser.add_argument("--cache-dir", default=None, help="Chunk store dir for --cache disk (default: ~/.cache/buildkite-stats/chunks)")
    parser.add_argument("--concurrency", type=int, default=DEFAULT_CONCURRENCY, help=f"Max concurrent interval fetches (default: {DEFAULT_CONCURRENCY})")
    parser.add_argument("-v", "--verbose", action="store_true")
    args = parser.parse_args(list(argv) if argv is not None else None)
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO, format="%(levelname)s: %(message)s")

    if not args.org:
        logger.error("--org (or $BUILDKITE_ORG) is required")
        return 1
    if not 0 <= args.percentile <= 100:
        logger.error("--percentile must be within [0, 100]")
        return 1

    try:
        queries = load_report_queries(args.report_config)
        token = optional_file_expansion(args.token) or None
    except (ReportConfigError, OSError) as e:
        logger.error("%s", e)
        return 1

    api = BuildkiteAPIClient(args.org, token, pool_maxsize=args.concurrency)
    if not api.has_token():
        logger.warning("No Buildkite token; requests will likely fail with 401")
    chunks = BuildChunkCache(_make_store(args.cache, args.cache_dir))
    fetcher = BuildsListCached(api, chunks=chunks, inflight=InflightLocks(), concurrency=args.concurrency)

    start = datetime.now(timezone.utc) - timedelta(weeks=args.weeks)
    for query in queries:
        try:
            builds = fetcher.list_builds(start, query)
            print_report(query, builds, weeks=args.weeks, percentile=args.percentile)
        except (BuildFetchError, ReportConfigError) as e:
            logger.error("Report %r failed: %s", query.name, e)
            return 1

    logger.info("REST calls: %s", api.get_rest_call_stats()["total"])
    logger.info("Chunk cache: %s", chunks.stats)
    return 0


if __name__ == "__main__":
    sys.exit(main())
