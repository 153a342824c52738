# SPDX-FileCopyrightText: Copyright (c) 2025 NVIDIA CORPORATION & AFFILIATES. All rights reserved.
# SPDX-License-Identifier: Apache-2.0

"""Build time statistics over a list of builds.

All functions are pure: they take the builds returned by list_builds() and a
ReportQuery (which defines the measured duration and the grouping).
"""

from __future__ import annotations

import math
from collections import defaultdict, deque
from datetime import datetime, timedelta
from typing import Dict, Iterable, List, Sequence, Tuple

from build_queries import ReportQuery
from common_types import Build

NamedDuration = Tuple[str, timedelta]
TimelineSample = Tuple[datetime, float]

DEFAULT_ROLLING_WINDOW = 15


def format_duration(td: timedelta) -> str:
    """Format like Go's time.Duration: 1h2m3s, 4m0s, 12s, 0s."""
    total = int(td.total_seconds())
    sign = "-" if total < 0 else ""
    total = abs(total)
    hours, rem = divmod(total, 3600)
    minutes, seconds = divmod(rem, 60)
    if hours:
        return f"{sign}{hours}h{minutes}m{seconds}s"
    if minutes:
        return f"{sign}{minutes}m{seconds}s"
    return f"{sign}{seconds}s"


def _truncate_to_seconds(td: timedelta) -> timedelta:
    return timedelta(seconds=int(td.total_seconds()))


def durations_by_group(builds: Iterable[Build], query: ReportQuery) -> Dict[str, List[timedelta]]:
    res: Dict[str, List[timedelta]] = defaultdict(list)
    for b in builds:
        res[query.group_name(b)].append(query.duration(b))
    return dict(res)


def total_duration_by_group(builds: Iterable[Build], query: ReportQuery) -> List[NamedDuration]:
    """Sum of durations per group, largest first."""
    sums = {name: sum(ds, timedelta(0)) for name, ds in durations_by_group(builds, query).items()}
    return sorted(sums.items(), key=lambda kv: (-kv[1].total_seconds(), kv[0]))


def duration_percentile(durations: Sequence[timedelta], perc: float) -> timedelta:
    """Nearest-rank percentile: the element at round((n - 1) * perc) of the sorted durations."""
    if not durations:
        raise ValueError("no durations")
    if not 0.0 <= perc <= 1.0:
        raise ValueError(f"percentile must be within [0, 1], got {perc}")
    ordered = sorted(durations)
    # Round half up (round() would round 0.5 to even).
    return ordered[int(math.floor((len(ordered) - 1) * perc + 0.5))]


def percentile_by_group(builds: Iterable[Build], query: ReportQuery, perc: float) -> List[NamedDuration]:
    """perc-th percentile of durations per group (whole seconds), largest first."""
    res = [
        (name, _truncate_to_seconds(duration_percentile(ds, perc)))
        for name, ds in durations_by_group(builds, query).items()
    ]
    return sorted(res, key=lambda kv: (-kv[1].total_seconds(), kv[0]))


def active_groups(builds: Iterable[Build], query: ReportQuery, min_builds: int = 2) -> List[str]:
    """Groups with at least min_builds builds (a single point makes no chart)."""
    counts: Dict[str, int] = defaultdict(int)
    for b in builds:
        counts[query.group_name(b)] += 1
    return sorted(name for name, n in counts.items() if n >= min_builds)


def timeline(builds: Iterable[Build], query: ReportQuery, group: str) -> List[TimelineSample]:
    """(when, duration seconds) for one group, ordered by the query's start timestamp."""
    items = [
        (query.from_ts.extract(b), query.duration(b).total_seconds())
        for b in builds
        if query.group_name(b) == group
    ]
    items.sort(key=lambda s: s[0])
    return items


def rolling_average(samples: Sequence[TimelineSample], window: int = DEFAULT_ROLLING_WINDOW) -> List[TimelineSample]:
    """Rolling mean over the last `window` samples (fewer at the start of the series)."""
    if window <= 0:
        raise ValueError(f"window must be positive, got {window}")
    recent: deque = deque(maxlen=window)
    res: List[TimelineSample] = []
    for when, secs in samples:
        recent.append(secs)
        res.append((when, sum(recent) / len(recent)))
    return res
