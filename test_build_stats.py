"""
Pytest tests for build_stats.py (durations, percentiles, rolling averages).
"""

from datetime import datetime, timedelta, timezone

import pytest

from build_queries import parse_report_query
from build_stats import (
    active_groups,
    duration_percentile,
    durations_by_group,
    format_duration,
    percentile_by_group,
    rolling_average,
    timeline,
    total_duration_by_group,
)
from common_types import Build, Pipeline

T0 = datetime(2024, 3, 10, 12, 0, tzinfo=timezone.utc)
QUERY = parse_report_query({"name": "run time", "from": "started", "to": "finished"})


def _build(pipeline: str, minutes: float, offset_h: int = 0, bid: str = "") -> Build:
    started = T0 + timedelta(hours=offset_h)
    return Build(
        id=bid or f"{pipeline}-{offset_h}-{minutes}",
        pipeline=Pipeline(name=pipeline),
        branch="main",
        created_at=started - timedelta(minutes=1),
        scheduled_at=started - timedelta(seconds=30),
        started_at=started,
        finished_at=started + timedelta(minutes=minutes),
    )


# ============================================================================
# format_duration
# ============================================================================

@pytest.mark.parametrize(
    "td,expected",
    [
        (timedelta(0), "0s"),
        (timedelta(seconds=12), "12s"),
        (timedelta(minutes=4), "4m0s"),
        (timedelta(hours=1, minutes=2, seconds=3), "1h2m3s"),
        (timedelta(hours=26), "26h0m0s"),
        (timedelta(seconds=59.9), "59s"),
        (-timedelta(seconds=90), "-1m30s"),
    ],
)
def test_format_duration(td, expected):
    assert format_duration(td) == expected


# ============================================================================
# Aggregates
# ============================================================================

def test_durations_grouped_by_pipeline():
    builds = [_build("app", 10), _build("lib", 3), _build("app", 20, offset_h=1)]
    assert durations_by_group(builds, QUERY) == {
        "app": [timedelta(minutes=10), timedelta(minutes=20)],
        "lib": [timedelta(minutes=3)],
    }


def test_total_duration_sorted_descending():
    builds = [_build("lib", 3), _build("app", 10), _build("app", 20, offset_h=1), _build("docs", 30)]
    assert total_duration_by_group(builds, QUERY) == [
        ("app", timedelta(minutes=30)),
        ("docs", timedelta(minutes=30)),
        ("lib", timedelta(minutes=3)),
    ]


def test_total_duration_empty():
    assert total_duration_by_group([], QUERY) == []


def test_percentile_nearest_rank():
    ds = [timedelta(seconds=s) for s in (50, 10, 40, 20, 30)]
    assert duration_percentile(ds, 0.0) == timedelta(seconds=10)
    assert duration_percentile(ds, 0.5) == timedelta(seconds=30)
    assert duration_percentile(ds, 1.0) == timedelta(seconds=50)
    # (5 - 1) * 0.9 = 3.6 -> index 4
    assert duration_percentile(ds, 0.9) == timedelta(seconds=50)


def test_percentile_rounds_half_up():
    # (2 - 1) * 0.5 = 0.5 -> index 1
    ds = [timedelta(seconds=1), timedelta(seconds=2)]
    assert duration_percentile(ds, 0.5) == timedelta(seconds=2)
    # (4 - 1) * 0.5 = 1.5 -> index 2
    ds = [timedelta(seconds=s) for s in (1, 2, 3, 4)]
    assert duration_percentile(ds, 0.5) == timedelta(seconds=3)


@pytest.mark.parametrize("perc", [-0.1, 1.5])
def test_percentile_out_of_range(perc):
    with pytest.raises(ValueError):
        duration_percentile([timedelta(seconds=1)], perc)


def test_percentile_of_nothing():
    with pytest.raises(ValueError):
        duration_percentile([], 0.9)


def test_percentile_by_group_truncates_to_seconds():
    builds = [_build("app", 1.51), _build("app", 2.0, offset_h=1), _build("lib", 5.0)]
    assert percentile_by_group(builds, QUERY, 0.0) == [
        ("lib", timedelta(minutes=5)),
        ("app", timedelta(seconds=90)),
    ]


# ============================================================================
# Timelines
# ============================================================================

def test_active_groups_need_two_builds():
    builds = [_build("app", 1), _build("app", 2, offset_h=1), _build("lib", 3)]
    assert active_groups(builds, QUERY) == ["app"]
    assert active_groups(builds, QUERY, min_builds=1) == ["app", "lib"]


def test_timeline_ordered_by_start_timestamp():
    builds = [_build("app", 3, offset_h=2), _build("app", 1, offset_h=0), _build("lib", 9), _build("app", 2, offset_h=1)]
    assert timeline(builds, QUERY, "app") == [
        (T0, 60.0),
        (T0 + timedelta(hours=1), 120.0),
        (T0 + timedelta(hours=2), 180.0),
    ]


def test_rolling_average_window():
    samples = [(T0 + timedelta(hours=i), float(v)) for i, v in enumerate([10, 20, 30, 40])]
    assert [v for _, v in rolling_average(samples, window=2)] == [10.0, 15.0, 25.0, 35.0]
    assert [v for _, v in rolling_average(samples)] == [10.0, 15.0, 20.0, 25.0]
    assert [t for t, _ in rolling_average(samples, window=2)] == [t for t, _ in samples]


def test_rolling_average_rejects_bad_window():
    with pytest.raises(ValueError):
        rolling_average([], window=0)
