# SPDX-FileCopyrightText: Copyright (c) 2025 NVIDIA CORPORATION & AFFILIATES. All rights reserved.
# SPDX-License-Identifier: Apache-2.0
"""
Time-range partitioning for the interval chunk cache.

Splits [start, end) into fixed-size intervals anchored at midnight of start's
calendar day:

    start = 2024-01-05 10:17, end = 2024-01-05 12:40, chunk = 1h

    [00:00, 01:00) [01:00, 02:00) ... [12:00, 13:00)

The union is a superset of [start, end): the first interval starts before
`start` and the last one may end after `end`. Anchoring to the day (and not to
`start`) keeps cache keys identical across queries such as "now minus 4 weeks"
that shift every second, so almost every interval is a cache hit.
"""

from __future__ import annotations

import logging
import os
from datetime import datetime, timedelta, timezone, tzinfo
from typing import List, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from common import DEFAULT_CHUNK
from common_types import TimeInterval

_logger = logging.getLogger(__name__)


def local_tz() -> tzinfo:
    """The local timezone as a DST-aware zone.

    Resolution order: $TZ, /etc/localtime, then the fixed UTC offset in effect right
    now. Only the last one gets midnight wrong on a daylight-saving change day.
    """
    name = os.environ.get("TZ", "").lstrip(":")
    if name:
        try:
            return ZoneInfo(name)
        except (ZoneInfoNotFoundError, ValueError) as e:
            _logger.debug("TZ=%r is not a known zone (%s), trying /etc/localtime", name, e)
    try:
        with open("/etc/localtime", "rb") as fh:
            return ZoneInfo.from_file(fh, key="localtime")
    except (OSError, ValueError) as e:
        _logger.debug("No usable /etc/localtime (%s), using the current UTC offset", e)
    return datetime.now().astimezone().tzinfo


def day_start(ts: datetime, tz: Optional[tzinfo] = None) -> datetime:
    """Midnight of ts's calendar day in tz (default: local timezone), as an aware UTC datetime."""
    local = ts.astimezone(tz if tz is not None else local_tz())
    # With a zone (not a fixed offset), replace() picks up midnight's own UTC offset.
    midnight = local.replace(hour=0, minute=0, second=0, microsecond=0)
    # Round-trip through UTC so later `+ timedelta` is absolute time (no DST wall-clock math).
    return midnight.astimezone(timezone.utc)


def generate_intervals(
    start: datetime,
    end: datetime,
    chunk: timedelta = DEFAULT_CHUNK,
    *,
    tz: Optional[tzinfo] = None,
) -> List[TimeInterval]:
    """Return contiguous `chunk`-sized intervals covering [start, end).

    Args:
        start: Lower bound of the query (aware datetime)
        end: Upper bound of the query (usually now)
        chunk: Interval size
        tz: Timezone whose midnight anchors the first interval (default: local)

    Returns:
        Ordered list of intervals; empty when end is not after the anchor.
    """
    if chunk <= timedelta(0):
        raise ValueError(f"chunk must be positive, got {chunk}")

    cur = day_start(start, tz)
    res: List[TimeInterval] = []
    while cur < end:
        res.append(TimeInterval(start=cur, end=cur + chunk))
        cur = cur + chunk
    return res
