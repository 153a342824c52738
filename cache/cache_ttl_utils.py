# SPDX-FileCopyrightText: Copyright (c) 2025 NVIDIA CORPORATION & AFFILIATES. All rights reserved.
# SPDX-License-Identifier: Apache-2.0
"""TTL calculation for interval chunks.

This module provides the tiered TTL policy used when an interval's builds are written
to the chunk store. Age is measured from the end of the interval to now.
"""

from __future__ import annotations

import random
from datetime import datetime, timezone
from typing import Optional

from common import (
    CHUNK_ACTIVE_TTL_S,
    CHUNK_SETTLED_AFTER,
    CHUNK_SETTLED_TTL_S,
    CHUNK_STABLE_AFTER,
    CHUNK_STABLE_TTL_JITTER_S,
    CHUNK_STABLE_TTL_S,
)
from common_types import TimeInterval

_rng = random.Random()


def stable_ttl_jitter_s(rng: Optional[random.Random] = None) -> int:
    """Random spread for stable chunks: whole minutes in [0, CHUNK_STABLE_TTL_JITTER_S)."""
    r = rng if rng is not None else _rng
    return r.randrange(CHUNK_STABLE_TTL_JITTER_S // 60) * 60


def interval_ttl_s(
    interval: TimeInterval,
    *,
    now: Optional[datetime] = None,
    rng: Optional[random.Random] = None,
) -> int:
    """Tiered TTL for an interval chunk.

    Schedule (age = now - interval.end):
      - age > 12h  -> 60d + jitter in [0, 20d)
      - age > 1h   -> 2h
      - otherwise  -> 10m

    Args:
        interval: The interval being written
        now: Reference time (defaults to the current UTC time)
        rng: Random source for the stable-tier jitter (defaults to a module-level Random)

    Returns:
        TTL in seconds
    """
    now_dt = now if now is not None else datetime.now(timezone.utc)
    age = now_dt - interval.end
    if age > CHUNK_STABLE_AFTER:
        # Old builds never change; the spread keeps entries from one cold run from all
        # expiring (and being re-fetched) together.
        return CHUNK_STABLE_TTL_S + stable_ttl_jitter_s(rng)
    if age > CHUNK_SETTLED_AFTER:
        return CHUNK_SETTLED_TTL_S
    return CHUNK_ACTIVE_TTL_S
