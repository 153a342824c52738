# SPDX-FileCopyrightText: Copyright (c) 2025 NVIDIA CORPORATION & AFFILIATES. All rights reserved.
# SPDX-License-Identifier: Apache-2.0
"""
buildkite-stats shared constants and utilities.

Shared by the Buildkite client (`common_buildkite/`), the chunk caches (`cache/`)
and the report scripts (`show_build_stats.py`).
"""

import logging
import os
from datetime import timedelta
from pathlib import Path

# Global logger for the module
_logger = logging.getLogger(__name__)

#
# Cache policy constants (single source of truth)
#
# These are intentionally defined at module level so call sites don't duplicate
# literals (12h / 2h / 60d / etc) across modules.
#
CHUNK_STABLE_AFTER: timedelta = timedelta(hours=12)
# ^ Age threshold that flips an interval chunk to "stable".
#   Age is measured from the *end* of the interval to now.
#   Example: the chunk [09:00, 10:00) yesterday is stable today at 22:00 and later.
CHUNK_SETTLED_AFTER: timedelta = timedelta(hours=1)
# ^ Age threshold for "settled" chunks (probably final, but not guaranteed old yet).
#   Example: the chunk [13:00, 14:00) is settled from 15:00 until it becomes stable.
CHUNK_STABLE_TTL_S: int = 60 * 24 * 3600
# ^ TTL (seconds) for stable chunks. Old passed builds never change.
CHUNK_STABLE_TTL_JITTER_S: int = 20 * 24 * 3600
# ^ Upper bound (exclusive) of the random spread added to CHUNK_STABLE_TTL_S.
#   Without it every chunk written by a cold run would expire in the same minute.
CHUNK_SETTLED_TTL_S: int = 2 * 3600
# ^ TTL (seconds) for settled chunks.
CHUNK_ACTIVE_TTL_S: int = 10 * 60
# ^ TTL (seconds) for chunks still receiving new builds (ended less than an hour ago).

DEFAULT_CHUNK: timedelta = timedelta(hours=1)
# ^ Size of one cached interval.
DEFAULT_CONCURRENCY: int = 30
# ^ Max in-flight interval fetches for one list_builds() call.
BUILDS_PER_PAGE: int = 100
# ^ Page size for the Buildkite "list builds" endpoint (Buildkite's max).
DEFAULT_LOOKBACK: timedelta = timedelta(weeks=4)
# ^ Default report window ("past 4 weeks").
DEFAULT_REQUEST_TIMEOUT_S: int = 30


# ======================================================================================
# Cache location policy (buildkite-stats)
#
# All *persistent* caches MUST live under:
#   - $BUILDKITE_STATS_CACHE_DIR     (explicit override), else
#   - ~/.cache/buildkite-stats       (default)
# ======================================================================================

def buildkite_stats_cache_dir() -> Path:
    """Return the cache directory for buildkite-stats.

    Resolution order:
    - BUILDKITE_STATS_CACHE_DIR (explicit override)
    - ~/.cache/buildkite-stats
    """
    override = os.environ.get("BUILDKITE_STATS_CACHE_DIR")
    if override:
        return Path(override).expanduser()

    return Path.home() / ".cache" / "buildkite-stats"


def resolve_cache_path(cache_file: str) -> Path:
    """Resolve a cache file/dir path into the global buildkite-stats cache directory.

    - Absolute paths are used as-is.
    - Relative paths are rooted under `buildkite_stats_cache_dir()`.
    """
    p = Path(cache_file).expanduser()
    if p.is_absolute():
        return p

    # Normalize any leading "./"
    rel = Path(*p.parts[1:]) if p.parts[:1] == (".",) else p
    return buildkite_stats_cache_dir() / rel


def optional_file_expansion(value: str) -> str:
    """Expand "@<path>" into the content of <path>; return other values unchanged.

    Used for secrets mounted as files (e.g. a K8s secret volume). Trailing newlines are
    stripped because mounted files usually end with one.
    """
    s = str(value or "")
    if not s.startswith("@"):
        return s
    path = Path(s[1:]).expanduser()
    _logger.debug("Reading value from %s", path)
    return path.read_text().rstrip("\n")
