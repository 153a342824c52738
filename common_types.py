#!/usr/bin/env python3
# SPDX-FileCopyrightText: Copyright (c) 2025 NVIDIA CORPORATION & AFFILIATES. All rights reserved.
# SPDX-License-Identifier: Apache-2.0

"""
Common value types shared by:
- `common_buildkite/` (API client + interval fetcher)
- `cache/` (chunk serialization)
- `build_queries.py` / `build_stats.py` (reports)

This module MUST NOT import any other buildkite-stats module to avoid cycles.
"""

from __future__ import annotations

import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Pattern


def _iso(ts: datetime) -> str:
    return ts.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def parse_iso_timestamp(value: str) -> datetime:
    """Parse an ISO-8601 timestamp (Buildkite uses a "Z" suffix) into an aware datetime."""
    dt = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


@dataclass(frozen=True)
class Pipeline:
    name: str


@dataclass(frozen=True)
class Build:
    """A finished (passed) Buildkite build.

    Only the fields the reports need are kept; mapping to this struct uses a lot less
    memory than holding on to the wire JSON.
    """

    id: str
    pipeline: Pipeline
    branch: str
    created_at: datetime
    scheduled_at: datetime
    started_at: datetime
    finished_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        """Convert to a plain dict (suitable for json.dumps)."""
        return {
            "id": self.id,
            "pipeline": {"name": self.pipeline.name},
            "branch": self.branch,
            "created_at": _iso(self.created_at),
            "scheduled_at": _iso(self.scheduled_at),
            "started_at": _iso(self.started_at),
            "finished_at": _iso(self.finished_at),
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "Build":
        """Reconstruct a Build from `to_dict()` output. Raises KeyError/ValueError on bad input."""
        return cls(
            id=str(d["id"]),
            pipeline=Pipeline(name=str(d["pipeline"]["name"])),
            branch=str(d["branch"]),
            created_at=parse_iso_timestamp(d["created_at"]),
            scheduled_at=parse_iso_timestamp(d["scheduled_at"]),
            started_at=parse_iso_timestamp(d["started_at"]),
            finished_at=parse_iso_timestamp(d["finished_at"]),
        )


@dataclass(frozen=True)
class TimeInterval:
    """Half-open time window [start, end). The unit of caching."""

    start: datetime
    end: datetime

    @property
    def cache_key(self) -> str:
        return f"{int(self.start.timestamp())}-{int(self.end.timestamp())}"

    def __contains__(self, ts: datetime) -> bool:
        return self.start <= ts < self.end

    def __str__(self) -> str:
        return f"[{_iso(self.start)}, {_iso(self.end)})"


class BuildPredicate(ABC):
    """Answers "does this build belong in the result?" for list_builds()."""

    @abstractmethod
    def matches(self, build: Build) -> bool:
        ...


class MatchAllBuilds(BuildPredicate):
    def matches(self, build: Build) -> bool:
        return True


class RegexBuildPredicate(BuildPredicate):
    """Match builds whose pipeline name and branch both match the given regexes.

    Patterns are unanchored (re.search), so "main" also matches "main-backport".
    """

    def __init__(self, pipelines: str = ".*", branches: str = ".*"):
        self.pipelines: Pattern[str] = re.compile(pipelines or ".*")
        self.branches: Pattern[str] = re.compile(branches or ".*")

    def matches(self, build: Build) -> bool:
        return bool(self.pipelines.search(build.pipeline.name)) and bool(self.branches.search(build.branch))

    def __repr__(self) -> str:
        return f"RegexBuildPredicate(pipelines={self.pipelines.pattern!r}, branches={self.branches.pattern!r})"
