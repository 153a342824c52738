# SPDX-FileCopyrightText: Copyright (c) 2025 NVIDIA CORPORATION & AFFILIATES. All rights reserved.
# SPDX-License-Identifier: Apache-2.0

"""Report query definitions for build statistics.

A report selects builds (pipeline/branch regexes), says which two timestamps
bound the measured duration, and how builds are grouped in tables.

Config file (YAML; JSON works too since it's a YAML subset):

    reports:
      - name: Slow main builds
        from: started        # created | scheduled | started | finished
        to: finished
        pipelines: ".*"      # regex, defaults to ".*"
        branches: "^main$"   # regex, defaults to ".*"
        group: "{{ pipeline }}"   # jinja2 template, defaults to "{{ pipeline }}"

Template variables: pipeline, branch, id, created_at, scheduled_at, started_at, finished_at.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List

import jinja2
import yaml

from common_types import Build, BuildPredicate, RegexBuildPredicate

logger = logging.getLogger(__name__)

DEFAULT_GROUP_TEMPLATE = "{{ pipeline }}"

_jinja_env = jinja2.Environment(autoescape=False, undefined=jinja2.StrictUndefined)


class ReportConfigError(ValueError):
    """Invalid report configuration."""


class BuildTimestamp(str, Enum):
    CREATED = "created"
    SCHEDULED = "scheduled"
    STARTED = "started"
    FINISHED = "finished"

    @classmethod
    def parse(cls, value: Any) -> "BuildTimestamp":
        try:
            return cls(str(value or "").strip().lower())
        except ValueError:
            allowed = ", ".join(t.value for t in cls)
            raise ReportConfigError(f"unknown timestamp {value!r} (expected one of: {allowed})") from None

    def extract(self, build: Build) -> datetime:
        return getattr(build, f"{self.value}_at")


@dataclass
class ReportQuery(BuildPredicate):
    name: str
    from_ts: BuildTimestamp
    to_ts: BuildTimestamp
    predicate: BuildPredicate = field(default_factory=RegexBuildPredicate)
    group: str = DEFAULT_GROUP_TEMPLATE

    def __post_init__(self) -> None:
        try:
            self._group_template = _jinja_env.from_string(self.group)
        except jinja2.TemplateSyntaxError as e:
            raise ReportConfigError(f"report {self.name!r}: invalid group template {self.group!r}: {e}") from e

    def matches(self, build: Build) -> bool:
        return self.predicate.matches(build)

    def duration(self, build: Build) -> timedelta:
        return self.to_ts.extract(build) - self.from_ts.extract(build)

    def group_name(self, build: Build) -> str:
        """Render the group template for build."""
        try:
            return self._group_template.render(
                pipeline=build.pipeline.name,
                branch=build.branch,
                id=build.id,
                created_at=build.created_at,
                scheduled_at=build.scheduled_at,
                started_at=build.started_at,
                finished_at=build.finished_at,
            )
        except jinja2.TemplateError as e:
            raise ReportConfigError(f"report {self.name!r}: unable to render group for build {build.id}: {e}") from e


def parse_report_query(raw: Dict[str, Any]) -> ReportQuery:
    """Validate one report mapping into a ReportQuery."""
    if not isinstance(raw, dict):
        raise ReportConfigError(f"report must be a mapping, got {type(raw).__name__}")
    name = str(raw.get("name") or "").strip()
    if not name:
        raise ReportConfigError("report is missing a name")

    try:
        predicate = RegexBuildPredicate(
            pipelines=str(raw.get("pipelines") or ".*"),
            branches=str(raw.get("branches") or ".*"),
        )
    except re.error as e:
        raise ReportConfigError(f"report {name!r}: invalid regex: {e}") from e

    return ReportQuery(
        name=name,
        from_ts=BuildTimestamp.parse(raw.get("from")),
        to_ts=BuildTimestamp.parse(raw.get("to")),
        predicate=predicate,
        group=str(raw.get("group") or DEFAULT_GROUP_TEMPLATE),
    )


def parse_report_queries(data: Any) -> List[ReportQuery]:
    """Parse either a list of report mappings or {"reports": [...]}."""
    items = data.get("reports") if isinstance(data, dict) else data
    if not isinstance(items, list) or not items:
        raise ReportConfigError("expected a non-empty list of reports")
    return [parse_report_query(item) for item in items]


def load_report_queries(path: Path) -> List[ReportQuery]:
    """Read report queries from a YAML/JSON file."""
    path = Path(path).expanduser()
    try:
        data = yaml.safe_load(path.read_text())
    except OSError as e:
        raise ReportConfigError(f"unable to read report config {path}: {e}") from e
    except yaml.YAMLError as e:
        raise ReportConfigError(f"unable to parse report config {path}: {e}") from e
    queries = parse_report_queries(data)
    logger.debug("Loaded %d report(s) from %s", len(queries), path)
    return queries
