# SPDX-FileCopyrightText: Copyright (c) 2025 NVIDIA CORPORATION & AFFILIATES. All rights reserved.
# SPDX-License-Identifier: Apache-2.0
"""Buildkite API client and cached API resources for buildkite-stats.

Layout (mirrors the per-resource caching layout used for other CI providers):
- `common_buildkite/` defines the API client + REST stats helpers
- `common_buildkite/api/*_cached.py` contains per-resource caching + fetch logic
"""

from __future__ import annotations

import logging
import os
import threading
import time
import urllib.parse
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

import requests
from requests.adapters import HTTPAdapter

from common import BUILDS_PER_PAGE, DEFAULT_CONCURRENCY, DEFAULT_REQUEST_TIMEOUT_S
from common_types import Build, Pipeline, TimeInterval, parse_iso_timestamp

from .exceptions import (
    BuildFetchError,
    BuildkiteAPIError,
    BuildkiteAuthError,
    BuildkiteForbiddenError,
    BuildkiteNotFoundError,
    BuildkiteRateLimitError,
    BuildkiteRecordError,
    BuildkiteRequestError,
)

_logger = logging.getLogger(__name__)

USER_AGENT = "buildkite-stats/1.0.0"
_TIMESTAMP_FIELDS = ("created_at", "scheduled_at", "started_at", "finished_at")


def _iso_param(ts: datetime) -> str:
    return ts.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def build_from_wire(item: Dict[str, Any]) -> Build:
    """Map one Buildkite build JSON object into a Build.

    Only passed builds are requested, and passed builds always carry all four
    timestamps, so a missing one is an error rather than something to default.
    """
    if not isinstance(item, dict):
        raise BuildkiteRecordError(f"build record is not an object: {type(item).__name__}")
    build_id = item.get("id")
    pipeline_name = (item.get("pipeline") or {}).get("name")
    branch = item.get("branch")
    if not build_id or pipeline_name is None or branch is None:
        raise BuildkiteRecordError(f"build record {build_id!r} is missing id/pipeline/branch")

    stamps: Dict[str, datetime] = {}
    for name in _TIMESTAMP_FIELDS:
        raw = item.get(name)
        if not raw:
            raise BuildkiteRecordError(f"build {build_id} has no {name}")
        try:
            stamps[name] = parse_iso_timestamp(raw)
        except ValueError as e:
            raise BuildkiteRecordError(f"build {build_id} has invalid {name}={raw!r}") from e

    return Build(
        id=str(build_id),
        pipeline=Pipeline(name=str(pipeline_name)),
        branch=str(branch),
        **stamps,
    )


def next_page_from_response(response: "requests.Response") -> int:
    """Return the next page number from the Link header, or 0 on the last page."""
    nxt = (getattr(response, "links", None) or {}).get("next") or {}
    url = str(nxt.get("url") or "")
    if not url:
        return 0
    query = urllib.parse.parse_qs(urllib.parse.urlparse(url).query)
    try:
        return int((query.get("page") or ["0"])[0])
    except ValueError:
        return 0


class BuildkiteAPIClient:
    """Buildkite REST API client (lightweight; caching lives in `common_buildkite/api/`)."""

    def __init__(
        self,
        org: str,
        token: Optional[str] = None,
        *,
        base_url: str = "https://api.buildkite.com",
        timeout_s: int = DEFAULT_REQUEST_TIMEOUT_S,
        per_page: int = BUILDS_PER_PAGE,
        session: Optional[requests.Session] = None,
        pool_maxsize: int = DEFAULT_CONCURRENCY,
    ):
        self.org = str(org or "")
        # Token priority: 1) provided token, 2) environment variable
        self.token = token or os.environ.get("BUILDKITE_TOKEN")
        self.base_url = str(base_url or "").rstrip("/")
        self.timeout_s = int(timeout_s)
        self.per_page = int(per_page)
        if session is None:
            session = requests.Session()
            # One pooled connection per worker thread (requests keeps 10 by default).
            adapter = HTTPAdapter(pool_connections=1, pool_maxsize=max(1, int(pool_maxsize)))
            session.mount("https://", adapter)
            session.mount("http://", adapter)
        self.session = session
        self.headers: Dict[str, str] = {"User-Agent": USER_AGENT, "Accept": "application/json"}
        if self.token:
            self.headers["Authorization"] = f"Bearer {self.token}"

        # Per-run REST stats (label-based; updated from worker threads).
        self._rest_mu = threading.Lock()
        self._rest_calls_total: int = 0
        self._rest_calls_by_label: Dict[str, int] = {}
        self._rest_success_total: int = 0
        self._rest_errors_total: int = 0
        self._rest_time_total_s: float = 0.0
        self._rest_time_by_label_s: Dict[str, float] = {}
        self._rest_errors_by_status: Dict[int, int] = {}

    def has_token(self) -> bool:
        return self.token is not None

    def _rest_record(self, *, label: str, status_code: Optional[int], dt_s: float) -> None:
        """Record one REST call in the per-instance stats."""
        lbl = str(label or "").strip() or "unknown"
        dt = max(0.0, float(dt_s or 0.0))

        with self._rest_mu:
            self._rest_calls_total += 1
            self._rest_calls_by_label[lbl] = int(self._rest_calls_by_label.get(lbl, 0)) + 1
            self._rest_time_total_s += dt
            self._rest_time_by_label_s[lbl] = float(self._rest_time_by_label_s.get(lbl, 0.0)) + dt

            if status_code is None:
                return
            if 200 <= status_code < 300:
                self._rest_success_total += 1
            elif status_code >= 400:
                self._rest_errors_total += 1
                self._rest_errors_by_status[status_code] = int(self._rest_errors_by_status.get(status_code, 0)) + 1

    def _get(
        self,
        endpoint: str,
        params: Optional[Dict[str, Any]] = None,
        *,
        label: Optional[str] = None,
    ) -> "requests.Response":
        """Make a GET request to the Buildkite API and return the response or raise."""
        ep = str(endpoint or "")
        t0 = time.monotonic()
        status_code: Optional[int] = None
        lbl = str(label or "").strip() or "unknown"
        url = f"{self.base_url}{ep}" if ep.startswith("/") else f"{self.base_url}/{ep}"

        try:
            response = self.session.get(url, headers=self.headers, params=params, timeout=self.timeout_s)
            status_code = int(response.status_code)

            if status_code == 401:
                raise BuildkiteAuthError(status_code=401, endpoint=ep, message="Buildkite API returned 401 Unauthorized. Check your token.")
            if status_code == 403:
                raise BuildkiteForbiddenError(status_code=403, endpoint=ep, message="Buildkite API returned 403 Forbidden. Token needs read_builds.")
            if status_code == 404:
                raise BuildkiteNotFoundError(status_code=404, endpoint=ep, message=f"Buildkite API returned 404 Not Found for {endpoint}")
            if status_code == 429:
                reset = response.headers.get("RateLimit-Reset", "?")
                raise BuildkiteRateLimitError(status_code=429, endpoint=ep, message=f"Buildkite API rate limit exceeded (resets in {reset}s)")

            response.raise_for_status()
            return response
        except requests.exceptions.RequestException as e:
            raise BuildkiteRequestError(status_code=int(status_code or 0), endpoint=ep, message=f"Buildkite API request failed for {endpoint}: {e}") from e
        finally:
            dt = max(0.0, time.monotonic() - t0)
            self._rest_record(label=lbl, status_code=status_code, dt_s=float(dt))

    def _get_json(
        self, endpoint: str, params: Optional[Dict[str, Any]] = None, *, label: Optional[str] = None
    ) -> Tuple[Any, "requests.Response"]:
        """GET and return (decoded JSON body, response); the response carries the Link header."""
        response = self._get(endpoint, params=params, label=label)
        try:
            return response.json(), response
        except ValueError as e:
            raise BuildkiteRequestError(status_code=int(response.status_code), endpoint=endpoint, message=f"Invalid JSON from {endpoint}: {e}") from e

    def list_builds_page(self, interval: TimeInterval, page: int) -> Tuple[List[Build], int]:
        """Fetch one page of passed builds created in interval.

        Returns:
            (builds, next_page) where next_page <= 0 means this was the last page.
        """
        endpoint = f"/v2/organizations/{urllib.parse.quote(self.org, safe='')}/builds"
        params = {
            "created_from": _iso_param(interval.start),
            "created_to": _iso_param(interval.end),
            # Only passed builds: they are finished, so every timestamp is set.
            "state": "passed",
            "page": int(page),
            "per_page": self.per_page,
        }
        items, response = self._get_json(endpoint, params=params, label="list_builds")
        if not isinstance(items, list):
            raise BuildkiteRequestError(status_code=int(response.status_code), endpoint=endpoint, message=f"Expected a list of builds from {endpoint}")
        return [build_from_wire(item) for item in items], next_page_from_response(response)

    def list_builds_between(self, interval: TimeInterval) -> List[Build]:
        """Fetch all passed builds created in interval, following pagination.

        Builds keep the order Buildkite returned them in. Any page failure aborts the
        whole interval (no partial results).
        """
        result: List[Build] = []
        page = 1
        while True:
            builds, next_page = self.list_builds_page(interval, page)
            result.extend(builds)
            if next_page <= 0:
                break
            page = next_page
        _logger.debug("Fetched %d builds for %s (%d page(s))", len(result), interval, page)
        return result

    def get_rest_call_stats(self) -> Dict[str, Any]:
        """Return REST call stats for the current process/run."""
        with self._rest_mu:
            return {
                "total": int(self._rest_calls_total),
                "success_total": int(self._rest_success_total),
                "error_total": int(self._rest_errors_total),
                "time_total_s": float(self._rest_time_total_s),
                "by_label": dict(sorted(self._rest_calls_by_label.items(), key=lambda kv: (-kv[1], kv[0]))),
                "time_by_label_s": dict(sorted(self._rest_time_by_label_s.items(), key=lambda kv: (-kv[1], kv[0]))),
                "errors_by_status": dict(sorted(self._rest_errors_by_status.items(), key=lambda kv: (-kv[1], kv[0]))),
            }


__all__ = [
    "BuildFetchError",
    "BuildkiteAPIClient",
    "BuildkiteAPIError",
    "BuildkiteAuthError",
    "BuildkiteForbiddenError",
    "BuildkiteNotFoundError",
    "BuildkiteRateLimitError",
    "BuildkiteRecordError",
    "BuildkiteRequestError",
    "build_from_wire",
    "next_page_from_response",
]
