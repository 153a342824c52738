# SPDX-FileCopyrightText: Copyright (c) 2025 NVIDIA CORPORATION & AFFILIATES. All rights reserved.
# SPDX-License-Identifier: Apache-2.0
"""Buildkite API error types.

These are intentionally lightweight so cached API modules can catch specific
error classes (e.g. 429 rate limit) without creating import cycles.
"""

from __future__ import annotations

from typing import Any, List, Tuple


class BuildkiteAPIError(Exception):
    def __init__(self, *, status_code: int, endpoint: str, message: str):
        super().__init__(message)
        self.status_code = int(status_code)
        self.endpoint = str(endpoint or "")


class BuildkiteAuthError(BuildkiteAPIError):
    pass


class BuildkiteForbiddenError(BuildkiteAPIError):
    pass


class BuildkiteNotFoundError(BuildkiteAPIError):
    pass


class BuildkiteRateLimitError(BuildkiteAPIError):
    pass


class BuildkiteRequestError(BuildkiteAPIError):
    pass


class BuildkiteRecordError(ValueError):
    """A wire build record is missing fields every passed build carries."""


class BuildFetchError(Exception):
    """One or more intervals of a list_builds() call failed.

    `failures` holds (interval, exception) pairs in interval order.
    """

    def __init__(self, failures: List[Tuple[Any, BaseException]]):
        self.failures = list(failures)
        first_interval, first_exc = self.failures[0]
        msg = f"{len(self.failures)} interval fetch(es) failed; first: {first_interval}: {first_exc}"
        super().__init__(msg)
