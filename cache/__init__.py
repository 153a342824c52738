# SPDX-FileCopyrightText: Copyright (c) 2025 NVIDIA CORPORATION & AFFILIATES. All rights reserved.
# SPDX-License-Identifier: Apache-2.0
"""Interval chunk caches for buildkite-stats.

- `cache_base.py`: opaque TTL byte stores (memory, disk) + cache error types
- `cache_chunks.py`: builds <-> compressed chunk payloads
- `cache_ttl_utils.py`: tiered TTL policy for interval chunks
"""
