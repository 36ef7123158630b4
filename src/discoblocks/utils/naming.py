# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/discoblocks/utils/naming.py

from __future__ import annotations

import hashlib
from typing import Mapping, Optional

from discoblocks import API_GROUP

RESOURCE_PREFIX = "discoblocks"

# sha256 hex is 64 chars; prefix + dash + 40 stays well below the 63 char DNS label limit.
_HASH_LENGTH = 40


def render_resource_name(*parts: str) -> str:
    """
    Deterministic DNS-safe name for claims, jobs and services.

    The same parts always produce the same name, so claim and job names
    computed by different components stay correlated.
    """
    if not parts or any(p is None for p in parts):
        raise ValueError("resource name parts must be non-empty strings")

    digest = hashlib.sha256("/".join(parts).encode("utf-8")).hexdigest()
    return f"{RESOURCE_PREFIX}-{digest[:_HASH_LENGTH]}"


def render_finalizer(config_name: str) -> str:
    return f"{API_GROUP}/{config_name}"


def render_mount_point(pattern: str, index: int = 0) -> str:
    """
    Render a mount point pattern for the n-th volume of a config.

    A pattern without ``%d`` is used as is for the first volume and gets
    ``-<index>`` appended for the following ones.
    """
    if "%d" not in pattern:
        if index == 0:
            return pattern
        return f"{pattern}-{index}"

    return pattern.replace("%d", str(index), 1)


def is_contains_all(labels: Optional[Mapping[str, str]], selector: Optional[Mapping[str, str]]) -> bool:
    """True when every selector key/value is present in labels."""
    labels = labels or {}
    for key, value in (selector or {}).items():
        if labels.get(key) != value:
            return False
    return True


def metrics_pod_label(config_name: str) -> str:
    """Pod label key linking a pod to the metrics service of one config."""
    return f"{RESOURCE_PREFIX}/{config_name}"
