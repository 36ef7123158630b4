# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/discoblocks/observers/events.py

from __future__ import annotations
from dataclasses import dataclass, asdict
from typing import Dict, Any, Optional
from datetime import datetime
import uuid


# ---------------------------------------------------------------------
# Base context and helper
# ---------------------------------------------------------------------
@dataclass(frozen=True)
class BaseEvent:
    ts: str           # ISO timestamp
    run_id: str       # correlates all events of one monitor cycle / reconcile
    component: str    # monitor/reconciler/mutator

    def dict(self) -> Dict[str, Any]:
        return asdict(self)


def new_ctx(component: str, run_id: Optional[str] = None) -> Dict[str, Any]:
    return {
        "ts": datetime.utcnow().isoformat(timespec="seconds") + "Z",
        "run_id": run_id or str(uuid.uuid4()),
        "component": component,
    }


# ---------------------------------------------------------------------
# Volume monitor
# ---------------------------------------------------------------------
@dataclass(frozen=True)
class ClaimResized(BaseEvent):
    namespace: str
    name: str
    old_capacity: str
    new_capacity: str

@dataclass(frozen=True)
class CapacityCeilingReached(BaseEvent):
    namespace: str
    name: str
    capacity: str
    available: int

@dataclass(frozen=True)
class HostJobCreated(BaseEvent):
    namespace: str
    name: str
    claim: str
    kind: str         # attach/mount/resize

@dataclass(frozen=True)
class MonitorCycleCompleted(BaseEvent):
    scraped: int
    resized: int
    ceiling: int
    skipped: int


# ---------------------------------------------------------------------
# Claim reconciler
# ---------------------------------------------------------------------
@dataclass(frozen=True)
class ClaimStatusSynced(BaseEvent):
    namespace: str
    name: str
    config: str
    phase: Optional[str] = None   # None when the entry was removed


# ---------------------------------------------------------------------
# Pod mutator
# ---------------------------------------------------------------------
@dataclass(frozen=True)
class PodMutated(BaseEvent):
    namespace: str
    name: str
    claims: tuple

@dataclass(frozen=True)
class PodRejected(BaseEvent):
    namespace: str
    name: str
    reason: str
    denied: bool      # False when non-strict mode admitted the pod unmodified
