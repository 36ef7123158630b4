# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/discoblocks/controllers/events.py

"""
Which PVC watch events reach the claim reconciler.

A claim is in one of three states; an update is admitted by looking up the
(old state, new state) transition. Delete events are never admitted: the
finalizer keeps a deleting claim alive, so deletion shows up as the
MANAGED_ACTIVE -> MANAGED_DELETING update.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, Optional

from discoblocks import MANAGED_LABEL
from discoblocks.utils.naming import render_finalizer


class ClaimState(str, Enum):
    UNMANAGED = "unmanaged"
    MANAGED_ACTIVE = "managed-active"
    MANAGED_DELETING = "managed-deleting"


class Admit(str, Enum):
    ALWAYS = "always"
    NEVER = "never"
    ON_PHASE_CHANGE = "on-phase-change"


# (old, new) -> rule. Every pair is listed.
TRANSITIONS: Dict[tuple, Admit] = {
    (ClaimState.UNMANAGED, ClaimState.UNMANAGED): Admit.NEVER,
    (ClaimState.MANAGED_ACTIVE, ClaimState.UNMANAGED): Admit.NEVER,
    (ClaimState.MANAGED_DELETING, ClaimState.UNMANAGED): Admit.NEVER,
    # finalizer added
    (ClaimState.UNMANAGED, ClaimState.MANAGED_ACTIVE): Admit.ALWAYS,
    (ClaimState.MANAGED_ACTIVE, ClaimState.MANAGED_ACTIVE): Admit.ON_PHASE_CHANGE,
    (ClaimState.MANAGED_DELETING, ClaimState.MANAGED_ACTIVE): Admit.ALWAYS,
    # deletion timestamp set
    (ClaimState.UNMANAGED, ClaimState.MANAGED_DELETING): Admit.ALWAYS,
    (ClaimState.MANAGED_ACTIVE, ClaimState.MANAGED_DELETING): Admit.ALWAYS,
    (ClaimState.MANAGED_DELETING, ClaimState.MANAGED_DELETING): Admit.ALWAYS,
}


def is_managed(pvc: Dict[str, Any]) -> bool:
    meta = pvc.get("metadata") or {}
    config_name = (meta.get("labels") or {}).get(MANAGED_LABEL)
    if not config_name:
        return False
    return render_finalizer(config_name) in (meta.get("finalizers") or [])


def claim_state(pvc: Dict[str, Any]) -> ClaimState:
    if not is_managed(pvc):
        return ClaimState.UNMANAGED
    if (pvc.get("metadata") or {}).get("deletionTimestamp"):
        return ClaimState.MANAGED_DELETING
    return ClaimState.MANAGED_ACTIVE


def _phase(pvc: Dict[str, Any]) -> Optional[str]:
    return (pvc.get("status") or {}).get("phase")


class ClaimEventFilter:
    def create(self, new: Dict[str, Any]) -> bool:
        return claim_state(new) != ClaimState.UNMANAGED

    def update(self, old: Dict[str, Any], new: Dict[str, Any]) -> bool:
        rule = TRANSITIONS[(claim_state(old), claim_state(new))]
        if rule is Admit.ON_PHASE_CHANGE:
            return _phase(old) != _phase(new)
        return rule is Admit.ALWAYS

    def delete(self, obj: Dict[str, Any]) -> bool:
        return False

    def generic(self, obj: Dict[str, Any]) -> bool:
        return False
