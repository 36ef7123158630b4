# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/discoblocks/controllers/reconciler.py

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from discoblocks import MANAGED_LABEL
from discoblocks.coordination import OperationGate
from discoblocks.errors import BusyError, ConflictError, NotFoundError
from discoblocks.observers.dispatcher import EventBus
from discoblocks.observers.events import ClaimStatusSynced, new_ctx
from discoblocks.utils.deadline import Deadline
from discoblocks.utils.naming import render_finalizer

log = logging.getLogger("discoblocks")


@dataclass(frozen=True)
class ReconcileResult:
    requeue: bool = False
    requeue_after: Optional[float] = None


DONE = ReconcileResult()


class ClaimReconciler:
    """
    Mirrors the phase of every managed claim into its DiskConfig's status.
    """

    def __init__(
        self,
        kube,
        gate: OperationGate,
        *,
        bus: Optional[EventBus] = None,
        timeout_seconds: float = 60.0,
        requeue_delay_seconds: float = 5.0,
    ):
        self.kube = kube
        self.gate = gate
        self.bus = bus or EventBus()
        self.timeout_seconds = timeout_seconds
        self.requeue_delay_seconds = requeue_delay_seconds

    def reconcile(self, namespace: str, name: str) -> ReconcileResult:
        try:
            with self.gate.hold("reconcile"):
                return self._reconcile(namespace, name)
        except BusyError:
            log.info("[reconcile] %s/%s: another operation is in flight, rescheduling", namespace, name)
            return ReconcileResult(requeue=True, requeue_after=self.requeue_delay_seconds)

    def _reconcile(self, namespace: str, name: str) -> ReconcileResult:
        log.info("[reconcile] %s/%s: reconciling...", namespace, name)
        deadline = Deadline(self.timeout_seconds)

        try:
            pvc = self.kube.get_pvc(namespace, name, timeout=deadline.remaining())
        except NotFoundError:
            log.info("[reconcile] %s/%s: PVC not found", namespace, name)
            return DONE

        config_name = (pvc["metadata"].get("labels") or {}).get(MANAGED_LABEL)
        if not config_name:
            log.info("[reconcile] %s/%s: PVC has no %s label", namespace, name, MANAGED_LABEL)
            return DONE

        if render_finalizer(config_name) not in (pvc["metadata"].get("finalizers") or []):
            log.info("[reconcile] %s/%s: PVC lacks finalizer of %s, not managed", namespace, name, config_name)
            return DONE

        try:
            disk_config = self.kube.get_disk_config(namespace, config_name, timeout=deadline.remaining())
        except NotFoundError:
            log.info("[reconcile] %s/%s: DiskConfig %s not found", namespace, name, config_name)
            return DONE

        claims = disk_config.status.persistent_volume_claims
        deleting = bool(pvc["metadata"].get("deletionTimestamp"))
        phase = (pvc.get("status") or {}).get("phase")

        if deleting:
            if name in claims:
                log.info("[reconcile] %s/%s: remove status from %s", namespace, name, config_name)
                del claims[name]
        else:
            log.info("[reconcile] %s/%s: add status phase=%s to %s", namespace, name, phase, config_name)
            claims[name] = phase

        try:
            self.kube.update_disk_config_status(disk_config, timeout=deadline.remaining())
            if deleting:
                self._release(pvc, config_name, deadline)
        except ConflictError as e:
            # retried with a fresh read, nothing is overwritten blindly
            log.warning("[reconcile] %s/%s: conflict while syncing %s: %s", namespace, name, config_name, e)
            return ReconcileResult(requeue=True, requeue_after=self.requeue_delay_seconds)

        self.bus.emit(ClaimStatusSynced(
            namespace=namespace,
            name=name,
            config=config_name,
            phase=None if deleting else phase,
            **new_ctx("reconciler"),
        ))
        log.info("[reconcile] %s/%s: reconciled", namespace, name)
        return DONE

    def _release(self, pvc: dict, config_name: str, deadline: Deadline) -> None:
        """Drop our finalizer so the platform can finish deleting the claim."""
        finalizer = render_finalizer(config_name)
        finalizers = pvc["metadata"].get("finalizers") or []
        if finalizer not in finalizers:
            return

        pvc["metadata"]["finalizers"] = [f for f in finalizers if f != finalizer]
        try:
            self.kube.update_pvc(pvc, timeout=deadline.remaining())
        except NotFoundError:
            return
        log.info("[reconcile] %s/%s: finalizer %s removed", pvc["metadata"]["namespace"], pvc["metadata"]["name"], finalizer)
