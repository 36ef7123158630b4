# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/discoblocks/mutators/pod.py

"""
Admission-time pod mutation.

For each DiskConfig in the pod's namespace whose selector matches the pod,
a claim is created (or reused) and mounted into every container. Pods that
got at least one volume also receive the node-exporter sidecar and the
discoblocks scheduler.

The result is an RFC 6902 JSON patch against the submitted pod.
"""

from __future__ import annotations

import copy
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from discoblocks import MANAGED_LABEL
from discoblocks.config.models import DiskConfig
from discoblocks.drivers.base import Driver
from discoblocks.drivers.registry import get_driver
from discoblocks.errors import (
    AlreadyExistsError,
    ConfigurationError,
    DiscoblocksError,
    MountPointConflictError,
    NotFoundError,
)
from discoblocks.jobs.renderer import render_metrics_service, render_metrics_sidecar
from discoblocks.observers.dispatcher import EventBus
from discoblocks.observers.events import PodMutated, PodRejected, new_ctx
from discoblocks.utils.deadline import Deadline
from discoblocks.utils.naming import (
    is_contains_all,
    metrics_pod_label,
    render_resource_name,
)

log = logging.getLogger("discoblocks")

METRICS_LABEL_VALUE = "metrics"


@dataclass
class AdmissionResponse:
    allowed: bool
    code: int = 200
    message: str = ""
    patch: Optional[List[Dict[str, Any]]] = None


@dataclass
class _Attachment:
    config: str
    claim: str
    mount_point: str


@dataclass
class _Pass:
    """State of one admission pass."""
    deadline: Deadline
    attachments: List[_Attachment] = field(default_factory=list)
    labels: Dict[str, str] = field(default_factory=dict)


class AdmissionDenied(Exception):
    """Carries the response for a failure inside the admission pass."""

    def __init__(self, response: AdmissionResponse):
        super().__init__(response.message)
        self.response = response


def _json_pointer(token: str) -> str:
    return token.replace("~", "~0").replace("/", "~1")


def build_claim(disk_config: DiskConfig, driver: Driver) -> Dict[str, Any]:
    """Claim for the first volume of ``disk_config`` in its namespace."""
    name = render_resource_name(driver.provisioner, disk_config.name, disk_config.namespace)
    pvc = driver.get_pvc_stub(name, disk_config.namespace, disk_config.spec.storage_class_name)

    meta = pvc.setdefault("metadata", {})
    meta["finalizers"] = [disk_config.finalizer]
    meta["labels"] = {MANAGED_LABEL: disk_config.name}

    spec = pvc.setdefault("spec", {})
    spec["resources"] = {"requests": {"storage": disk_config.spec.capacity}}
    spec["accessModes"] = list(disk_config.spec.access_modes) or ["ReadWriteOnce"]
    return pvc


class PodMutator:
    def __init__(
        self,
        kube,
        *,
        strict: bool = False,
        scheduler_name: str = "discoblocks-scheduler",
        metrics_port: int = 9100,
        timeout_seconds: float = 60.0,
        bus: Optional[EventBus] = None,
    ):
        self.kube = kube
        self.strict = strict
        self.scheduler_name = scheduler_name
        self.metrics_port = metrics_port
        self.timeout_seconds = timeout_seconds
        self.bus = bus or EventBus()

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------
    def handle(self, request: Dict[str, Any]) -> AdmissionResponse:
        """Mutate the pod of one AdmissionRequest."""
        pod = request.get("object")
        if not isinstance(pod, dict):
            return AdmissionResponse(False, 400, "unable to decode request: pod object missing")

        meta = pod.get("metadata") or {}
        namespace = meta.get("namespace") or request.get("namespace") or "default"
        pod_name = meta.get("name") or meta.get("generateName") or request.get("name") or ""

        log.info("[mutator] %s/%s: handling...", namespace, pod_name)
        try:
            response = self._mutate(pod, namespace, pod_name)
        except AdmissionDenied as e:
            response = e.response
        log.info("[mutator] %s/%s: handled allowed=%s code=%d", namespace, pod_name, response.allowed, response.code)
        return response

    # ------------------------------------------------------------------
    def _errored(self, code: int, message: str) -> AdmissionDenied:
        return AdmissionDenied(AdmissionResponse(False, code, message))

    def _error_mode(self, namespace: str, pod_name: str, code: int, reason: str) -> AdmissionDenied:
        """Strict mode denies; otherwise the pod goes through untouched."""
        log.warning("[mutator] %s/%s: %s (strict=%s)", namespace, pod_name, reason, self.strict)
        self.bus.emit(PodRejected(
            namespace=namespace,
            name=pod_name,
            reason=reason,
            denied=self.strict,
            **new_ctx("mutator"),
        ))
        if self.strict:
            return AdmissionDenied(AdmissionResponse(False, code, reason))
        return AdmissionDenied(AdmissionResponse(True, 200, reason))

    def _mutate(self, pod: Dict[str, Any], namespace: str, pod_name: str) -> AdmissionResponse:
        state = _Pass(deadline=Deadline(self.timeout_seconds))

        try:
            configs = self.kube.list_disk_configs(namespace, timeout=state.deadline.remaining())
        except DiscoblocksError as e:
            raise self._errored(500, f"unable to fetch configs: {e}") from e

        pod_labels = (pod.get("metadata") or {}).get("labels") or {}
        for disk_config in configs:
            if disk_config.deleting:
                continue
            if not is_contains_all(pod_labels, disk_config.spec.pod_selector):
                continue
            self._attach(disk_config, namespace, pod_name, state)

        if not state.attachments:
            return AdmissionResponse(True, 200, "No sidecar injection")

        patch = self._patch(pod, state)
        self.bus.emit(PodMutated(
            namespace=namespace,
            name=pod_name,
            claims=tuple(a.claim for a in state.attachments),
            **new_ctx("mutator"),
        ))
        return AdmissionResponse(True, 200, "", patch)

    def _attach(self, disk_config: DiskConfig, namespace: str, pod_name: str, state: _Pass) -> None:
        sc_name = disk_config.spec.storage_class_name
        log.info("[mutator] %s/%s: attach volume of %s (storage class %s)", namespace, pod_name, disk_config.name, sc_name)

        try:
            sc = self.kube.get_storage_class(sc_name, timeout=state.deadline.remaining())
        except NotFoundError:
            raise self._error_mode(namespace, pod_name, 404, f"StorageClass not found: {sc_name}")
        except DiscoblocksError as e:
            raise self._errored(500, f"unable to fetch StorageClass: {e}") from e

        provisioner = sc.get("provisioner", "")
        try:
            driver = get_driver(provisioner)
        except ConfigurationError as e:
            raise self._error_mode(namespace, pod_name, 400, str(e).splitlines()[0]) from e

        if not driver.validate_storage_class(sc):
            raise self._error_mode(
                namespace, pod_name, 400,
                f"StorageClass {sc_name} is not supported by {provisioner}",
            )

        pvc = build_claim(disk_config, driver)
        claim_name = pvc["metadata"]["name"]
        try:
            self.kube.create_pvc(pvc, timeout=state.deadline.remaining())
            log.info("[mutator] %s/%s: PVC %s created", namespace, pod_name, claim_name)
        except AlreadyExistsError:
            log.info("[mutator] %s/%s: PVC %s already exists", namespace, pod_name, claim_name)
        except DiscoblocksError as e:
            raise self._errored(500, f"unable to create PVC: {e}") from e

        self._ensure_metrics_service(disk_config, namespace, state)

        mount_point = disk_config.mount_point(0)
        try:
            _check_mount_point(state.attachments, claim_name, mount_point)
        except MountPointConflictError as e:
            raise self._error_mode(namespace, pod_name, 409, str(e)) from e

        state.attachments.append(_Attachment(disk_config.name, claim_name, mount_point))
        state.labels[metrics_pod_label(disk_config.name)] = METRICS_LABEL_VALUE

    def _ensure_metrics_service(self, disk_config: DiskConfig, namespace: str, state: _Pass) -> None:
        service = render_metrics_service(
            render_resource_name("metrics", disk_config.name, namespace),
            namespace,
            disk_config.name,
            self.metrics_port,
        )
        try:
            self.kube.create_service(service, timeout=state.deadline.remaining())
            log.info("[mutator] metrics service %s/%s created", namespace, service["metadata"]["name"])
        except AlreadyExistsError:
            pass
        except DiscoblocksError as e:
            raise self._errored(500, f"unable to create metrics service: {e}") from e

    # ------------------------------------------------------------------
    # JSON patch
    # ------------------------------------------------------------------
    def _patch(self, pod: Dict[str, Any], state: _Pass) -> List[Dict[str, Any]]:
        ops: List[Dict[str, Any]] = []
        meta = pod.get("metadata") or {}
        spec = pod.get("spec") or {}

        if meta.get("labels"):
            for key, value in state.labels.items():
                ops.append({"op": "add", "path": f"/metadata/labels/{_json_pointer(key)}", "value": value})
        else:
            ops.append({"op": "add", "path": "/metadata/labels", "value": dict(state.labels)})

        volumes = [
            {"name": a.claim, "persistentVolumeClaim": {"claimName": a.claim}}
            for a in state.attachments
        ]
        if spec.get("volumes"):
            ops.extend({"op": "add", "path": "/spec/volumes/-", "value": v} for v in volumes)
        else:
            ops.append({"op": "add", "path": "/spec/volumes", "value": volumes})

        mounts = [{"name": a.claim, "mountPath": a.mount_point} for a in state.attachments]
        for i, container in enumerate(spec.get("containers") or []):
            if container.get("volumeMounts"):
                ops.extend(
                    {"op": "add", "path": f"/spec/containers/{i}/volumeMounts/-", "value": m}
                    for m in mounts
                )
            else:
                ops.append({"op": "add", "path": f"/spec/containers/{i}/volumeMounts", "value": copy.deepcopy(mounts)})

        sidecar = render_metrics_sidecar(self.metrics_port)
        sidecar.setdefault("volumeMounts", []).extend(copy.deepcopy(mounts))
        ops.append({"op": "add", "path": "/spec/containers/-", "value": sidecar})

        ops.append({"op": "add", "path": "/spec/schedulerName", "value": self.scheduler_name})
        return ops


def _check_mount_point(attachments: List[_Attachment], claim_name: str, mount_point: str) -> None:
    for a in attachments:
        if a.mount_point == mount_point:
            raise MountPointConflictError(
                f"mount point {mount_point} of {claim_name} already used by {a.claim}"
            )
