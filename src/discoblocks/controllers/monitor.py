# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/discoblocks/controllers/monitor.py

"""
Volume monitor.

Every tick the monitor scrapes the exporter sidecar of each pod behind a
discoblocks metrics service, matches the free-space samples to the claims
mounted at the config's mount point, and grows claims that run low.

Nothing here is retried within a cycle: per item failures are logged and
skipped, the next tick retries naturally.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from discoblocks import MANAGED_LABEL
from discoblocks.config.models import DiskConfig
from discoblocks.coordination import OperationGate
from discoblocks.drivers.base import Driver
from discoblocks.drivers.registry import get_driver
from discoblocks.errors import (
    BusyError,
    DeadlineExceeded,
    DiscoblocksError,
    NotFoundError,
    TransientIOError,
)
from discoblocks.jobs.renderer import owner_reference, render_resize_job
from discoblocks.metrics.parser import parse_metric_family
from discoblocks.metrics.scraper import MetricsScraper
from discoblocks.observers.dispatcher import EventBus
from discoblocks.observers.events import (
    CapacityCeilingReached,
    ClaimResized,
    HostJobCreated,
    MonitorCycleCompleted,
    new_ctx,
)
from discoblocks.utils.deadline import Deadline
from discoblocks.utils.quantity import GI, format_bytes, to_bytes

log = logging.getLogger("discoblocks")

PodKey = Tuple[str, str]


# ---------------------------------------------------------------------
# Growth policy
# ---------------------------------------------------------------------
class GrowthAction(str, Enum):
    NONE = "none"
    RESIZE = "resize"
    CEILING = "ceiling"


@dataclass(frozen=True)
class GrowthDecision:
    action: GrowthAction
    threshold: float
    new_capacity: Optional[int] = None


def decide_growth(
    actual: int,
    available: float,
    percentage: int,
    maximum: int,
    step: int = GI,
) -> GrowthDecision:
    """
    threshold = actual * percentage / 100

    Enough headroom while ``available >= actual - threshold``. A claim at (or
    above) the maximum is never grown; otherwise it grows by one step,
    capped at the maximum.
    """
    threshold = actual * percentage / 100

    if available >= actual - threshold:
        return GrowthDecision(GrowthAction.NONE, threshold)

    if actual >= maximum:
        return GrowthDecision(GrowthAction.CEILING, threshold)

    return GrowthDecision(GrowthAction.RESIZE, threshold, min(actual + step, maximum))


@dataclass
class MonitorReport:
    scraped: int = 0
    resized: int = 0
    ceiling: int = 0
    skipped: int = 0
    aborted: bool = False


# ---------------------------------------------------------------------
# Monitor
# ---------------------------------------------------------------------
class VolumeMonitor:
    def __init__(
        self,
        kube,
        gate: OperationGate,
        scraper: Optional[MetricsScraper] = None,
        *,
        bus: Optional[EventBus] = None,
        timeout_seconds: float = 59.0,
        scrape_timeout_seconds: float = 10.0,
        growth_step: str = "1Gi",
    ):
        self.kube = kube
        self.gate = gate
        self.scraper = scraper or MetricsScraper()
        self.bus = bus or EventBus()
        self.timeout_seconds = timeout_seconds
        self.scrape_timeout_seconds = scrape_timeout_seconds
        self.growth_step = to_bytes(growth_step)

    def run_cycle(self) -> Optional[MonitorReport]:
        """One monitor tick. Returns None when the gate was busy."""
        try:
            with self.gate.hold("monitor"):
                return self._run_cycle()
        except BusyError:
            log.info("[monitor] another operation is in flight, skipping cycle")
            return None

    # ------------------------------------------------------------------
    def _run_cycle(self) -> MonitorReport:
        log.info("[monitor] Monitoring volumes...")
        run_id = str(uuid.uuid4())
        deadline = Deadline(self.timeout_seconds)
        report = MonitorReport()

        try:
            self._cycle(deadline, report, run_id)
        except DeadlineExceeded as e:
            report.aborted = True
            log.warning("[monitor] cycle aborted: %s", e)

        self.bus.emit(MonitorCycleCompleted(
            scraped=report.scraped,
            resized=report.resized,
            ceiling=report.ceiling,
            skipped=report.skipped,
            **new_ctx("monitor", run_id),
        ))
        log.info("[monitor] Monitor done: %s", report)
        return report

    def _cycle(self, deadline: Deadline, report: MonitorReport, run_id: str) -> None:
        try:
            endpoints = self.kube.list_endpoints(MANAGED_LABEL, timeout=deadline.remaining())
        except DeadlineExceeded:
            raise
        except DiscoblocksError as e:
            log.error("[monitor] unable to fetch endpoints: %s", e)
            return

        pod_configs, metrics = self._collect(endpoints, deadline, report)
        if not metrics:
            log.info("[monitor] metrics data not found")
            return

        configs: Dict[PodKey, DiskConfig] = {}
        drivers: Dict[str, Driver] = {}

        for pod_key, config_names in pod_configs.items():
            if pod_key not in metrics:
                continue
            namespace, pod_name = pod_key

            try:
                pod = self.kube.get_pod(namespace, pod_name, timeout=deadline.remaining())
            except DeadlineExceeded:
                raise
            except DiscoblocksError as e:
                log.error("[monitor] %s/%s: failed to fetch pod: %s", namespace, pod_name, e)
                continue

            for config_name in config_names:
                config_key = (namespace, config_name)
                disk_config = configs.get(config_key)
                if disk_config is None:
                    try:
                        disk_config = self.kube.get_disk_config(namespace, config_name, timeout=deadline.remaining())
                    except DeadlineExceeded:
                        raise
                    except DiscoblocksError as e:
                        log.error("[monitor] %s/%s: failed to fetch DiskConfig: %s", namespace, config_name, e)
                        continue
                    configs[config_key] = disk_config

                if disk_config.spec.policy.pause:
                    log.info("[monitor] %s/%s: autoscaling paused", namespace, config_name)
                    continue

                for line in metrics[pod_key]:
                    try:
                        self._process_sample(pod, disk_config, line, deadline, report, drivers, run_id)
                    except DeadlineExceeded:
                        raise
                    except DiscoblocksError as e:
                        report.skipped += 1
                        log.error("[monitor] %s/%s: %s", namespace, pod_name, e)

    def _collect(
        self,
        endpoints: List[Dict[str, Any]],
        deadline: Deadline,
        report: MonitorReport,
    ) -> Tuple[Dict[PodKey, List[str]], Dict[PodKey, List[str]]]:
        """Scrape every pod behind the endpoints once, group lines by pod."""
        pod_configs: Dict[PodKey, List[str]] = {}
        metrics: Dict[PodKey, List[str]] = {}
        scraped: set = set()

        for ep in endpoints:
            meta = ep.get("metadata") or {}
            config_name = (meta.get("labels") or {}).get(MANAGED_LABEL)
            if not config_name:
                continue

            for subset in ep.get("subsets") or []:
                for address in subset.get("addresses") or []:
                    target = address.get("targetRef") or {}
                    if target.get("kind", "Pod") != "Pod" or not target.get("name"):
                        continue
                    pod_key = (target.get("namespace") or meta.get("namespace"), target["name"])

                    names = pod_configs.setdefault(pod_key, [])
                    if config_name not in names:
                        names.append(config_name)

                    if pod_key in scraped:
                        continue
                    scraped.add(pod_key)

                    ip = address.get("ip")
                    try:
                        lines = self.scraper.scrape(
                            ip, timeout=deadline.timeout(cap=self.scrape_timeout_seconds)
                        )
                    except DeadlineExceeded:
                        raise
                    except TransientIOError as e:
                        log.error("[monitor] pod=%s/%s ep=%s ip=%s: %s", pod_key[0], pod_key[1], meta.get("name"), ip, e)
                        continue

                    report.scraped += 1
                    if lines:
                        metrics.setdefault(pod_key, []).extend(lines)

        return pod_configs, metrics

    def _process_sample(
        self,
        pod: Dict[str, Any],
        disk_config: DiskConfig,
        line: str,
        deadline: Deadline,
        report: MonitorReport,
        drivers: Dict[str, Driver],
        run_id: str,
    ) -> None:
        family = parse_metric_family(line)
        if family.name != self.scraper.metric:
            raise DiscoblocksError(f"unexpected metric {family.name}")

        mountpoint = family.label("mountpoint")
        if not mountpoint:
            raise DiscoblocksError(f"mountpoint label not found: {line}")

        # single volume per config
        if mountpoint != disk_config.mount_point(0):
            return

        namespace = pod["metadata"]["namespace"]
        claim_name = _claim_mounted_at(pod, mountpoint)
        if not claim_name:
            raise NotFoundError(f"no volume mounted at {mountpoint}")

        pvc = self.kube.get_pvc(namespace, claim_name, timeout=deadline.remaining())

        if disk_config.finalizer not in (pvc["metadata"].get("finalizers") or []):
            log.info(
                "[monitor] %s/%s: PVC not managed by %s",
                namespace, claim_name, disk_config.name,
            )
            return

        capacity = ((pvc.get("status") or {}).get("capacity") or {}).get("storage")
        if not capacity:
            log.info("[monitor] %s/%s: PVC has no capacity yet", namespace, claim_name)
            return

        available = family.samples[0].value
        actual = to_bytes(capacity)
        maximum = to_bytes(disk_config.spec.policy.maximum_capacity_of_disk)
        decision = decide_growth(
            actual,
            available,
            disk_config.spec.policy.upscale_trigger_percentage,
            maximum,
            self.growth_step,
        )

        log.info(
            "[monitor] %s/%s: available=%d threshold=%d actual=%d max=%d",
            namespace, claim_name, available, decision.threshold, actual, maximum,
        )

        if decision.action is GrowthAction.NONE:
            log.info("[monitor] %s/%s: disk size ok", namespace, claim_name)
            return

        if decision.action is GrowthAction.CEILING:
            report.ceiling += 1
            log.warning(
                "[monitor] %s/%s: maximum capacity %s reached, new disk needed",
                namespace, claim_name, disk_config.spec.policy.maximum_capacity_of_disk,
            )
            self.bus.emit(CapacityCeilingReached(
                namespace=namespace,
                name=claim_name,
                capacity=capacity,
                available=int(available),
                **new_ctx("monitor", run_id),
            ))
            return

        new_capacity = format_bytes(decision.new_capacity)
        log.info("[monitor] %s/%s: resize needed %s -> %s", namespace, claim_name, capacity, new_capacity)

        pvc["spec"].setdefault("resources", {}).setdefault("requests", {})["storage"] = new_capacity
        pvc = self.kube.update_pvc(pvc, timeout=deadline.remaining())

        report.resized += 1
        self.bus.emit(ClaimResized(
            namespace=namespace,
            name=claim_name,
            old_capacity=capacity,
            new_capacity=new_capacity,
            **new_ctx("monitor", run_id),
        ))

        self._grow_file_system(pod, pvc, deadline, drivers, run_id)

    def _driver(self, storage_class_name: str, deadline: Deadline, drivers: Dict[str, Driver]) -> Driver:
        if storage_class_name not in drivers:
            sc = self.kube.get_storage_class(storage_class_name, timeout=deadline.remaining())
            drivers[storage_class_name] = get_driver(sc.get("provisioner", ""))
        return drivers[storage_class_name]

    def _grow_file_system(
        self,
        pod: Dict[str, Any],
        pvc: Dict[str, Any],
        deadline: Deadline,
        drivers: Dict[str, Driver],
        run_id: str,
    ) -> None:
        """Backends that leave the file system to us get a resize host job."""
        spec = pvc.get("spec") or {}
        storage_class_name = spec.get("storageClassName")
        pv_name = spec.get("volumeName")
        node_name = (pod.get("spec") or {}).get("nodeName")
        if not storage_class_name or not pv_name or not node_name:
            return

        driver = self._driver(storage_class_name, deadline, drivers)
        if not driver.is_file_system_managed():
            return

        pv = self.kube.get_pv(pv_name, timeout=deadline.remaining())
        fs = ((pv.get("spec") or {}).get("csi") or {}).get("fsType") or "ext4"

        meta = pvc["metadata"]
        job = render_resize_job(
            meta["name"],
            pv_name,
            meta["namespace"],
            node_name,
            fs,
            driver.get_pre_resize_command(),
            driver.wait_for_volume_attachment_meta(),
            owner_reference(pvc),
        )
        self.kube.create_job(job, timeout=deadline.remaining())

        log.info("[monitor] %s/%s: resize job %s created on %s", meta["namespace"], meta["name"], job["metadata"]["name"], node_name)
        self.bus.emit(HostJobCreated(
            namespace=meta["namespace"],
            name=job["metadata"]["name"],
            claim=meta["name"],
            kind="resize",
            **new_ctx("monitor", run_id),
        ))


def _claim_mounted_at(pod: Dict[str, Any], mount_path: str) -> Optional[str]:
    """Claim behind the first container's volume mount at ``mount_path``."""
    containers = (pod.get("spec") or {}).get("containers") or []
    if not containers:
        return None

    for vm in containers[0].get("volumeMounts") or []:
        if vm.get("mountPath") == mount_path:
            name = vm.get("name")
            # volume name equals claim name for discoblocks volumes, resolve anyway
            for volume in (pod.get("spec") or {}).get("volumes") or []:
                if volume.get("name") == name and volume.get("persistentVolumeClaim"):
                    return volume["persistentVolumeClaim"].get("claimName", name)
            return name
    return None
