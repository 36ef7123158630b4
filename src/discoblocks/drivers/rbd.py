# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/discoblocks/drivers/rbd.py

from __future__ import annotations

from typing import Any, Dict

from discoblocks.drivers.base import Driver, _reject


class CephRbdDriver(Driver):
    """Ceph RBD CSI driver as installed by the ceph-csi-rbd chart."""

    provisioner = "rbd.csi.ceph.com"

    def validate_storage_class(self, storage_class: Dict[str, Any]) -> bool:
        if storage_class.get("allowVolumeExpansion") is not True:
            return _reject(self.provisioner, "only allowVolumeExpansion true is supported")

        params = storage_class.get("parameters") or {}
        if not params.get("pool"):
            return _reject(self.provisioner, "parameters.pool is required")

        return True

    def get_csi_driver_namespace(self) -> str:
        return "kube-system"

    def get_csi_driver_pod_labels(self) -> Dict[str, str]:
        return {"app": "ceph-csi-rbd", "component": "provisioner"}

    def get_pre_mount_command(self) -> str:
        # krbd maps images to /dev/rbdN, the kubelet staging mount names the PV
        return (
            "DEV=$(chroot /host nsenter --target 1 --mount mount "
            "| grep ${PV_NAME} | grep -o '^/dev/rbd[0-9]*' | head -n 1)"
        )

    def is_file_system_managed(self) -> bool:
        return True

    def requires_host_pid(self) -> bool:
        return True
