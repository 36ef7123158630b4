# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/discoblocks/drivers/ebs.py

from __future__ import annotations

from typing import Any, Dict

from discoblocks.drivers.base import Driver, _reject


class EBSDriver(Driver):
    """AWS EBS CSI driver."""

    provisioner = "ebs.csi.aws.com"

    def validate_storage_class(self, storage_class: Dict[str, Any]) -> bool:
        if storage_class.get("volumeBindingMode") != "WaitForFirstConsumer":
            return _reject(self.provisioner, "only volumeBindingMode WaitForFirstConsumer is supported")

        if storage_class.get("allowVolumeExpansion") is not True:
            return _reject(self.provisioner, "only allowVolumeExpansion true is supported")

        return True

    def get_csi_driver_namespace(self) -> str:
        return "kube-system"

    def get_csi_driver_pod_labels(self) -> Dict[str, str]:
        return {"app": "ebs-csi-controller"}

    def get_pre_mount_command(self) -> str:
        # the attached device shows up in the host mount table under the PV name
        return (
            "DEV=$(chroot /host nsenter --target 1 --mount mount "
            "| grep ${PV_NAME} | awk '{print $1}')"
        )

    def is_file_system_managed(self) -> bool:
        # EBS CSI grows the file system itself on NodeExpandVolume
        return False
