# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/discoblocks/drivers/base.py

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Any, Dict

log = logging.getLogger("discoblocks")


class Driver(ABC):
    """
    Backend facts for one CSI provisioner.

    Drivers are stateless; the same instance answers for every claim of
    its provisioner.
    """

    #: provisioner name as found in StorageClass.provisioner
    provisioner: str = ""

    @abstractmethod
    def validate_storage_class(self, storage_class: Dict[str, Any]) -> bool:
        ...

    def get_pvc_stub(self, name: str, namespace: str, storage_class_name: str) -> Dict[str, Any]:
        return {
            "apiVersion": "v1",
            "kind": "PersistentVolumeClaim",
            "metadata": {
                "name": name,
                "namespace": namespace,
            },
            "spec": {
                "storageClassName": storage_class_name,
            },
        }

    @abstractmethod
    def get_csi_driver_namespace(self) -> str:
        ...

    @abstractmethod
    def get_csi_driver_pod_labels(self) -> Dict[str, str]:
        ...

    @abstractmethod
    def get_pre_mount_command(self) -> str:
        ...

    def get_pre_resize_command(self) -> str:
        return self.get_pre_mount_command()

    @abstractmethod
    def is_file_system_managed(self) -> bool:
        ...

    def requires_host_pid(self) -> bool:
        return False

    def wait_for_volume_attachment_meta(self) -> str:
        return "devicePath"

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.provisioner})"


def _reject(provisioner: str, reason: str) -> bool:
    log.info("[driver] %s rejected storage class: %s", provisioner, reason)
    return False
