import copy

import pytest

from discoblocks.config.models import DiskConfig
from discoblocks.errors import AlreadyExistsError, ConflictError, NotFoundError


class Capture:
    def __init__(self): self.events = []
    def notify(self, ev): self.events.append(ev)

    def of(self, cls):
        return [e for e in self.events if isinstance(e, cls)]


class FakeKube:
    """In-memory stand-in for KubeClient, keyed like the API server."""

    def __init__(self):
        self.pods = {}
        self.pvcs = {}
        self.pvs = {}
        self.storage_classes = {}
        self.disk_configs = {}
        self.endpoints = []
        self.services = {}
        self.jobs = []
        self.updated_pvcs = []
        self.status_updates = []
        self.fail = {}          # method name -> exception to raise
        self.watch_events = []

    def _maybe_fail(self, method):
        exc = self.fail.get(method)
        if exc is not None:
            raise exc

    # core
    def list_endpoints(self, label_selector, *, timeout):
        self._maybe_fail("list_endpoints")
        return copy.deepcopy(self.endpoints)

    def get_pod(self, namespace, name, *, timeout):
        self._maybe_fail("get_pod")
        try:
            return copy.deepcopy(self.pods[(namespace, name)])
        except KeyError:
            raise NotFoundError(f"pod {namespace}/{name} not found") from None

    def get_pvc(self, namespace, name, *, timeout):
        self._maybe_fail("get_pvc")
        try:
            return copy.deepcopy(self.pvcs[(namespace, name)])
        except KeyError:
            raise NotFoundError(f"PVC {namespace}/{name} not found") from None

    def create_pvc(self, pvc, *, timeout):
        self._maybe_fail("create_pvc")
        key = (pvc["metadata"]["namespace"], pvc["metadata"]["name"])
        if key in self.pvcs:
            raise AlreadyExistsError(f"PVC {key} already exists")
        self.pvcs[key] = copy.deepcopy(pvc)
        return copy.deepcopy(pvc)

    def update_pvc(self, pvc, *, timeout):
        self._maybe_fail("update_pvc")
        key = (pvc["metadata"]["namespace"], pvc["metadata"]["name"])
        if key not in self.pvcs:
            raise NotFoundError(f"PVC {key} not found")
        self.pvcs[key] = copy.deepcopy(pvc)
        self.updated_pvcs.append(copy.deepcopy(pvc))
        return copy.deepcopy(pvc)

    def get_pv(self, name, *, timeout):
        try:
            return copy.deepcopy(self.pvs[name])
        except KeyError:
            raise NotFoundError(f"PV {name} not found") from None

    def create_service(self, service, *, timeout):
        key = (service["metadata"]["namespace"], service["metadata"]["name"])
        if key in self.services:
            raise AlreadyExistsError(f"service {key} already exists")
        self.services[key] = copy.deepcopy(service)
        return service

    def get_storage_class(self, name, *, timeout):
        self._maybe_fail("get_storage_class")
        try:
            return copy.deepcopy(self.storage_classes[name])
        except KeyError:
            raise NotFoundError(f"StorageClass {name} not found") from None

    def create_job(self, job, *, timeout):
        self.jobs.append(copy.deepcopy(job))
        return job

    # DiskConfig
    def get_disk_config(self, namespace, name, *, timeout):
        self._maybe_fail("get_disk_config")
        try:
            return DiskConfig.from_object(copy.deepcopy(self.disk_configs[(namespace, name)]))
        except KeyError:
            raise NotFoundError(f"DiskConfig {namespace}/{name} not found") from None

    def list_disk_configs(self, namespace, *, timeout):
        self._maybe_fail("list_disk_configs")
        return [
            DiskConfig.from_object(copy.deepcopy(obj))
            for (ns, _), obj in sorted(self.disk_configs.items())
            if ns == namespace
        ]

    def update_disk_config_status(self, disk_config, *, timeout):
        self._maybe_fail("update_disk_config_status")
        obj = disk_config.to_object()
        self.disk_configs[(disk_config.namespace, disk_config.name)] = obj
        self.status_updates.append(obj)
        return disk_config

    def watch_pvcs(self, *, timeout_seconds=300):
        yield from self.watch_events


def disk_config_obj(name="data", namespace="default", **spec):
    body = {
        "storageClassName": "ebs-sc",
        "capacity": "1Gi",
        "podSelector": {"app": "web"},
        "policy": {
            "upscaleTriggerPercentage": 80,
            "maximumCapacityOfDisk": "1000Gi",
        },
    }
    body.update(spec)
    return {
        "apiVersion": "discoblocks.ondat.io/v1",
        "kind": "DiskConfig",
        "metadata": {"name": name, "namespace": namespace, "resourceVersion": "1"},
        "spec": body,
    }


def pvc_obj(name, namespace="default", *, config=None, finalizer=True, capacity="5Gi",
            phase="Bound", deleting=False, storage_class="ebs-sc", volume_name=None):
    meta = {"name": name, "namespace": namespace, "uid": f"uid-{name}", "resourceVersion": "7"}
    if config:
        meta["labels"] = {"discoblocks": config}
        if finalizer:
            meta["finalizers"] = [f"discoblocks.ondat.io/{config}"]
    if deleting:
        meta["deletionTimestamp"] = "2026-01-01T00:00:00Z"
    spec = {"storageClassName": storage_class, "resources": {"requests": {"storage": capacity}}}
    if volume_name:
        spec["volumeName"] = volume_name
    return {
        "apiVersion": "v1",
        "kind": "PersistentVolumeClaim",
        "metadata": meta,
        "spec": spec,
        "status": {"phase": phase, "capacity": {"storage": capacity}},
    }


EBS_SC = {
    "metadata": {"name": "ebs-sc"},
    "provisioner": "ebs.csi.aws.com",
    "volumeBindingMode": "WaitForFirstConsumer",
    "allowVolumeExpansion": True,
}

RBD_SC = {
    "metadata": {"name": "rbd-sc"},
    "provisioner": "rbd.csi.ceph.com",
    "allowVolumeExpansion": True,
    "parameters": {"pool": "kubernetes"},
}


@pytest.fixture
def kube():
    fk = FakeKube()
    fk.storage_classes["ebs-sc"] = copy.deepcopy(EBS_SC)
    fk.storage_classes["rbd-sc"] = copy.deepcopy(RBD_SC)
    return fk


@pytest.fixture
def capture():
    return Capture()
