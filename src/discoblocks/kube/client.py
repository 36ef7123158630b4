# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/discoblocks/kube/client.py

"""
Thin facade over the official Kubernetes client.

Every object crosses this boundary as a plain camelCase dict (the API's wire
shape), DiskConfigs as the pydantic model. ApiException is translated into
the discoblocks error taxonomy so callers never import kubernetes.
"""

from __future__ import annotations

import json
import logging
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Optional, Tuple

import urllib3
from kubernetes import client, config, watch
from kubernetes.client import ApiException

from discoblocks import API_GROUP, API_VERSION, DISKCONFIG_PLURAL
from discoblocks.config.models import DiskConfig
from discoblocks.errors import (
    AlreadyExistsError,
    ConflictError,
    NotFoundError,
    TransientIOError,
)

log = logging.getLogger("discoblocks")


def load_kube_config(kube_context: Optional[str] = None, in_cluster: bool = False) -> None:
    if in_cluster:
        config.load_incluster_config()
        return
    try:
        # First, try to use in-cluster config, aka run inside of Kubernetes
        config.load_incluster_config()
    except config.ConfigException:
        config.load_kube_config(context=kube_context)


def _reason(e: ApiException) -> str:
    try:
        return json.loads(e.body or "{}").get("reason", "")
    except (ValueError, AttributeError):
        return ""


@contextmanager
def _translate(what: str):
    try:
        yield
    except ApiException as e:
        if e.status == 404:
            raise NotFoundError(f"{what} not found") from e
        if e.status == 409:
            if _reason(e) == "AlreadyExists":
                raise AlreadyExistsError(f"{what} already exists") from e
            raise ConflictError(f"{what} was modified concurrently") from e
        raise TransientIOError(f"{what}: API error {e.status} {e.reason}") from e
    except urllib3.exceptions.HTTPError as e:
        raise TransientIOError(f"{what}: {e}") from e


class KubeClient:
    def __init__(self, api_client: Optional[client.ApiClient] = None):
        self.api_client = api_client or client.ApiClient()
        self.core = client.CoreV1Api(self.api_client)
        self.storage = client.StorageV1Api(self.api_client)
        self.batch = client.BatchV1Api(self.api_client)
        self.custom = client.CustomObjectsApi(self.api_client)

    def _dict(self, obj) -> Dict[str, Any]:
        return self.api_client.sanitize_for_serialization(obj)

    # ------------------------------------------------------------------
    # Core objects
    # ------------------------------------------------------------------
    def list_endpoints(self, label_selector: str, *, timeout: float) -> List[Dict[str, Any]]:
        with _translate(f"endpoints {label_selector}"):
            resp = self.core.list_endpoints_for_all_namespaces(
                label_selector=label_selector, _request_timeout=timeout
            )
        return self._dict(resp).get("items") or []

    def get_pod(self, namespace: str, name: str, *, timeout: float) -> Dict[str, Any]:
        with _translate(f"pod {namespace}/{name}"):
            return self._dict(self.core.read_namespaced_pod(name, namespace, _request_timeout=timeout))

    def get_pvc(self, namespace: str, name: str, *, timeout: float) -> Dict[str, Any]:
        with _translate(f"PVC {namespace}/{name}"):
            return self._dict(
                self.core.read_namespaced_persistent_volume_claim(name, namespace, _request_timeout=timeout)
            )

    def create_pvc(self, pvc: Dict[str, Any], *, timeout: float) -> Dict[str, Any]:
        meta = pvc["metadata"]
        with _translate(f"PVC {meta['namespace']}/{meta['name']}"):
            return self._dict(
                self.core.create_namespaced_persistent_volume_claim(
                    meta["namespace"], pvc, _request_timeout=timeout
                )
            )

    def update_pvc(self, pvc: Dict[str, Any], *, timeout: float) -> Dict[str, Any]:
        """Replace carrying the observed resourceVersion, conflicts raise."""
        meta = pvc["metadata"]
        with _translate(f"PVC {meta['namespace']}/{meta['name']}"):
            return self._dict(
                self.core.replace_namespaced_persistent_volume_claim(
                    meta["name"], meta["namespace"], pvc, _request_timeout=timeout
                )
            )

    def get_pv(self, name: str, *, timeout: float) -> Dict[str, Any]:
        with _translate(f"PV {name}"):
            return self._dict(self.core.read_persistent_volume(name, _request_timeout=timeout))

    def create_service(self, service: Dict[str, Any], *, timeout: float) -> Dict[str, Any]:
        meta = service["metadata"]
        with _translate(f"service {meta['namespace']}/{meta['name']}"):
            return self._dict(
                self.core.create_namespaced_service(meta["namespace"], service, _request_timeout=timeout)
            )

    def get_storage_class(self, name: str, *, timeout: float) -> Dict[str, Any]:
        with _translate(f"StorageClass {name}"):
            return self._dict(self.storage.read_storage_class(name, _request_timeout=timeout))

    def create_job(self, job: Dict[str, Any], *, timeout: float) -> Dict[str, Any]:
        meta = job["metadata"]
        with _translate(f"job {meta['namespace']}/{meta['name']}"):
            return self._dict(
                self.batch.create_namespaced_job(meta["namespace"], job, _request_timeout=timeout)
            )

    # ------------------------------------------------------------------
    # DiskConfig
    # ------------------------------------------------------------------
    def get_disk_config(self, namespace: str, name: str, *, timeout: float) -> DiskConfig:
        with _translate(f"DiskConfig {namespace}/{name}"):
            obj = self.custom.get_namespaced_custom_object(
                API_GROUP, API_VERSION, namespace, DISKCONFIG_PLURAL, name,
                _request_timeout=timeout,
            )
        return DiskConfig.from_object(obj)

    def list_disk_configs(self, namespace: str, *, timeout: float) -> List[DiskConfig]:
        with _translate(f"DiskConfigs in {namespace}"):
            resp = self.custom.list_namespaced_custom_object(
                API_GROUP, API_VERSION, namespace, DISKCONFIG_PLURAL,
                _request_timeout=timeout,
            )
        return [DiskConfig.from_object(item) for item in resp.get("items") or []]

    def update_disk_config_status(self, disk_config: DiskConfig, *, timeout: float) -> DiskConfig:
        """Status subresource write; a stale resourceVersion raises ConflictError."""
        with _translate(f"DiskConfig {disk_config.namespace}/{disk_config.name} status"):
            obj = self.custom.replace_namespaced_custom_object_status(
                API_GROUP, API_VERSION, disk_config.namespace, DISKCONFIG_PLURAL,
                disk_config.name, disk_config.to_object(),
                _request_timeout=timeout,
            )
        return DiskConfig.from_object(obj)

    # ------------------------------------------------------------------
    # Watch
    # ------------------------------------------------------------------
    def watch_pvcs(self, *, timeout_seconds: int = 300) -> Iterator[Tuple[str, Dict[str, Any]]]:
        """Yield (event type, PVC dict) for claims in every namespace."""
        w = watch.Watch()
        try:
            for event in w.stream(
                self.core.list_persistent_volume_claim_for_all_namespaces,
                timeout_seconds=timeout_seconds,
            ):
                yield event["type"], self._dict(event["object"])
        except (ApiException, urllib3.exceptions.HTTPError) as e:
            raise TransientIOError(f"PVC watch failed: {e}") from e
        finally:
            w.stop()
