# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/discoblocks/jobs/renderer.py

from __future__ import annotations

import logging
import time
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

import yaml
from jinja2 import Environment, FileSystemLoader, StrictUndefined, TemplateNotFound

from discoblocks.errors import JobTemplateError
from discoblocks.jobs.commands import FileSystem, MountStrategy, mount_pipeline, resize_pipeline
from discoblocks.utils.naming import metrics_pod_label, render_resource_name

log = logging.getLogger("discoblocks")

TEMPLATES_DIR = Path(__file__).resolve().parent / "templates"

METRICS_PORT = 9100


_env = Environment(
    loader=FileSystemLoader(str(TEMPLATES_DIR)),
    undefined=StrictUndefined,
    autoescape=False,
    keep_trailing_newline=True,
    trim_blocks=True,
    lstrip_blocks=True,
)


def _render(template_name: str, context: Dict[str, Any]) -> Dict[str, Any]:
    try:
        tmpl = _env.get_template(template_name)
    except TemplateNotFound as e:
        raise JobTemplateError(f"Missing template: {template_name}") from e

    text = tmpl.render(**context)
    try:
        return yaml.safe_load(text)
    except yaml.YAMLError as e:
        log.debug("[jobs] invalid rendered manifest:\n%s", text)
        raise JobTemplateError(f"unable to parse rendered {template_name}: {e}") from e


def job_name_for(pvc_name: str, namespace: str) -> str:
    # nanosecond timestamp keeps rapid successive triggers apart
    return render_resource_name(str(time.time_ns()), pvc_name, namespace)


def owner_reference(pvc: Dict[str, Any]) -> Dict[str, Any]:
    """Owner reference making a job garbage collected with its claim."""
    meta = pvc.get("metadata") or {}
    return {
        "apiVersion": "v1",
        "kind": "PersistentVolumeClaim",
        "name": meta.get("name", ""),
        "uid": meta.get("uid", ""),
        "blockOwnerDeletion": True,
        "controller": False,
    }


def container_ids(pod: Dict[str, Any]) -> List[str]:
    """Runtime container IDs of a pod without the ``containerd://`` prefix."""
    ids = []
    for status in (pod.get("status") or {}).get("containerStatuses") or []:
        cid = status.get("containerID")
        if cid:
            ids.append(cid.split("://", 1)[-1])
    return ids


def _owned(job: Dict[str, Any], owner: Dict[str, Any]) -> Dict[str, Any]:
    job["metadata"]["ownerReferences"] = [owner]
    return job


# ---------------------------------------------------------------------
# Host jobs
# ---------------------------------------------------------------------
def render_attach_job(
    pvc_name: str,
    namespace: str,
    node_name: str,
    owner: Dict[str, Any],
) -> Dict[str, Any]:
    job = _render(
        "attach_job.yaml.j2",
        {
            "job_name": job_name_for(pvc_name, namespace),
            "namespace": namespace,
            "node_name": node_name,
            "pvc_name": pvc_name,
        },
    )
    return _owned(job, owner)


def _host_job(
    *,
    kind: str,
    pvc_name: str,
    pv_name: str,
    namespace: str,
    node_name: str,
    fs: str,
    mount_point: str,
    ids: Iterable[str],
    volume_meta: str,
    script: str,
    owner: Dict[str, Any],
) -> Dict[str, Any]:
    if FileSystem.parse(fs) is None:
        log.warning("[jobs] %s/%s: unsupported file-system %r, growth will be skipped", namespace, pvc_name, fs)

    env = {
        "MOUNT_POINT": mount_point,
        "CONTAINER_IDS": " ".join(ids),
        "PVC_NAME": pvc_name,
        "PV_NAME": pv_name,
        "FS": fs,
        "VOLUME_ATTACHMENT_META": volume_meta,
        "NODE_NAME": node_name,
    }
    job = _render(
        "host_job.yaml.j2",
        {
            "job_name": job_name_for(pvc_name, namespace),
            "namespace": namespace,
            "node_name": node_name,
            "kind": kind,
            "env": env,
            "script": script,
        },
    )
    return _owned(job, owner)


def render_mount_job(
    pvc_name: str,
    pv_name: str,
    namespace: str,
    node_name: str,
    fs: str,
    mount_point: str,
    container_ids: Iterable[str],
    pre_mount_command: str,
    host_pid: bool,
    volume_meta: str,
    owner: Dict[str, Any],
) -> Dict[str, Any]:
    strategy = MountStrategy.for_host_pid(host_pid)
    script = mount_pipeline(pre_mount_command, strategy).render()
    log.debug("[jobs] mount job for %s/%s uses %s strategy", namespace, pvc_name, strategy.value)

    return _host_job(
        kind="mount",
        pvc_name=pvc_name,
        pv_name=pv_name,
        namespace=namespace,
        node_name=node_name,
        fs=fs,
        mount_point=mount_point,
        ids=container_ids,
        volume_meta=volume_meta,
        script=script,
        owner=owner,
    )


def render_resize_job(
    pvc_name: str,
    pv_name: str,
    namespace: str,
    node_name: str,
    fs: str,
    pre_resize_command: str,
    volume_meta: str,
    owner: Dict[str, Any],
) -> Dict[str, Any]:
    script = resize_pipeline(pre_resize_command).render()

    return _host_job(
        kind="resize",
        pvc_name=pvc_name,
        pv_name=pv_name,
        namespace=namespace,
        node_name=node_name,
        fs=fs,
        mount_point="",
        ids=(),
        volume_meta=volume_meta,
        script=script,
        owner=owner,
    )


# ---------------------------------------------------------------------
# Metrics exporter
# ---------------------------------------------------------------------
def render_metrics_sidecar(port: int = METRICS_PORT, privileged: bool = False) -> Dict[str, Any]:
    """
    node-exporter container reporting file-system usage.

    The privileged variant also sees kubelet volume mounts through a read-only
    ``varlibkubelet`` mount; the pod must provide that hostPath volume.
    """
    return _render("metrics_sidecar.yaml.j2", {"port": port, "privileged": privileged})


def render_metrics_service(
    name: str,
    namespace: str,
    config_name: str,
    port: int = METRICS_PORT,
    selector_key: Optional[str] = None,
) -> Dict[str, Any]:
    return _render(
        "metrics_service.yaml.j2",
        {
            "name": name,
            "namespace": namespace,
            "config_name": config_name,
            "port": port,
            "selector_key": selector_key or metrics_pod_label(config_name),
        },
    )
