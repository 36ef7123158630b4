# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/discoblocks/config/models.py

from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from discoblocks import API_GROUP, API_VERSION
from discoblocks.utils.naming import render_finalizer, render_mount_point


class _KubeModel(BaseModel):
    # Kubernetes objects are camelCase on the wire
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )


# ---------------------------------------------------------------------
# DiskConfig custom resource
# ---------------------------------------------------------------------
class ObjectMeta(_KubeModel):
    name: str
    namespace: str = "default"
    uid: Optional[str] = None
    resource_version: Optional[str] = None
    deletion_timestamp: Optional[str] = None
    labels: Dict[str, str] = Field(default_factory=dict)


class Policy(_KubeModel):
    pause: bool = False
    maximum_capacity_of_disk: str = "1000Gi"
    upscale_trigger_percentage: int = Field(default=80, ge=0, le=100)


class DiskConfigSpec(_KubeModel):
    storage_class_name: str
    capacity: str = "1Gi"
    mount_point_pattern: Optional[str] = None
    access_modes: List[str] = Field(default_factory=list)
    pod_selector: Dict[str, str] = Field(default_factory=dict)
    policy: Policy = Field(default_factory=Policy)

    @field_validator("mount_point_pattern")
    @classmethod
    def _absolute(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and not v.startswith("/"):
            raise ValueError(f"mountPointPattern must be an absolute path: {v}")
        return v


class DiskConfigStatus(_KubeModel):
    persistent_volume_claims: Dict[str, str] = Field(default_factory=dict)


class DiskConfig(_KubeModel):
    api_version: str = f"{API_GROUP}/{API_VERSION}"
    kind: str = "DiskConfig"
    metadata: ObjectMeta
    spec: DiskConfigSpec
    status: DiskConfigStatus = Field(default_factory=DiskConfigStatus)

    @model_validator(mode="after")
    def _default_mount_point(self) -> "DiskConfig":
        if not self.spec.mount_point_pattern:
            self.spec.mount_point_pattern = f"/media/discoblocks/{self.metadata.name}-%d"
        return self

    @property
    def name(self) -> str:
        return self.metadata.name

    @property
    def namespace(self) -> str:
        return self.metadata.namespace

    @property
    def deleting(self) -> bool:
        return self.metadata.deletion_timestamp is not None

    @property
    def finalizer(self) -> str:
        return render_finalizer(self.metadata.name)

    def mount_point(self, index: int = 0) -> str:
        return render_mount_point(self.spec.mount_point_pattern, index)

    @classmethod
    def from_object(cls, obj: Dict[str, Any]) -> "DiskConfig":
        return cls.model_validate(obj)

    def to_object(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


# ---------------------------------------------------------------------
# Operator settings
# ---------------------------------------------------------------------
class WebhookConfig(BaseModel):
    host: str = "0.0.0.0"
    port: int = 9443
    cert_file: Optional[str] = None
    key_file: Optional[str] = None


class OperatorConfig(BaseModel):
    kube_context: Optional[str] = None
    in_cluster: bool = False

    metrics_port: int = 9100
    metrics_metric: str = "node_filesystem_avail_bytes"
    scrape_timeout_seconds: float = 10.0

    monitor_interval_seconds: float = 60.0
    monitor_timeout_seconds: float = 59.0
    reconcile_timeout_seconds: float = 60.0
    admission_timeout_seconds: float = 60.0
    requeue_delay_seconds: float = 5.0

    growth_step: str = "1Gi"
    strict: bool = False
    scheduler_name: str = "discoblocks-scheduler"

    webhook: WebhookConfig = Field(default_factory=WebhookConfig)

    log_dir: Optional[str] = None
    verbose: bool = False
    events_file: Optional[str] = None

    @model_validator(mode="after")
    def _timeout_below_interval(self) -> "OperatorConfig":
        # a stuck cycle must not overlap the next tick
        if self.monitor_timeout_seconds >= self.monitor_interval_seconds:
            raise ValueError(
                "monitor_timeout_seconds must be shorter than monitor_interval_seconds"
            )
        return self
