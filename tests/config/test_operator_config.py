from pathlib import Path
import textwrap

import pytest
from pydantic import ValidationError

from discoblocks.config.loader import load_operator_config
from discoblocks.config.models import DiskConfig, OperatorConfig

from conftest import disk_config_obj


def test_defaults_without_file():
    cfg = load_operator_config(environ={})
    assert cfg.metrics_port == 9100
    assert cfg.monitor_interval_seconds == 60
    assert cfg.monitor_timeout_seconds == 59
    assert cfg.growth_step == "1Gi"
    assert cfg.strict is False
    assert cfg.scheduler_name == "discoblocks-scheduler"


def test_yaml_with_env_expansion_and_overrides(tmp_path: Path, monkeypatch):
    monkeypatch.setenv("CERT_DIR", "/certs")
    f = tmp_path / "operator.yaml"
    f.write_text(textwrap.dedent("""
        strict: true
        webhook:
          port: 8443
          cert_file: ${CERT_DIR}/tls.crt
          key_file: ${CERT_DIR}/tls.key
    """))

    cfg = load_operator_config(f, environ={
        "DISCOBLOCKS_GROWTH_STEP": "2Gi",
        "DISCOBLOCKS_WEBHOOK__PORT": "9443",
        "UNRELATED": "x",
    })

    assert cfg.strict is True
    assert cfg.growth_step == "2Gi"
    assert cfg.webhook.port == 9443
    assert cfg.webhook.cert_file == "/certs/tls.crt"


def test_missing_file_raises(tmp_path: Path):
    with pytest.raises(FileNotFoundError):
        load_operator_config(tmp_path / "absent.yaml", environ={})


def test_monitor_timeout_must_fit_interval():
    with pytest.raises(ValidationError):
        OperatorConfig(monitor_interval_seconds=30, monitor_timeout_seconds=30)


def test_disk_config_from_object():
    cfg = DiskConfig.from_object(disk_config_obj("data", accessModes=["ReadWriteOnce"]))
    assert cfg.name == "data"
    assert cfg.spec.storage_class_name == "ebs-sc"
    assert cfg.spec.policy.upscale_trigger_percentage == 80
    assert cfg.mount_point() == "/media/discoblocks/data-0"
    assert cfg.finalizer == "discoblocks.ondat.io/data"
    assert not cfg.deleting

    obj = cfg.to_object()
    assert obj["spec"]["storageClassName"] == "ebs-sc"
    assert obj["metadata"]["resourceVersion"] == "1"


def test_disk_config_validation():
    with pytest.raises(ValidationError):
        DiskConfig.from_object(disk_config_obj("data", mountPointPattern="relative/path"))
    with pytest.raises(ValidationError):
        DiskConfig.from_object(disk_config_obj("data", policy={"upscaleTriggerPercentage": 120}))
