import pytest

from discoblocks.controllers.monitor import GrowthAction, VolumeMonitor, decide_growth
from discoblocks.coordination import OperationGate
from discoblocks.errors import TransientIOError
from discoblocks.observers.dispatcher import EventBus
from discoblocks.observers.events import (
    CapacityCeilingReached,
    ClaimResized,
    HostJobCreated,
    MonitorCycleCompleted,
)
from discoblocks.utils.quantity import GI

from conftest import disk_config_obj, pvc_obj

MOUNT = "/media/discoblocks/data-0"


class FakeScraper:
    metric = "node_filesystem_avail_bytes"

    def __init__(self, by_ip=None, fail=()):
        self.by_ip = by_ip or {}
        self.fail = set(fail)
        self.calls = []

    def scrape(self, ip, *, timeout):
        self.calls.append(ip)
        if ip in self.fail:
            raise TransientIOError(f"scrape of {ip} failed")
        return list(self.by_ip.get(ip, []))


def _line(available, mountpoint=MOUNT):
    return f'node_filesystem_avail_bytes{{device="/dev/nvme1n1",fstype="ext4",mountpoint="{mountpoint}"}} {available}'


def _endpoint(config="data", pods=(("web-0", "10.0.0.7"),)):
    return {
        "metadata": {"name": f"svc-{config}", "namespace": "default", "labels": {"discoblocks": config}},
        "subsets": [{"addresses": [
            {"ip": ip, "targetRef": {"kind": "Pod", "name": name, "namespace": "default"}}
            for name, ip in pods
        ]}],
    }


def _pod(name="web-0", claim="claim-a", mount=MOUNT):
    return {
        "metadata": {"name": name, "namespace": "default"},
        "spec": {
            "nodeName": "node-1",
            "containers": [{"name": "app", "volumeMounts": [{"name": claim, "mountPath": mount}]}],
            "volumes": [{"name": claim, "persistentVolumeClaim": {"claimName": claim}}],
        },
    }


@pytest.fixture
def cluster(kube):
    kube.disk_configs[("default", "data")] = disk_config_obj(
        policy={"upscaleTriggerPercentage": 10, "maximumCapacityOfDisk": "10Gi"},
    )
    kube.endpoints = [_endpoint()]
    kube.pods[("default", "web-0")] = _pod()
    kube.pvcs[("default", "claim-a")] = pvc_obj("claim-a", config="data", capacity="5Gi")
    return kube


def _monitor(kube, scraper, capture=None, gate=None):
    bus = EventBus([capture]) if capture else EventBus()
    return VolumeMonitor(kube, gate or OperationGate(), scraper, bus=bus)


# ---------------------------------------------------------------------
# decide_growth
# ---------------------------------------------------------------------
def test_growth_below_threshold_resizes_by_one_step():
    d = decide_growth(5 * GI, 0.3 * GI, 10, 10 * GI)
    assert d.action is GrowthAction.RESIZE
    assert d.new_capacity == 6 * GI
    assert d.threshold == 0.5 * GI


def test_growth_boundary_is_no_action():
    # available == actual - threshold
    d = decide_growth(10 * GI, 2 * GI, 80, 100 * GI)
    assert d.action is GrowthAction.NONE


def test_growth_capped_at_maximum():
    d = decide_growth(int(9.5 * GI), 0, 10, 10 * GI)
    assert d.new_capacity == 10 * GI


@pytest.mark.parametrize("actual", [10 * GI, 12 * GI])
def test_growth_at_or_above_maximum_is_ceiling(actual):
    assert decide_growth(actual, 0, 10, 10 * GI).action is GrowthAction.CEILING


# ---------------------------------------------------------------------
# cycle
# ---------------------------------------------------------------------
def test_low_space_claim_is_resized(cluster, capture):
    scraper = FakeScraper({"10.0.0.7": [_line(0.3 * GI)]})
    report = _monitor(cluster, scraper, capture).run_cycle()

    assert report.resized == 1
    assert cluster.updated_pvcs[-1]["spec"]["resources"]["requests"]["storage"] == "6Gi"
    ev = capture.of(ClaimResized)[0]
    assert (ev.name, ev.old_capacity, ev.new_capacity) == ("claim-a", "5Gi", "6Gi")
    assert capture.of(MonitorCycleCompleted)[0].resized == 1
    # EBS grows its own file system
    assert cluster.jobs == []


def test_enough_space_no_request(cluster):
    scraper = FakeScraper({"10.0.0.7": [_line(4.6 * GI)]})
    report = _monitor(cluster, scraper).run_cycle()
    assert report.resized == 0
    assert cluster.updated_pvcs == []


def test_claim_at_maximum_raises_ceiling_signal(cluster, capture):
    cluster.pvcs[("default", "claim-a")] = pvc_obj("claim-a", config="data", capacity="10Gi")
    scraper = FakeScraper({"10.0.0.7": [_line(0)]})

    report = _monitor(cluster, scraper, capture).run_cycle()

    assert report.resized == 0 and report.ceiling == 1
    assert cluster.updated_pvcs == []
    assert capture.of(CapacityCeilingReached)[0].capacity == "10Gi"


def test_claim_without_finalizer_is_never_touched(cluster):
    cluster.pvcs[("default", "claim-a")] = pvc_obj("claim-a", config="data", finalizer=False)
    scraper = FakeScraper({"10.0.0.7": [_line(0)]})
    _monitor(cluster, scraper).run_cycle()
    assert cluster.updated_pvcs == []


def test_paused_config_is_skipped(cluster):
    cluster.disk_configs[("default", "data")] = disk_config_obj(
        policy={"pause": True, "upscaleTriggerPercentage": 10, "maximumCapacityOfDisk": "10Gi"},
    )
    scraper = FakeScraper({"10.0.0.7": [_line(0)]})
    _monitor(cluster, scraper).run_cycle()
    assert cluster.updated_pvcs == []


def test_other_mount_points_are_ignored(cluster):
    scraper = FakeScraper({"10.0.0.7": [_line(0, mountpoint="/etc/hosts")]})
    report = _monitor(cluster, scraper).run_cycle()
    assert report.resized == 0 and report.skipped == 0


def test_scrape_failure_and_bad_lines_are_skipped(cluster):
    cluster.endpoints = [_endpoint(pods=(("web-0", "10.0.0.7"), ("web-1", "10.0.0.8")))]
    scraper = FakeScraper(
        {"10.0.0.7": ["node_filesystem_avail_bytes garbage", _line(0.3 * GI)]},
        fail={"10.0.0.8"},
    )
    report = _monitor(cluster, scraper).run_cycle()
    assert report.scraped == 1
    assert report.skipped == 1
    assert report.resized == 1


def test_no_metrics_ends_cycle_early(cluster):
    report = _monitor(cluster, FakeScraper()).run_cycle()
    assert report.scraped == 1
    assert report.resized == 0


def test_endpoint_listing_failure_is_logged(cluster):
    cluster.fail["list_endpoints"] = TransientIOError("apiserver down")
    report = _monitor(cluster, FakeScraper()).run_cycle()
    assert report.scraped == 0


def test_busy_gate_skips_cycle(cluster):
    gate = OperationGate()
    gate.try_acquire("reconcile")
    scraper = FakeScraper({"10.0.0.7": [_line(0)]})
    assert _monitor(cluster, scraper, gate=gate).run_cycle() is None
    assert scraper.calls == []


def test_pod_in_two_services_is_scraped_once(cluster):
    cluster.endpoints = [_endpoint(), _endpoint(config="logs")]
    cluster.disk_configs[("default", "logs")] = disk_config_obj(name="logs")
    scraper = FakeScraper({"10.0.0.7": [_line(0.3 * GI)]})
    _monitor(cluster, scraper).run_cycle()
    assert scraper.calls == ["10.0.0.7"]


def test_managed_file_system_gets_resize_job(cluster, capture):
    cluster.pvcs[("default", "claim-a")] = pvc_obj(
        "claim-a", config="data", capacity="5Gi", storage_class="rbd-sc", volume_name="pv-1",
    )
    cluster.pvs["pv-1"] = {"metadata": {"name": "pv-1"}, "spec": {"csi": {"fsType": "xfs"}}}
    scraper = FakeScraper({"10.0.0.7": [_line(0.3 * GI)]})

    _monitor(cluster, scraper, capture).run_cycle()

    assert len(cluster.jobs) == 1
    job = cluster.jobs[0]
    assert job["spec"]["template"]["spec"]["nodeName"] == "node-1"
    env = {e["name"]: e["value"] for e in job["spec"]["template"]["spec"]["containers"][0]["env"]}
    assert env["FS"] == "xfs" and env["PV_NAME"] == "pv-1"
    assert job["metadata"]["ownerReferences"][0]["name"] == "claim-a"
    assert capture.of(HostJobCreated)[0].kind == "resize"
