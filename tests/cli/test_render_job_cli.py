import yaml
from typer.testing import CliRunner

from discoblocks.cli.app import app

runner = CliRunner()


def test_render_resize_job_for_rbd():
    result = runner.invoke(app, [
        "render-job", "resize",
        "--pvc", "claim-a", "--namespace", "apps", "--node", "node-1",
        "--pv", "pv-1", "--provisioner", "rbd.csi.ceph.com", "--fs", "xfs",
    ])
    assert result.exit_code == 0, result.output
    job = yaml.safe_load(result.output)
    assert job["metadata"]["namespace"] == "apps"
    assert job["metadata"]["ownerReferences"][0]["name"] == "claim-a"
    script = job["spec"]["template"]["spec"]["containers"][0]["command"][2]
    assert "/dev/rbd" in script


def test_render_mount_job_requires_mount_point():
    result = runner.invoke(app, [
        "render-job", "mount", "--pvc", "claim-a", "--node", "node-1", "--pv", "pv-1",
    ])
    assert result.exit_code != 0


def test_unknown_kind_and_provisioner_rejected():
    assert runner.invoke(app, ["render-job", "detach", "--pvc", "a", "--node", "n"]).exit_code != 0
    assert runner.invoke(app, [
        "render-job", "attach", "--pvc", "a", "--node", "n", "--provisioner", "nfs.csi.k8s.io",
    ]).exit_code != 0
