# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/discoblocks/cli/app.py
from __future__ import annotations

import signal
import threading
from pathlib import Path
from typing import List, Optional

import typer
import yaml

from discoblocks.config.loader import load_operator_config
from discoblocks.config.models import OperatorConfig
from discoblocks.controllers.manager import ControllerManager
from discoblocks.controllers.monitor import VolumeMonitor
from discoblocks.controllers.reconciler import ClaimReconciler
from discoblocks.coordination import OperationGate
from discoblocks.drivers.registry import get_driver
from discoblocks.errors import DiscoblocksError
from discoblocks.jobs.renderer import (
    owner_reference,
    render_attach_job,
    render_mount_job,
    render_resize_job,
)
from discoblocks.kube.client import KubeClient, load_kube_config
from discoblocks.logging.log import init_logging
from discoblocks.metrics.scraper import MetricsScraper
from discoblocks.mutators.pod import PodMutator
from discoblocks.mutators.webhook import create_app, serve
from discoblocks.observers.dispatcher import EventBus
from discoblocks.observers.jsonfile import JsonFileObserver
from discoblocks.observers.logger import LoggerObserver


# ------------------------------------------------------------------------------
# CLI setup
# ------------------------------------------------------------------------------

app = typer.Typer(help="Discoblocks volume autoscaler")

JOB_KINDS = ("attach", "mount", "resize")


# ------------------------------------------------------------------------------
# Helpers
# ------------------------------------------------------------------------------

def _load(config_path: Optional[Path], kube_context: Optional[str], verbose: bool) -> OperatorConfig:
    try:
        cfg = load_operator_config(config_path)
    except (FileNotFoundError, ValueError) as e:
        # pydantic ValidationError is a ValueError
        raise typer.BadParameter(str(e)) from e

    if kube_context:
        cfg.kube_context = kube_context
    if verbose:
        cfg.verbose = True
    return cfg


def _bootstrap(cfg: OperatorConfig):
    logger, run_id, _ = init_logging(
        base_dir=Path(cfg.log_dir) if cfg.log_dir else None,
        verbose=cfg.verbose,
    )

    observers = [LoggerObserver(logger)]
    if cfg.events_file:
        observers.append(JsonFileObserver(cfg.events_file))
    bus = EventBus(observers=observers)

    load_kube_config(cfg.kube_context, cfg.in_cluster)
    return logger, bus, KubeClient()


def _monitor(cfg: OperatorConfig, kube: KubeClient, gate: OperationGate, bus: EventBus) -> VolumeMonitor:
    return VolumeMonitor(
        kube,
        gate,
        MetricsScraper(port=cfg.metrics_port, metric=cfg.metrics_metric),
        bus=bus,
        timeout_seconds=cfg.monitor_timeout_seconds,
        scrape_timeout_seconds=cfg.scrape_timeout_seconds,
        growth_step=cfg.growth_step,
    )


# ------------------------------------------------------------------------------
# Commands
# ------------------------------------------------------------------------------

@app.command()
def run(
    config: Optional[Path] = typer.Option(None, "--config", "-c", help="Operator settings YAML"),
    kube_context: Optional[str] = typer.Option(None, "--context", help="kubeconfig context"),
    strict: Optional[bool] = typer.Option(None, "--strict/--no-strict", help="Deny pods on volume errors"),
    no_webhook: bool = typer.Option(False, "--no-webhook", help="Run the controllers only"),
    verbose: bool = typer.Option(False, "--verbose", "-v"),
):
    """
    Run the claim reconciler, the volume monitor and the admission webhook.
    """
    cfg = _load(config, kube_context, verbose)
    if strict is not None:
        cfg.strict = strict

    logger, bus, kube = _bootstrap(cfg)
    gate = OperationGate()

    reconciler = ClaimReconciler(
        kube,
        gate,
        bus=bus,
        timeout_seconds=cfg.reconcile_timeout_seconds,
        requeue_delay_seconds=cfg.requeue_delay_seconds,
    )
    manager = ControllerManager(
        kube,
        reconciler,
        _monitor(cfg, kube, gate, bus),
        monitor_interval_seconds=cfg.monitor_interval_seconds,
        requeue_delay_seconds=cfg.requeue_delay_seconds,
    )
    manager.start()

    try:
        if no_webhook:
            stop = threading.Event()
            signal.signal(signal.SIGTERM, lambda *_: stop.set())
            stop.wait()
        else:
            mutator = PodMutator(
                kube,
                strict=cfg.strict,
                scheduler_name=cfg.scheduler_name,
                metrics_port=cfg.metrics_port,
                timeout_seconds=cfg.admission_timeout_seconds,
                bus=bus,
            )
            serve(create_app(mutator), cfg.webhook)
    except KeyboardInterrupt:
        logger.info("interrupted")
    finally:
        manager.stop()


@app.command()
def monitor(
    config: Optional[Path] = typer.Option(None, "--config", "-c", help="Operator settings YAML"),
    kube_context: Optional[str] = typer.Option(None, "--context", help="kubeconfig context"),
    verbose: bool = typer.Option(False, "--verbose", "-v"),
):
    """
    Run a single volume monitor cycle and exit.
    """
    cfg = _load(config, kube_context, verbose)
    _, bus, kube = _bootstrap(cfg)

    report = _monitor(cfg, kube, OperationGate(), bus).run_cycle()
    if report is None:
        raise typer.Exit(code=1)

    typer.echo(
        f"scraped={report.scraped} resized={report.resized} "
        f"ceiling={report.ceiling} skipped={report.skipped}"
    )
    if report.aborted:
        raise typer.Exit(code=2)


@app.command("render-job")
def render_job(
    kind: str = typer.Argument(..., help="attach, mount or resize"),
    pvc: str = typer.Option(..., "--pvc", help="Claim name"),
    namespace: str = typer.Option("default", "--namespace", "-n"),
    node: str = typer.Option(..., "--node", help="Target node name"),
    pv: str = typer.Option("", "--pv", help="Bound volume name"),
    provisioner: str = typer.Option("ebs.csi.aws.com", "--provisioner", help="CSI provisioner of the claim"),
    fs: str = typer.Option("ext4", "--fs", help="File system type"),
    mount_point: str = typer.Option("", "--mount-point"),
    container_id: List[str] = typer.Option([], "--container-id", help="Runtime container ID (repeatable)"),
    pvc_uid: str = typer.Option("", "--pvc-uid", help="Claim UID for the owner reference"),
):
    """
    Print the manifest of a host job to stdout.
    """
    if kind not in JOB_KINDS:
        raise typer.BadParameter(f"Unknown job kind: {kind}\nValid kinds: {', '.join(JOB_KINDS)}")

    try:
        driver = get_driver(provisioner)
    except DiscoblocksError as e:
        raise typer.BadParameter(str(e)) from e

    owner = owner_reference({"metadata": {"name": pvc, "uid": pvc_uid}})

    if kind == "attach":
        job = render_attach_job(pvc, namespace, node, owner)
    elif kind == "mount":
        if not pv or not mount_point:
            raise typer.BadParameter("mount jobs need --pv and --mount-point")
        job = render_mount_job(
            pvc, pv, namespace, node, fs, mount_point, container_id,
            driver.get_pre_mount_command(),
            driver.requires_host_pid(),
            driver.wait_for_volume_attachment_meta(),
            owner,
        )
    else:
        if not pv:
            raise typer.BadParameter("resize jobs need --pv")
        job = render_resize_job(
            pvc, pv, namespace, node, fs,
            driver.get_pre_resize_command(),
            driver.wait_for_volume_attachment_meta(),
            owner,
        )

    typer.echo(yaml.safe_dump(job, sort_keys=False))


if __name__ == "__main__":
    app()
