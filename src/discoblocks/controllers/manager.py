# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/discoblocks/controllers/manager.py

"""
Runs the control loops of the operator in background threads:

- the PVC watch, feeding admitted claim keys into the work queue
- a single reconcile worker draining that queue
- the volume monitor ticker
"""

from __future__ import annotations

import logging
import queue
import threading
from typing import Any, Dict, List, Optional, Tuple

from discoblocks.controllers.events import ClaimEventFilter
from discoblocks.controllers.monitor import VolumeMonitor
from discoblocks.controllers.reconciler import DONE, ClaimReconciler, ReconcileResult
from discoblocks.errors import DiscoblocksError, TransientIOError

log = logging.getLogger("discoblocks")

ClaimKey = Tuple[str, str]


class ControllerManager:
    def __init__(
        self,
        kube,
        reconciler: ClaimReconciler,
        monitor: Optional[VolumeMonitor] = None,
        *,
        event_filter: Optional[ClaimEventFilter] = None,
        monitor_interval_seconds: float = 60.0,
        requeue_delay_seconds: float = 5.0,
        watch_timeout_seconds: int = 300,
    ):
        self.kube = kube
        self.reconciler = reconciler
        self.monitor = monitor
        self.event_filter = event_filter or ClaimEventFilter()
        self.monitor_interval_seconds = monitor_interval_seconds
        self.requeue_delay_seconds = requeue_delay_seconds
        self.watch_timeout_seconds = watch_timeout_seconds

        self._queue: "queue.Queue[ClaimKey]" = queue.Queue()
        self._pending: set = set()
        self._lock = threading.Lock()
        self._stop = threading.Event()
        self._seen: Dict[ClaimKey, Dict[str, Any]] = {}
        self._threads: List[threading.Thread] = []

    # ------------------------------------------------------------------
    # Work queue
    # ------------------------------------------------------------------
    def enqueue(self, key: ClaimKey) -> None:
        with self._lock:
            if key in self._pending:
                return
            self._pending.add(key)
        self._queue.put(key)

    def enqueue_after(self, key: ClaimKey, delay: float) -> None:
        timer = threading.Timer(delay, self.enqueue, args=(key,))
        timer.daemon = True
        timer.start()

    def pending(self) -> int:
        return self._queue.qsize()

    def handle_event(self, event_type: str, pvc: Dict[str, Any]) -> bool:
        """Run one watch event through the filter. Returns True when queued."""
        meta = pvc.get("metadata") or {}
        key = (meta.get("namespace"), meta.get("name"))

        if event_type in ("ADDED", "MODIFIED"):
            old = self._seen.get(key)
            self._seen[key] = pvc
            # a re-listed watch replays ADDED for known claims
            admitted = self.event_filter.create(pvc) if old is None else self.event_filter.update(old, pvc)
        elif event_type == "DELETED":
            self._seen.pop(key, None)
            admitted = self.event_filter.delete(pvc)
        else:
            admitted = self.event_filter.generic(pvc)

        if admitted:
            log.debug("[manager] %s %s/%s admitted", event_type, key[0], key[1])
            self.enqueue(key)
        return admitted

    def process_next(self, timeout: Optional[float] = None) -> bool:
        """Reconcile one queued claim. Returns False when the queue stayed empty."""
        try:
            key = self._queue.get(timeout=timeout)
        except queue.Empty:
            return False

        with self._lock:
            self._pending.discard(key)

        try:
            result = self.reconciler.reconcile(*key)
        except TransientIOError as e:
            log.warning("[manager] %s/%s: %s, requeue", key[0], key[1], e)
            result = ReconcileResult(requeue=True, requeue_after=self.requeue_delay_seconds)
        except DiscoblocksError as e:
            log.error("[manager] %s/%s: reconcile failed: %s", key[0], key[1], e)
            result = DONE
        finally:
            self._queue.task_done()

        if result.requeue:
            self.enqueue_after(key, result.requeue_after or self.requeue_delay_seconds)
        return True

    # ------------------------------------------------------------------
    # Loops
    # ------------------------------------------------------------------
    def _watch_loop(self) -> None:
        while not self._stop.is_set():
            try:
                for event_type, pvc in self.kube.watch_pvcs(timeout_seconds=self.watch_timeout_seconds):
                    if self._stop.is_set():
                        return
                    self.handle_event(event_type, pvc)
            except TransientIOError as e:
                log.warning("[manager] PVC watch interrupted: %s", e)
                self._stop.wait(self.requeue_delay_seconds)

    def _worker_loop(self) -> None:
        while not self._stop.is_set():
            self.process_next(timeout=1.0)

    def _monitor_loop(self) -> None:
        while not self._stop.wait(self.monitor_interval_seconds):
            try:
                self.monitor.run_cycle()
            except DiscoblocksError as e:
                log.error("[manager] monitor cycle failed: %s", e)

    def start(self) -> None:
        loops = [("pvc-watch", self._watch_loop), ("reconcile-worker", self._worker_loop)]
        if self.monitor is not None:
            loops.append(("volume-monitor", self._monitor_loop))

        for name, target in loops:
            t = threading.Thread(target=target, name=name, daemon=True)
            t.start()
            self._threads.append(t)
        log.info("[manager] started %s", ", ".join(name for name, _ in loops))

    def stop(self, timeout: float = 5.0) -> None:
        self._stop.set()
        for t in self._threads:
            t.join(timeout=timeout)
        self._threads = []
        log.info("[manager] stopped")

    @property
    def stopped(self) -> bool:
        return self._stop.is_set()
