# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/discoblocks/coordination.py

from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from typing import Iterator, Optional

from discoblocks.errors import BusyError

log = logging.getLogger("discoblocks")


class OperationGate:
    """
    Process wide single-flight gate shared by the claim reconciler and the
    volume monitor.

    Nobody waits on it: a caller that cannot take it is told it is busy.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._holder: Optional[str] = None

    def try_acquire(self, holder: str) -> bool:
        if not self._lock.acquire(blocking=False):
            return False
        self._holder = holder
        return True

    def release(self) -> None:
        self._holder = None
        self._lock.release()

    @property
    def holder(self) -> Optional[str]:
        return self._holder

    @contextmanager
    def hold(self, holder: str) -> Iterator[None]:
        if not self.try_acquire(holder):
            raise BusyError(f"{holder}: another operation is in flight ({self._holder})")
        try:
            yield
        finally:
            self.release()
