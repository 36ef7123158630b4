# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/discoblocks/observers/dispatcher.py
from __future__ import annotations
import logging
from typing import List, Optional
from .events import BaseEvent

log = logging.getLogger("discoblocks")


class EventBus:
    def __init__(self, observers: Optional[List] = None):
        self._observers = observers or []

    def subscribe(self, observer) -> None:
        self._observers.append(observer)

    def emit(self, event: BaseEvent) -> None:
        for ob in self._observers:
            try:
                ob.notify(event)
            except Exception as e:
                # observers must not break the control loops
                log.debug("observer %r failed on %s: %s", ob, event.__class__.__name__, e)
