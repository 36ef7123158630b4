# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/discoblocks/utils/deadline.py

from __future__ import annotations

import time
from typing import Callable

from discoblocks.errors import DeadlineExceeded


class Deadline:
    """
    Time budget shared by every external call of one operation.

    Callers pass ``remaining()`` as the request timeout; once the budget is
    spent ``remaining()`` raises and the rest of the operation is abandoned.
    """

    def __init__(self, seconds: float, *, clock: Callable[[], float] = time.monotonic):
        self.seconds = seconds
        self._clock = clock
        self._expires_at = clock() + seconds

    def remaining(self) -> float:
        left = self._expires_at - self._clock()
        if left <= 0:
            raise DeadlineExceeded(f"deadline of {self.seconds}s exceeded")
        return left

    def expired(self) -> bool:
        return self._expires_at - self._clock() <= 0

    def timeout(self, cap: float | None = None) -> float:
        """Remaining budget, optionally capped for a single request."""
        left = self.remaining()
        if cap is not None:
            return min(left, cap)
        return left
