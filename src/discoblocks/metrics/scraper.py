# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/discoblocks/metrics/scraper.py

from __future__ import annotations

import logging
from typing import List, Optional

import requests

from discoblocks.errors import TransientIOError
from discoblocks.metrics.parser import filter_metric_lines

log = logging.getLogger("discoblocks")


class MetricsScraper:
    """
    Fetches the exporter sidecar's /metrics page.

    No retry here: the monitor's next tick is the retry.
    """

    def __init__(
        self,
        *,
        port: int = 9100,
        metric: str = "node_filesystem_avail_bytes",
        session: Optional[requests.Session] = None,
    ):
        self.port = port
        self.metric = metric
        self.session = session or requests.Session()

    def url(self, ip: str) -> str:
        return f"http://{ip}:{self.port}/metrics"

    def fetch(self, ip: str, *, timeout: float) -> str:
        url = self.url(ip)
        try:
            resp = self.session.get(url, timeout=timeout)
            resp.raise_for_status()
        except requests.RequestException as e:
            raise TransientIOError(f"scrape of {url} failed: {e}") from e
        return resp.text

    def scrape(self, ip: str, *, timeout: float) -> List[str]:
        """Lines of the metric of interest exposed at ``ip``."""
        body = self.fetch(ip, timeout=timeout)
        lines = filter_metric_lines(body, self.metric)
        log.debug("[monitor] %s exposed %d %s lines", ip, len(lines), self.metric)
        return lines
