# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/discoblocks/metrics/parser.py

"""
Parsing of single Prometheus text exposition lines.

node-exporter output is scraped line by line; every line is parsed on its
own so one broken line never hides the others.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Optional

from prometheus_client.parser import text_string_to_metric_families

from discoblocks.errors import ParseError


@dataclass(frozen=True)
class MetricSample:
    name: str
    labels: Dict[str, str]
    value: float


@dataclass(frozen=True)
class MetricFamily:
    name: str
    type: str
    samples: List[MetricSample] = field(default_factory=list)

    def label(self, key: str) -> Optional[str]:
        """First value of ``key`` across the samples, if any."""
        for sample in self.samples:
            if key in sample.labels:
                return sample.labels[key]
        return None


def parse_metric_family(line: str) -> MetricFamily:
    """
    Parse one exposition line into a metric family.

    Comments, ``# HELP``/``# TYPE`` headers, blank and malformed lines raise
    ParseError; the caller skips them.
    """
    text = (line or "").strip()
    if not text:
        raise ParseError("empty metric line")
    if text.startswith("#"):
        raise ParseError(f"not a sample line: {text[:80]}")

    try:
        families = list(text_string_to_metric_families(text + "\n"))
    except (ValueError, IndexError, TypeError) as e:
        raise ParseError(f"malformed metric line {text[:80]!r}: {e}") from e

    if len(families) != 1 or not families[0].samples:
        raise ParseError(f"expected exactly one sample in {text[:80]!r}")

    fam = families[0]
    return MetricFamily(
        name=fam.name,
        type=fam.type,
        samples=[
            MetricSample(name=s.name, labels=dict(s.labels), value=float(s.value))
            for s in fam.samples
        ],
    )


def parse_metric_value(line: str) -> float:
    """Bare numeric value of a single sample line."""
    family = parse_metric_family(line)
    return family.samples[0].value


def filter_metric_lines(body: str, metric: str) -> List[str]:
    """Lines of a scrape body that carry ``metric`` samples; comments dropped."""
    lines = []
    for line in body.split("\n"):
        if line.startswith("#") or metric not in line:
            continue
        lines.append(line)
    return lines
