# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/discoblocks/utils/quantity.py

from __future__ import annotations

from decimal import InvalidOperation

from kubernetes.utils import parse_quantity

from discoblocks.errors import ParseError

GI = 1024 ** 3

_BINARY_SUFFIXES = (
    ("Ei", 1024 ** 6),
    ("Pi", 1024 ** 5),
    ("Ti", 1024 ** 4),
    ("Gi", 1024 ** 3),
    ("Mi", 1024 ** 2),
    ("Ki", 1024),
)


def to_bytes(quantity) -> int:
    """Convert a Kubernetes quantity ("10Gi", "500M", 1024) to whole bytes."""
    if quantity is None:
        raise ParseError("quantity is empty")
    try:
        value = parse_quantity(quantity)
    except (ValueError, InvalidOperation, TypeError) as e:
        raise ParseError(f"invalid quantity {quantity!r}: {e}") from e

    return int(value.to_integral_value())


def format_bytes(value: int) -> str:
    """
    Render bytes as the largest exact binary quantity ("6Gi"), or plain
    bytes when no binary suffix divides evenly.
    """
    value = int(value)
    if value <= 0:
        return str(value)
    for suffix, factor in _BINARY_SUFFIXES:
        if value % factor == 0:
            return f"{value // factor}{suffix}"
    return str(value)
