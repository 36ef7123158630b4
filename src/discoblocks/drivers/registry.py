# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/discoblocks/drivers/registry.py

from __future__ import annotations

from typing import Dict, Type

from discoblocks.drivers.base import Driver
from discoblocks.drivers.ebs import EBSDriver
from discoblocks.drivers.rbd import CephRbdDriver
from discoblocks.errors import UnsupportedDriverError

_DRIVERS: Dict[str, Driver] = {}


def register_driver(driver_cls: Type[Driver]) -> Type[Driver]:
    """Register a backend by its provisioner name. Usable as a decorator."""
    if not driver_cls.provisioner:
        raise ValueError(f"{driver_cls.__name__} has no provisioner name")
    _DRIVERS[driver_cls.provisioner] = driver_cls()
    return driver_cls


def get_driver(provisioner: str) -> Driver:
    try:
        return _DRIVERS[provisioner]
    except KeyError:
        raise UnsupportedDriverError(
            f"Unsupported provisioner: {provisioner!r}\n"
            f"Supported: {', '.join(sorted(_DRIVERS))}"
        ) from None


def supported_provisioners() -> list[str]:
    return sorted(_DRIVERS)


register_driver(EBSDriver)
register_driver(CephRbdDriver)
