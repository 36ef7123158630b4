# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/discoblocks/config/loader.py

import logging
import os
from pathlib import Path

import yaml

from .models import OperatorConfig

log = logging.getLogger("discoblocks")

ENV_PREFIX = "DISCOBLOCKS_"


def _load_yaml(path: Path) -> dict:
    """Load a YAML file, expanding ${ENV_VAR} references."""
    raw = path.read_text()
    expanded = os.path.expandvars(raw)
    return yaml.safe_load(expanded) or {}


def _env_overrides(environ) -> dict:
    """
    Collect DISCOBLOCKS_<FIELD> overrides.

    Nested webhook settings use a double underscore:
    DISCOBLOCKS_WEBHOOK__PORT=8443.
    """
    overrides: dict = {}
    for key, value in environ.items():
        if not key.startswith(ENV_PREFIX):
            continue
        field = key[len(ENV_PREFIX):].lower()
        if "__" in field:
            section, sub = field.split("__", 1)
            overrides.setdefault(section, {})[sub] = value
        elif field in OperatorConfig.model_fields:
            overrides[field] = value
    return overrides


def _deep_merge(base: dict, override: dict) -> dict:
    for key, value in override.items():
        if key in base and isinstance(base[key], dict) and isinstance(value, dict):
            _deep_merge(base[key], value)
        elif value not in (None, ""):
            base[key] = value
    return base


def load_operator_config(path: str | Path | None = None, environ=None) -> OperatorConfig:
    """
    Load operator settings.

    Order (later wins):
      1. model defaults
      2. YAML file (``${ENV_VAR}`` placeholders resolved at load time)
      3. ``DISCOBLOCKS_*`` environment variables
    """
    environ = os.environ if environ is None else environ

    data: dict = {}
    if path is not None:
        path = Path(path)
        if not path.is_file():
            raise FileNotFoundError(f"operator config not found: {path}")
        log.debug("Loading operator config from %s", path)
        data = _load_yaml(path)

    overrides = _env_overrides(environ)
    if overrides:
        log.debug("Applying environment overrides: %s", sorted(overrides))
        _deep_merge(data, overrides)

    return OperatorConfig.model_validate(data)
