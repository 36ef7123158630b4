# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/discoblocks/errors.py


class DiscoblocksError(RuntimeError):
    """Base class for discoblocks failures."""


class NotFoundError(DiscoblocksError):
    """The requested object does not exist (claim, config, pod, storage class)."""


class AlreadyExistsError(DiscoblocksError):
    """Create was rejected because the object already exists."""


class ConflictError(DiscoblocksError):
    """Optimistic-concurrency conflict on update."""


class MountPointConflictError(ConflictError):
    """Two claims resolved to the same mount path in one admission pass."""


class TransientIOError(DiscoblocksError):
    """Network or API failure that the next trigger may not see again."""


class DeadlineExceeded(TransientIOError):
    """The operation ran out of its time budget."""


class ParseError(DiscoblocksError):
    """A metric line or quantity string could not be parsed."""


class ConfigurationError(DiscoblocksError):
    """Invalid storage class shape or unsupported backend."""


class UnsupportedDriverError(ConfigurationError):
    """No driver is registered for the storage class provisioner."""


class BusyError(DiscoblocksError):
    """Another gated operation is in flight."""


class JobTemplateError(DiscoblocksError):
    """A job or sidecar template is missing or renders invalid YAML."""
