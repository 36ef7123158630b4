# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/discoblocks/__init__.py

__version__ = "0.1.0"

# Label put on claims and metrics services, value is the DiskConfig name.
MANAGED_LABEL = "discoblocks"

# API coordinates of the DiskConfig custom resource.
API_GROUP = "discoblocks.ondat.io"
API_VERSION = "v1"
DISKCONFIG_PLURAL = "diskconfigs"
