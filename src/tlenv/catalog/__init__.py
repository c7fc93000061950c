# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Blackcat Informatics® Inc.

"""Package metadata resolution against the shared TeX Live catalog."""

from __future__ import annotations

from .models import DocFile, Package, PackageRecord, expand_arch
from .resolver import CachingCatalog, PackageResolver, StaticCatalog, parse_records
from .tlmgr import TlmgrCatalog, probe_platform, probe_store_root

__all__ = [
    "CachingCatalog",
    "DocFile",
    "Package",
    "PackageRecord",
    "PackageResolver",
    "StaticCatalog",
    "TlmgrCatalog",
    "expand_arch",
    "parse_records",
    "probe_platform",
    "probe_store_root",
]
