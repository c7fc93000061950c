# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Blackcat Informatics® Inc.
"""Read-only package metadata resolvers."""

from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from collections.abc import Iterable, Mapping, Sequence
from pathlib import Path
from typing import Protocol, runtime_checkable

from pydantic import TypeAdapter, ValidationError

from ..errors import CatalogSchemaError, ExternalToolFailure, UnknownPackageError
from .models import Package, PackageRecord

LOGGER = logging.getLogger(__name__)

_RECORD_LIST = TypeAdapter(list[PackageRecord])


@runtime_checkable
class PackageResolver(Protocol):
    """Protocol implemented by anything able to resolve package identities."""

    def resolve(self, name: str) -> Package:
        """Return metadata for ``name`` or raise :class:`UnknownPackageError`."""
        ...


def parse_records(payload: str | bytes, *, source: str) -> list[PackageRecord]:
    """Decode a TLPOBJ JSON array into validated records.

    Args:
        payload: Raw JSON text.
        source: Description of where the payload came from, used in errors.

    Returns:
        list[PackageRecord]: Validated records in document order.

    Raises:
        CatalogSchemaError: If the payload is not JSON or violates the record schema.
    """

    try:
        data = json.loads(payload)
    except json.JSONDecodeError as exc:
        raise CatalogSchemaError(f"{source}: catalog output is not valid JSON ({exc})") from exc
    try:
        return _RECORD_LIST.validate_python(data)
    except ValidationError as exc:
        first = exc.errors()[0]
        location = ".".join(str(part) for part in first["loc"])
        raise CatalogSchemaError(
            f"{source}: unexpected package metadata at {location or '<root>'}: {first['msg']}"
        ) from exc


class CachingCatalog(ABC):
    """Resolver base class caching every record fetched from the backing catalog.

    Subclasses implement :meth:`_fetch`, which may answer several names at once; the
    closure calculator uses :meth:`prefetch` to batch a whole traversal frontier.
    """

    def __init__(self, platform: str) -> None:
        self._platform = platform
        self._packages: dict[str, Package] = {}
        self._missing: set[str] = set()

    @property
    def platform(self) -> str:
        """Return the TeX Live platform used to expand binaries and ``.ARCH`` names."""

        return self._platform

    @abstractmethod
    def _fetch(self, names: Sequence[str]) -> Mapping[str, PackageRecord]:
        """Return records for every name the catalog knows among ``names``."""

    def prefetch(self, names: Iterable[str]) -> None:
        """Load every uncached name in ``names`` with one catalog query."""

        pending = sorted({name for name in names if name not in self._packages and name not in self._missing})
        if not pending:
            return
        LOGGER.debug("fetching metadata for %d package(s)", len(pending))
        records = self._fetch(pending)
        for name in pending:
            record = records.get(name)
            if record is None or not record.available:
                self._missing.add(name)
                continue
            self._packages[name] = Package.from_record(record, self._platform)

    def resolve(self, name: str) -> Package:
        """Return metadata for ``name``.

        Args:
            name: Package identity.

        Returns:
            Package: Cached package metadata.

        Raises:
            UnknownPackageError: If the catalog has no available entry for ``name``.
        """

        self.prefetch((name,))
        package = self._packages.get(name)
        if package is None:
            raise UnknownPackageError(name)
        return package

    def invalidate(self, names: Iterable[str]) -> None:
        """Drop cached metadata for ``names`` so the next lookup re-queries the catalog."""

        for name in names:
            self._packages.pop(name, None)
            self._missing.discard(name)

    def install(self, names: Iterable[str]) -> None:
        """Materialise ``names`` in the shared store using the catalog's own installer.

        Raises:
            ExternalToolFailure: Always for catalogs without an installer.
        """

        ordered = sorted(set(names))
        if ordered:
            raise ExternalToolFailure(
                ["install", *ordered],
                None,
                "this catalog has no installer; install the packages into the shared store manually",
            )

    def snapshot_id(self) -> str | None:
        """Return an identifier of the catalog revision, when the catalog exposes one."""

        return None


class StaticCatalog(CachingCatalog):
    """Catalog backed by an in-memory set of records."""

    def __init__(self, records: Iterable[PackageRecord], platform: str) -> None:
        super().__init__(platform)
        self._records: dict[str, PackageRecord] = {record.name: record for record in records}

    @classmethod
    def from_path(cls, path: Path, platform: str) -> StaticCatalog:
        """Load a catalog from a JSON document in ``tlmgr info --json`` format.

        Args:
            path: JSON document containing an array of TLPOBJ records.
            platform: TeX Live platform for binaries and ``.ARCH`` expansion.

        Returns:
            StaticCatalog: Catalog serving the document's records.

        Raises:
            CatalogSchemaError: If the document cannot be decoded.
        """

        return cls(parse_records(path.read_bytes(), source=str(path)), platform)

    def _fetch(self, names: Sequence[str]) -> Mapping[str, PackageRecord]:
        return {name: self._records[name] for name in names if name in self._records}


__all__ = [
    "CachingCatalog",
    "PackageResolver",
    "StaticCatalog",
    "parse_records",
]
