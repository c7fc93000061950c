# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Blackcat Informatics® Inc.
"""Typed schema for TeX Live package metadata.

Records mirror the TLPOBJ JSON emitted by ``tlmgr info --json``. Only the fields the
environment engine relies on are modelled; everything else in the payload is ignored.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import PurePosixPath
from typing import Final

from pydantic import BaseModel, ConfigDict, Field, field_validator

ARCH_SUFFIX: Final[str] = ".ARCH"


class DocFile(BaseModel):
    """Documentation file entry; TeX Live attaches language details to these."""

    model_config = ConfigDict(extra="ignore", frozen=True)

    file: str
    lang: str | None = None
    detail: str | None = None


class PackageRecord(BaseModel):
    """Validated TLPOBJ record describing one catalog package."""

    model_config = ConfigDict(extra="ignore", frozen=True)

    name: str = Field(min_length=1)
    available: bool = True
    installed: bool | None = None
    depends: tuple[str, ...] = ()
    runfiles: tuple[str, ...] = ()
    srcfiles: tuple[str, ...] = ()
    docfiles: tuple[DocFile, ...] = ()
    binfiles: dict[str, tuple[str, ...]] = Field(default_factory=dict)

    @field_validator("depends", "runfiles", "srcfiles", "docfiles", mode="before")
    @classmethod
    def _none_as_empty(cls, value: object) -> object:
        """Treat ``null`` lists as empty; tlmgr omits or nulls unused sections."""

        return () if value is None else value

    @field_validator("binfiles", mode="before")
    @classmethod
    def _none_as_empty_mapping(cls, value: object) -> object:
        """Treat a ``null`` binfiles table as empty."""

        return {} if value is None else value

    def manifest(self, platform: str) -> frozenset[str]:
        """Return every store-relative file this package contributes on ``platform``.

        Args:
            platform: TeX Live platform whose binaries should be included.

        Returns:
            frozenset[str]: Normalised POSIX-style relative paths.
        """

        files: set[str] = set(self.runfiles)
        files.update(self.srcfiles)
        files.update(doc.file for doc in self.docfiles)
        files.update(self.binfiles.get(platform, ()))
        return frozenset(str(PurePosixPath(entry)) for entry in files if entry)

    def dependencies(self, platform: str) -> frozenset[str]:
        """Return direct dependencies with ``.ARCH`` placeholders expanded.

        Args:
            platform: TeX Live platform substituted for the ``ARCH`` placeholder.

        Returns:
            frozenset[str]: Concrete dependency names.
        """

        return frozenset(expand_arch(dep, platform) for dep in self.depends)


def expand_arch(name: str, platform: str) -> str:
    """Replace a trailing ``.ARCH`` placeholder with ``platform``."""

    if name.endswith(ARCH_SUFFIX):
        return f"{name[: -len(ARCH_SUFFIX)]}.{platform}"
    return name


@dataclass(frozen=True, slots=True)
class Package:
    """Immutable package view consumed by the closure and sync engines.

    Attributes:
        name: Package identity.
        dependencies: Direct dependency identities.
        manifest: Store-relative paths of the files the package contributes.
        installed: Whether the package is present in the shared store.
    """

    name: str
    dependencies: frozenset[str]
    manifest: frozenset[str]
    installed: bool = True

    @classmethod
    def from_record(cls, record: PackageRecord, platform: str) -> Package:
        """Build a :class:`Package` from a validated catalog record."""

        return cls(
            name=record.name,
            dependencies=record.dependencies(platform),
            manifest=record.manifest(platform),
            installed=record.installed is not False,
        )


__all__ = [
    "ARCH_SUFFIX",
    "DocFile",
    "Package",
    "PackageRecord",
    "expand_arch",
]
