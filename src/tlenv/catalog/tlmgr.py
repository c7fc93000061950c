# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Blackcat Informatics® Inc.
"""Adapter over the TeX Live manager (``tlmgr``) and ``kpsewhich``."""

from __future__ import annotations

import hashlib
import logging
from collections.abc import Iterable, Mapping, Sequence
from pathlib import Path
from typing import Final

from ..errors import CatalogSchemaError, EnvironmentIOError, ExternalToolFailure
from ..process_utils import CommandOptions, SubprocessExecutionError, run_command
from .models import PackageRecord
from .resolver import CachingCatalog, parse_records

LOGGER = logging.getLogger(__name__)

TLMGR: Final[str] = "tlmgr"
KPSEWHICH: Final[str] = "kpsewhich"
TLPDB_RELATIVE: Final[Path] = Path("tlpkg") / "texlive.tlpdb"
_CHUNK: Final[int] = 1 << 20

_CAPTURE = CommandOptions(check=False, capture_output=True)


def _capture(args: Sequence[str]) -> str:
    """Run ``args`` capturing stdout, translating failures into :class:`ExternalToolFailure`."""

    try:
        completed = run_command(args, options=_CAPTURE)
    except FileNotFoundError as exc:
        raise ExternalToolFailure(args, None, f"{exc}; is TeX Live installed and on PATH?") from exc
    if completed.returncode != 0:
        raise ExternalToolFailure(args, completed.returncode, completed.stderr)
    return completed.stdout.strip()


def probe_store_root() -> Path:
    """Return the shared TeX Live root reported by ``kpsewhich``.

    Raises:
        ExternalToolFailure: If ``kpsewhich`` is missing or fails.
    """

    output = _capture([KPSEWHICH, "-var-value=TEXMFROOT"])
    if not output:
        raise ExternalToolFailure([KPSEWHICH, "-var-value=TEXMFROOT"], 0, "TEXMFROOT is empty")
    return Path(output)


def probe_platform() -> str:
    """Return the platform identifier reported by ``tlmgr print-platform``.

    Raises:
        ExternalToolFailure: If ``tlmgr`` is missing or fails.
    """

    return _capture([TLMGR, "print-platform"])


class TlmgrCatalog(CachingCatalog):
    """Resolve packages by querying ``tlmgr info --json``."""

    def __init__(self, store_root: Path, platform: str) -> None:
        super().__init__(platform)
        self._store_root = store_root

    def _fetch(self, names: Sequence[str]) -> Mapping[str, PackageRecord]:
        """Query ``tlmgr`` for ``names`` in a single invocation.

        Names ``tlmgr`` does not know are simply absent from the result; the caller
        reports them as unknown packages.

        Raises:
            ExternalToolFailure: If ``tlmgr`` cannot run or produces no usable output.
            CatalogSchemaError: If the JSON payload does not match the record schema.
        """

        args = [TLMGR, "info", "--json", *names]
        try:
            completed = run_command(args, options=_CAPTURE)
        except FileNotFoundError as exc:
            raise ExternalToolFailure(args[:3], None, f"{exc}; is TeX Live installed and on PATH?") from exc
        stdout = completed.stdout.strip()
        if not stdout:
            raise ExternalToolFailure(args[:3], completed.returncode, completed.stderr)
        try:
            records = parse_records(stdout, source="tlmgr info --json")
        except CatalogSchemaError:
            if completed.returncode != 0:
                raise ExternalToolFailure(args[:3], completed.returncode, completed.stderr) from None
            raise
        if completed.returncode != 0:
            LOGGER.debug("tlmgr info exited with %d: %s", completed.returncode, completed.stderr)
        return {record.name: record for record in records}

    def install(self, names: Iterable[str]) -> None:
        """Ask ``tlmgr`` to install ``names`` into the shared store.

        Args:
            names: Packages the catalog reports as available but not installed.

        Raises:
            ExternalToolFailure: If ``tlmgr install`` fails.
        """

        ordered = sorted(set(names))
        if not ordered:
            return
        args = [TLMGR, "install", *ordered]
        try:
            run_command(args, options=CommandOptions(check=True))
        except FileNotFoundError as exc:
            raise ExternalToolFailure(args, None, str(exc)) from exc
        except SubprocessExecutionError as exc:
            raise ExternalToolFailure(args, exc.returncode, exc.stderr) from exc
        self.invalidate(ordered)

    def snapshot_id(self) -> str | None:
        """Return a digest of the package database, or ``None`` when it is absent.

        Raises:
            EnvironmentIOError: If the database exists but cannot be read.
        """

        tlpdb = self._store_root / TLPDB_RELATIVE
        if not tlpdb.is_file():
            return None
        digest = hashlib.sha256()
        try:
            with tlpdb.open("rb") as handle:
                while chunk := handle.read(_CHUNK):
                    digest.update(chunk)
        except OSError as exc:
            raise EnvironmentIOError(f"Unable to read {tlpdb}: {exc.strerror or exc}", tlpdb) from exc
        return digest.hexdigest()


__all__ = [
    "TlmgrCatalog",
    "probe_platform",
    "probe_store_root",
]
