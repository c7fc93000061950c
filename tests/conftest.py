# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Blackcat Informatics® Inc.

"""Shared pytest fixtures."""

from __future__ import annotations

import os
from collections.abc import Callable, Iterable, Mapping
from pathlib import Path

import pytest

from tlenv.catalog import PackageRecord, StaticCatalog
from tlenv.paths import EnvironmentLayout

PLATFORM = "x86_64-linux"

RecordFactory = Callable[..., PackageRecord]


def make_record(
    name: str,
    *,
    depends: Iterable[str] = (),
    runfiles: Iterable[str] = (),
    binfiles: Iterable[str] = (),
    installed: bool | None = True,
    available: bool = True,
) -> PackageRecord:
    """Build a TLPOBJ record the way ``tlmgr info --json`` reports it."""

    return PackageRecord.model_validate(
        {
            "name": name,
            "available": available,
            "installed": installed,
            "depends": list(depends),
            "runfiles": list(runfiles),
            "binfiles": {PLATFORM: list(binfiles)} if binfiles else None,
        }
    )


def populate_store(store_root: Path, records: Iterable[PackageRecord]) -> None:
    """Create every file referenced by ``records`` below ``store_root``."""

    for record in records:
        for relative in record.manifest(PLATFORM):
            target = store_root / relative
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_text(f"{record.name}:{relative}\n", encoding="utf-8")


def snapshot_tree(root: Path) -> dict[str, tuple[str, str, int]]:
    """Describe every entry below ``root`` including link targets and mtimes."""

    entries: dict[str, tuple[str, str, int]] = {}
    if not root.exists():
        return entries
    for dirpath, dirnames, filenames in os.walk(root, followlinks=False):
        for name in [*dirnames, *filenames]:
            path = Path(dirpath) / name
            info = path.lstat()
            if path.is_symlink():
                kind, detail = "link", os.readlink(path)
            elif path.is_dir():
                kind, detail = "dir", ""
            else:
                kind, detail = "file", path.read_text(encoding="utf-8")
            entries[path.relative_to(root).as_posix()] = (kind, detail, info.st_mtime_ns)
    return entries


@pytest.fixture
def store_root(tmp_path: Path) -> Path:
    root = tmp_path / "texlive" / "2025"
    root.mkdir(parents=True)
    return root


@pytest.fixture
def layout(tmp_path: Path, store_root: Path) -> EnvironmentLayout:
    project = tmp_path / "project"
    project.mkdir()
    return EnvironmentLayout(project_root=project, store_root=store_root, platform=PLATFORM)


@pytest.fixture
def catalog_factory(store_root: Path) -> Callable[[Iterable[PackageRecord]], StaticCatalog]:
    """Return a factory materialising records in the store and wrapping them in a catalog."""

    def factory(records: Iterable[PackageRecord]) -> StaticCatalog:
        materialised = list(records)
        populate_store(store_root, materialised)
        return StaticCatalog(materialised, PLATFORM)

    return factory


@pytest.fixture
def basic_records() -> Mapping[str, PackageRecord]:
    """A small catalog: ``article`` depends on ``base``, ``tikz`` on ``pgf``."""

    records = [
        make_record("article", depends=["base"], runfiles=["texmf-dist/tex/latex/article/article.cls"]),
        make_record(
            "base",
            runfiles=["texmf-dist/tex/latex/base/latex.ltx", "texmf-dist/tex/latex/base/size10.clo"],
        ),
        make_record("tikz", depends=["pgf"], runfiles=["texmf-dist/tex/latex/tikz/tikz.sty"]),
        make_record("pgf", runfiles=["texmf-dist/tex/generic/pgf/pgf.tex"]),
    ]
    return {record.name: record for record in records}


@pytest.fixture
def platform() -> str:
    return PLATFORM


@pytest.fixture
def record_factory() -> RecordFactory:
    """Expose :func:`make_record` to test modules."""

    return make_record


@pytest.fixture
def snapshot() -> Callable[[Path], dict[str, tuple[str, str, int]]]:
    """Expose :func:`snapshot_tree` to test modules."""

    return snapshot_tree
