# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Blackcat Informatics® Inc.

"""Tests for catalog records and resolvers."""

from __future__ import annotations

import hashlib
import json
import subprocess
from pathlib import Path

import pytest

from tlenv.catalog import PackageRecord, StaticCatalog, TlmgrCatalog, parse_records
from tlenv.catalog import tlmgr as tlmgr_module
from tlenv.errors import CatalogSchemaError, EnvironmentIOError, ExternalToolFailure, UnknownPackageError
from tlenv.process_utils import SubprocessExecutionError

TLPOBJ_SAMPLE = [
    {
        "name": "kpathsea",
        "shortdesc": "Path searching library for TeX-related files",
        "category": "TLCore",
        "available": True,
        "installed": True,
        "depends": ["kpathsea.ARCH"],
        "runfiles": ["texmf-dist/web2c/texmf.cnf"],
        "srcfiles": [],
        "docfiles": [{"file": "texmf-dist/doc/kpathsea/kpathsea.pdf", "details": "manual"}],
        "binfiles": None,
    },
    {
        "name": "kpathsea.x86_64-linux",
        "available": True,
        "installed": True,
        "depends": None,
        "binfiles": {
            "x86_64-linux": ["bin/x86_64-linux/kpsewhich", "bin/x86_64-linux/mktexlsr"],
            "aarch64-linux": ["bin/aarch64-linux/kpsewhich"],
        },
    },
]


def _completed(stdout: str = "", stderr: str = "", returncode: int = 0) -> subprocess.CompletedProcess[str]:
    return subprocess.CompletedProcess(args=["tlmgr"], returncode=returncode, stdout=stdout, stderr=stderr)


def test_parse_records_accepts_tlmgr_output() -> None:
    records = parse_records(json.dumps(TLPOBJ_SAMPLE), source="sample")

    assert [record.name for record in records] == ["kpathsea", "kpathsea.x86_64-linux"]
    assert records[0].manifest("x86_64-linux") == {
        "texmf-dist/web2c/texmf.cnf",
        "texmf-dist/doc/kpathsea/kpathsea.pdf",
    }
    assert records[0].dependencies("x86_64-linux") == {"kpathsea.x86_64-linux"}


def test_manifest_only_includes_binaries_for_platform() -> None:
    record = parse_records(json.dumps(TLPOBJ_SAMPLE), source="sample")[1]

    assert record.manifest("aarch64-linux") == {"bin/aarch64-linux/kpsewhich"}
    assert record.manifest("x86_64-linux") == {
        "bin/x86_64-linux/kpsewhich",
        "bin/x86_64-linux/mktexlsr",
    }
    assert record.manifest("universal-darwin") == frozenset()


def test_parse_records_rejects_invalid_json() -> None:
    with pytest.raises(CatalogSchemaError, match="not valid JSON"):
        parse_records("not json", source="broken")


def test_parse_records_reports_schema_location() -> None:
    payload = json.dumps([{"name": "pkg", "runfiles": "texmf-dist/tex/pkg.sty"}])

    with pytest.raises(CatalogSchemaError, match=r"0\.runfiles"):
        parse_records(payload, source="broken")


def test_static_catalog_treats_unavailable_packages_as_unknown(record_factory, platform) -> None:
    catalog = StaticCatalog([record_factory("gone", available=False)], platform)

    with pytest.raises(UnknownPackageError):
        catalog.resolve("gone")


def test_static_catalog_from_path(tmp_path: Path) -> None:
    path = tmp_path / "catalog.json"
    path.write_text(json.dumps(TLPOBJ_SAMPLE), encoding="utf-8")

    catalog = StaticCatalog.from_path(path, "x86_64-linux")

    assert catalog.resolve("kpathsea").dependencies == {"kpathsea.x86_64-linux"}
    assert catalog.snapshot_id() is None


def test_static_catalog_refuses_to_install(record_factory, platform) -> None:
    catalog = StaticCatalog([record_factory("a", installed=False)], platform)

    with pytest.raises(ExternalToolFailure, match="no installer"):
        catalog.install(["a"])
    catalog.install([])


def test_package_installed_flag_follows_record(record_factory, platform) -> None:
    catalog = StaticCatalog(
        [record_factory("a", installed=False), record_factory("b", installed=None)],
        platform,
    )

    assert catalog.resolve("a").installed is False
    assert catalog.resolve("b").installed is True


def test_tlmgr_catalog_batches_queries(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    calls: list[list[str]] = []

    def fake_run(args, *, options=None):
        calls.append(list(args))
        return _completed(json.dumps(TLPOBJ_SAMPLE))

    monkeypatch.setattr(tlmgr_module, "run_command", fake_run)
    catalog = TlmgrCatalog(tmp_path, "x86_64-linux")

    catalog.prefetch(["kpathsea.x86_64-linux", "kpathsea"])
    catalog.resolve("kpathsea")
    catalog.resolve("kpathsea.x86_64-linux")

    assert calls == [["tlmgr", "info", "--json", "kpathsea", "kpathsea.x86_64-linux"]]


def test_tlmgr_catalog_reports_unknown_names(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setattr(
        tlmgr_module,
        "run_command",
        lambda args, *, options=None: _completed(json.dumps(TLPOBJ_SAMPLE[:1]), "package nope not found", 1),
    )
    catalog = TlmgrCatalog(tmp_path, "x86_64-linux")

    catalog.prefetch(["kpathsea", "nope"])

    assert catalog.resolve("kpathsea").name == "kpathsea"
    with pytest.raises(UnknownPackageError):
        catalog.resolve("nope")


def test_tlmgr_catalog_without_output_is_tool_failure(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setattr(
        tlmgr_module,
        "run_command",
        lambda args, *, options=None: _completed("", "tlmgr: cannot read database", 2),
    )

    with pytest.raises(ExternalToolFailure, match="cannot read database") as excinfo:
        TlmgrCatalog(tmp_path, "x86_64-linux").resolve("kpathsea")

    assert excinfo.value.returncode == 2


def test_tlmgr_catalog_missing_executable(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    def fake_run(args, *, options=None):
        raise FileNotFoundError("Executable 'tlmgr' was not found on PATH")

    monkeypatch.setattr(tlmgr_module, "run_command", fake_run)

    with pytest.raises(ExternalToolFailure, match="could not be started"):
        TlmgrCatalog(tmp_path, "x86_64-linux").resolve("kpathsea")


def test_tlmgr_catalog_schema_error(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setattr(
        tlmgr_module,
        "run_command",
        lambda args, *, options=None: _completed(json.dumps({"name": "not-a-list"})),
    )

    with pytest.raises(CatalogSchemaError):
        TlmgrCatalog(tmp_path, "x86_64-linux").resolve("kpathsea")


def test_tlmgr_install_invalidates_cache(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    calls: list[list[str]] = []
    installed = {"value": False}

    def fake_run(args, *, options=None):
        calls.append(list(args))
        if args[1] == "install":
            installed["value"] = True
            return _completed()
        record = {"name": "pkg", "installed": installed["value"], "runfiles": ["texmf-dist/tex/pkg.sty"]}
        return _completed(json.dumps([record]))

    monkeypatch.setattr(tlmgr_module, "run_command", fake_run)
    catalog = TlmgrCatalog(tmp_path, "x86_64-linux")

    assert catalog.resolve("pkg").installed is False
    catalog.install(["pkg"])
    assert catalog.resolve("pkg").installed is True
    assert calls[1] == ["tlmgr", "install", "pkg"]
    assert len(calls) == 3


def test_tlmgr_install_failure(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    def fake_run(args, *, options=None):
        raise SubprocessExecutionError(args, 1, "", "no write permission")

    monkeypatch.setattr(tlmgr_module, "run_command", fake_run)

    with pytest.raises(ExternalToolFailure, match="no write permission"):
        TlmgrCatalog(tmp_path, "x86_64-linux").install(["pkg"])


def test_snapshot_id_hashes_package_database(tmp_path: Path) -> None:
    catalog = TlmgrCatalog(tmp_path, "x86_64-linux")
    assert catalog.snapshot_id() is None

    tlpdb = tmp_path / "tlpkg" / "texlive.tlpdb"
    tlpdb.parent.mkdir()
    tlpdb.write_bytes(b"name kpathsea\n")

    assert catalog.snapshot_id() == hashlib.sha256(b"name kpathsea\n").hexdigest()


def test_unreadable_package_database_is_environment_error(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    tlpdb = tmp_path / "tlpkg" / "texlive.tlpdb"
    tlpdb.parent.mkdir()
    tlpdb.write_bytes(b"name kpathsea\n")

    def denied(self, *args, **kwargs):
        raise PermissionError(13, "Permission denied", str(self))

    monkeypatch.setattr(Path, "open", denied)

    with pytest.raises(EnvironmentIOError, match="Permission denied") as excinfo:
        TlmgrCatalog(tmp_path, "x86_64-linux").snapshot_id()

    assert excinfo.value.exit_code == 7
    assert excinfo.value.path == tlpdb


def test_probe_helpers_use_tex_live_tools(monkeypatch: pytest.MonkeyPatch) -> None:
    outputs = {
        "kpsewhich": "/usr/local/texlive/2025\n",
        "tlmgr": "x86_64-linux\n",
    }
    monkeypatch.setattr(
        tlmgr_module,
        "run_command",
        lambda args, *, options=None: _completed(outputs[args[0]]),
    )

    assert tlmgr_module.probe_store_root() == Path("/usr/local/texlive/2025")
    assert tlmgr_module.probe_platform() == "x86_64-linux"


def test_probe_store_root_failure(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(
        tlmgr_module,
        "run_command",
        lambda args, *, options=None: _completed("", "kpathsea: configuration file texmf.cnf not found", 1),
    )

    with pytest.raises(ExternalToolFailure, match="texmf.cnf"):
        tlmgr_module.probe_store_root()


def test_package_record_ignores_unknown_fields() -> None:
    record = PackageRecord.model_validate({"name": "pkg", "revision": 42, "cataloguedata": {"ctan": "/pkg"}})

    assert record.manifest("x86_64-linux") == frozenset()
    assert record.available is True
